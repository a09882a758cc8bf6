from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from .. import models, services
from ..deps import get_db, get_current_user, get_current_organization, organization_of
from ..schemas import OrganizationUpsert
from .reports import service_error

router = APIRouter()


@router.get("/organizations")
def list_transfer_targets(
    q: str | None = Query(None, description="Cari nama instansi"),
    limit: int = Query(50, ge=1, le=200),
    db: Session = Depends(get_db),
    org: models.Organization = Depends(get_current_organization),
):
    rows = services.search_organizations(db, org, q=q, limit=limit)
    return [{"id": r.id, "name": r.name, "instance_type": r.instance_type} for r in rows]


@router.get("/organizations/me")
def my_organization(db: Session = Depends(get_db), user: models.User = Depends(get_current_user)):
    org = organization_of(db, user)
    if not org:
        raise HTTPException(status_code=404, detail="Instansi belum diatur")
    return services.organization_record(org).model_dump()


@router.put("/organizations/me")
def save_my_organization(
    payload: OrganizationUpsert,
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
):
    try:
        org, created = services.upsert_organization(db, user, payload.name, payload.lat_long, payload.instance_type)
    except services.ServiceError as e:
        raise service_error(e)
    return {
        "message": "Data saved successfully!" if created else "Data updated successfully!",
        "created": created,
        "item": services.organization_record(org).model_dump(),
    }
