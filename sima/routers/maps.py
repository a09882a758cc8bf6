from dataclasses import asdict

from fastapi import APIRouter, Depends, HTTPException, Path, Request
from sqlalchemy.orm import Session

from .. import models, services
from ..deps import get_db, get_current_organization
from ..markers import live_markers, organization_marker, report_markers
from ..routing import RouteClient

router = APIRouter()


def get_route_client(request: Request) -> RouteClient:
    return request.app.state.route_client


def _marker_json(m) -> dict:
    data = asdict(m)
    data["color"] = m.color
    return data


@router.get("/maps/markers")
def map_markers(
    db: Session = Depends(get_db),
    org: models.Organization = Depends(get_current_organization),
):
    org_marker = organization_marker(services.organization_record(org))
    markers = live_markers(report_markers(services.list_assignments(db, org.id)))
    return {
        "organization": _marker_json(org_marker) if org_marker else None,
        "markers": [_marker_json(m) for m in markers],
    }


@router.get("/maps/route/{assignment_id}")
def map_route(
    assignment_id: int = Path(..., ge=1),
    db: Session = Depends(get_db),
    org: models.Organization = Depends(get_current_organization),
    client: RouteClient = Depends(get_route_client),
):
    try:
        rec = services.get_assignment_record(db, assignment_id, org.id)
    except services.ServiceError as e:
        raise HTTPException(status_code=404, detail=str(e))
    route = client.fetch((org.latitude, org.longitude), (rec.report.latitude, rec.report.longitude))
    if route is None:
        # rute gagal bukan error fatal; peta tetap tanpa garis
        return {"assignment_id": assignment_id, "coordinates": [], "distance_meters": None, "duration_seconds": None}
    return {
        "assignment_id": assignment_id,
        "coordinates": [list(c) for c in route.coordinates],
        "distance_meters": route.distance_meters,
        "duration_seconds": route.duration_seconds,
    }
