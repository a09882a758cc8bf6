from fastapi import APIRouter, Depends, HTTPException, Header, Path, status
from sqlalchemy.orm import Session

from .. import models, services
from ..deps import get_db, get_current_organization, get_broker
from ..realtime import Broker
from ..schemas import StatusChange, TransferRequest, ReportIntake
from ..settings import INTAKE_API_KEY

router = APIRouter()


def service_error(e: services.ServiceError) -> HTTPException:
    if isinstance(e, services.NotFoundError):
        return HTTPException(status_code=404, detail=str(e))
    if isinstance(e, (services.InvalidStatusError, services.InvalidInputError, services.TransferError)):
        return HTTPException(status_code=400, detail=str(e))
    if isinstance(e, services.StatusChangeError) and e.inconsistent:
        return HTTPException(status_code=500, detail=str(e))
    return HTTPException(status_code=502, detail=str(e))


def _require_confirmation(confirmed: bool):
    if not confirmed:
        raise HTTPException(status_code=status.HTTP_428_PRECONDITION_REQUIRED, detail="Konfirmasi diperlukan")


@router.get("/reports")
def list_reports(
    db: Session = Depends(get_db),
    org: models.Organization = Depends(get_current_organization),
):
    rows = services.list_assignments(db, org.id)
    return [r.model_dump(mode="json") for r in rows]


@router.get("/reports/{assignment_id}")
def get_report(
    assignment_id: int = Path(..., ge=1),
    db: Session = Depends(get_db),
    org: models.Organization = Depends(get_current_organization),
):
    try:
        rec = services.get_assignment_record(db, assignment_id, org.id)
    except services.ServiceError as e:
        raise service_error(e)
    return rec.model_dump(mode="json")


@router.post("/reports/{assignment_id}/status")
def change_report_status(
    payload: StatusChange,
    assignment_id: int = Path(..., ge=1),
    db: Session = Depends(get_db),
    org: models.Organization = Depends(get_current_organization),
):
    _require_confirmation(payload.confirmed)
    try:
        rec = services.change_status(db, assignment_id, org.id, payload.status)
    except services.ServiceError as e:
        raise service_error(e)
    return {"message": "Status berhasil diubah", "item": rec.model_dump(mode="json")}


@router.post("/reports/{assignment_id}/transfer")
def transfer_report(
    payload: TransferRequest,
    assignment_id: int = Path(..., ge=1),
    db: Session = Depends(get_db),
    org: models.Organization = Depends(get_current_organization),
    broker: Broker = Depends(get_broker),
):
    _require_confirmation(payload.confirmed)
    try:
        rec = services.transfer(db, assignment_id, org, payload.organization_id, broker=broker)
    except services.ServiceError as e:
        raise service_error(e)
    return {"message": "Laporan berhasil dialihkan", "item": rec.model_dump(mode="json")}


@router.get("/counts")
def counts(db: Session = Depends(get_db)):
    return services.counts_summary(db)


# Masuknya laporan warga (biasanya dari aplikasi pelapor)
@router.post("/intake/reports", status_code=status.HTTP_201_CREATED)
def intake(
    payload: ReportIntake,
    x_intake_key: str | None = Header(None),
    db: Session = Depends(get_db),
    broker: Broker = Depends(get_broker),
):
    if not INTAKE_API_KEY:
        raise HTTPException(status_code=404, detail="Intake tidak aktif")
    if x_intake_key != INTAKE_API_KEY:
        raise HTTPException(status_code=403, detail="Kunci intake salah")
    try:
        rec = services.intake_report(db, payload, broker=broker)
    except services.ServiceError as e:
        raise service_error(e)
    if rec is None:
        return {"message": "Laporan disimpan tanpa instansi tujuan", "item": None}
    return {"message": "ok", "item": rec.model_dump(mode="json")}
