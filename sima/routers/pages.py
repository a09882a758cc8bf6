# sima/routers/pages.py
import logging
import re
from typing import Optional
from urllib.parse import urlencode

from fastapi import APIRouter, Depends, Form, HTTPException, Query, Request, status
from fastapi.responses import HTMLResponse, RedirectResponse
from sqlalchemy.orm import Session

from .. import models, services
from ..deps import get_db, get_current_user, get_broker, organization_of
from ..markers import badge_class, directions_url, status_color
from ..notifications import sound_enabled_from
from ..realtime import Broker
from ..settings import STATUS_MUTATION_MODE, templates

logger = logging.getLogger(__name__)

router = APIRouter()

templates.env.globals.update(badge_class=badge_class, status_color=status_color, sound_enabled=sound_enabled_from)

STATUS_LABELS = {
    "pending": "Pending",
    "process": "Diproses",
    "success": "Selesai",
    "error": "Gagal",
    "fiktif": "Fiktif",
}


def dial_number(phone: Optional[str]) -> Optional[str]:
    """Nomor telepon dalam format 62xxxx untuk tautan tel:/wa."""
    digits = re.sub(r"\D", "", phone or "")
    if not digits:
        return None
    if digits.startswith("62"):
        return digits
    if digits.startswith("0"):
        digits = digits[1:]
    return f"62{digits}"


def _redirect(url: str, toast: Optional[str] = None, level: str = "success") -> RedirectResponse:
    if toast:
        url = f"{url}?{urlencode({'toast': toast, 'level': level})}"
    return RedirectResponse(url=url, status_code=status.HTTP_303_SEE_OTHER)


def _detail_or_404(db: Session, assignment_id: int, org: models.Organization):
    try:
        return services.get_assignment_record(db, assignment_id, org.id)
    except services.NotFoundError:
        raise HTTPException(status_code=404, detail="Laporan tidak ditemukan")


@router.get("/", response_class=HTMLResponse, include_in_schema=False)
def home(request: Request, db: Session = Depends(get_db), user: models.User = Depends(get_current_user)):
    counts = services.counts_summary(db)
    return templates.TemplateResponse(
        request,
        "home.html",
        {"user": user, "counts": counts, "org": organization_of(db, user)},
    )


@router.get("/report", response_class=HTMLResponse, include_in_schema=False)
def report_list(request: Request, db: Session = Depends(get_db), user: models.User = Depends(get_current_user)):
    org = organization_of(db, user)
    if org is None:
        return _redirect("/settings/instansi", "Atur instansi terlebih dahulu", "error")
    rows = services.list_assignments(db, org.id)
    return templates.TemplateResponse(
        request,
        "report.html",
        {
            "user": user,
            "org": org,
            "rows": rows,
            "statuses": models.REPORT_STATUSES,
            "status_labels": STATUS_LABELS,
        },
    )


@router.get("/report/{assignment_id}", response_class=HTMLResponse, include_in_schema=False)
def report_detail(
    request: Request,
    assignment_id: int,
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
):
    org = organization_of(db, user)
    if org is None:
        return _redirect("/settings/instansi", "Atur instansi terlebih dahulu", "error")
    rec = _detail_or_404(db, assignment_id, org)
    reporter = rec.report.reporter
    return templates.TemplateResponse(
        request,
        "report_detail.html",
        {
            "user": user,
            "org": org,
            "item": rec,
            "dial": dial_number(reporter.phone if reporter else None),
            "directions": directions_url((org.latitude, org.longitude), (rec.report.latitude, rec.report.longitude)),
            "statuses": models.REPORT_STATUSES,
            "status_labels": STATUS_LABELS,
        },
    )


# ---- status: GET = konfirmasi, POST = eksekusi ----

@router.get("/report/{assignment_id}/status", response_class=HTMLResponse, include_in_schema=False)
def confirm_status(
    request: Request,
    assignment_id: int,
    status_value: str = Query(..., alias="status"),
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
):
    org = organization_of(db, user)
    if org is None:
        return _redirect("/settings/instansi", "Atur instansi terlebih dahulu", "error")
    if status_value not in models.REPORT_STATUSES:
        raise HTTPException(status_code=400, detail=f"Status tidak valid: {status_value}")
    rec = _detail_or_404(db, assignment_id, org)
    return templates.TemplateResponse(
        request,
        "confirm.html",
        {
            "user": user,
            "title": "Ubah Status",
            "message": f'Ubah status laporan "{rec.report.title}" menjadi {status_value.upper()}?',
            "action": f"/report/{assignment_id}/status",
            "fields": {"status": status_value},
            "cancel_url": "/report",
        },
    )


@router.post("/report/{assignment_id}/status", include_in_schema=False)
def apply_status(
    assignment_id: int,
    status_value: str = Form(..., alias="status"),
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
):
    org = organization_of(db, user)
    if org is None:
        return _redirect("/settings/instansi", "Atur instansi terlebih dahulu", "error")
    try:
        services.change_status(db, assignment_id, org.id, status_value, mode=STATUS_MUTATION_MODE)
    except services.NotFoundError:
        raise HTTPException(status_code=404, detail="Laporan tidak ditemukan")
    except services.ServiceError as e:
        return _redirect("/report", str(e), "error")
    return _redirect("/report", "Status berhasil diubah")


# ---- transfer: GET = pilih/konfirmasi, POST = eksekusi ----

@router.get("/report/{assignment_id}/transfer", response_class=HTMLResponse, include_in_schema=False)
def confirm_transfer(
    request: Request,
    assignment_id: int,
    organization_id: Optional[int] = Query(None, ge=1),
    q: Optional[str] = Query(None),
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
):
    org = organization_of(db, user)
    if org is None:
        return _redirect("/settings/instansi", "Atur instansi terlebih dahulu", "error")
    rec = _detail_or_404(db, assignment_id, org)
    candidates = services.search_organizations(db, org, q=q)
    target = None
    if organization_id is not None:
        target = next((c for c in candidates if c.id == organization_id), None)
        if target is None:
            target = (
                db.query(models.Organization)
                .filter(
                    models.Organization.id == organization_id,
                    models.Organization.instance_type == org.instance_type,
                    models.Organization.id != org.id,
                )
                .first()
            )
        if target is None:
            raise HTTPException(status_code=404, detail="Instansi tujuan tidak ditemukan")
    return templates.TemplateResponse(
        request,
        "transfer.html",
        {
            "user": user,
            "item": rec,
            "candidates": candidates,
            "q": q or "",
            "target": target,
            "message": f'Alihkan laporan "{rec.report.title}" ke {target.name}?' if target else None,
        },
    )


@router.post("/report/{assignment_id}/transfer", include_in_schema=False)
def apply_transfer(
    assignment_id: int,
    organization_id: int = Form(...),
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
    broker: Broker = Depends(get_broker),
):
    org = organization_of(db, user)
    if org is None:
        return _redirect("/settings/instansi", "Atur instansi terlebih dahulu", "error")
    try:
        services.transfer(db, assignment_id, org, organization_id, broker=broker)
    except services.ServiceError as e:
        return _redirect("/report", str(e), "error")
    return _redirect("/report", "Laporan berhasil dialihkan")


# ---- pengaturan instansi ----

@router.get("/settings/instansi", response_class=HTMLResponse, include_in_schema=False)
def settings_page(request: Request, db: Session = Depends(get_db), user: models.User = Depends(get_current_user)):
    org = organization_of(db, user)
    form = {
        "name": org.name if org else "",
        "lat_long": f"{org.latitude}, {org.longitude}" if org else "",
        "instance_type": org.instance_type if org else (user.account_type if user.account_type in models.INSTANCE_TYPES else "ambulance"),
    }
    return templates.TemplateResponse(
        request,
        "settings_instansi.html",
        {"user": user, "org": org, "form": form, "instance_types": models.INSTANCE_TYPES},
    )


@router.post("/settings/instansi", response_class=HTMLResponse, include_in_schema=False)
def save_settings(
    request: Request,
    name: str = Form(""),
    lat_long: str = Form(""),
    instance_type: str = Form(...),
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
):
    try:
        _, created = services.upsert_organization(db, user, name, lat_long, instance_type)
    except services.ServiceError as e:
        return templates.TemplateResponse(
            request,
            "settings_instansi.html",
            {
                "user": user,
                "org": organization_of(db, user),
                "form": {"name": name, "lat_long": lat_long, "instance_type": instance_type},
                "instance_types": models.INSTANCE_TYPES,
                "error": str(e),
            },
            status_code=status.HTTP_400_BAD_REQUEST,
        )
    return _redirect("/settings/instansi", "Data saved successfully!" if created else "Data updated successfully!")
