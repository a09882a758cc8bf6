"""
Backend access for assignments, organizations and counts.

Rows are mapped to the records in ``schemas`` before they leave this module;
a row that does not validate is logged and skipped instead of being passed on.
Read helpers degrade to empty results, write helpers raise ``ServiceError``.
"""

import logging
from typing import List, Optional, Tuple

from pydantic import ValidationError as RecordError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, joinedload

from . import models
from .geo import distance_km, extract_lat_long, is_renderable
from .realtime import Broker, NEW_REPORT_EVENT, report_channel
from .schemas import AssignmentRecord, OrganizationRecord, ReportIntake, ReportRecord, ReporterRecord
from .settings import STATUS_MUTATION_MODE

logger = logging.getLogger(__name__)

MUTATION_MODES = ("atomic", "compensating")


class ServiceError(Exception):
    pass


class NotFoundError(ServiceError):
    pass


class InvalidStatusError(ServiceError):
    pass


class InvalidInputError(ServiceError):
    pass


class TransferError(ServiceError):
    pass


class StatusChangeError(ServiceError):
    def __init__(self, message: str, inconsistent: bool = False):
        super().__init__(message)
        self.inconsistent = inconsistent


# ---- mapping ----

def organization_record(org: models.Organization) -> OrganizationRecord:
    return OrganizationRecord(
        id=org.id,
        name=org.name,
        latitude=org.latitude,
        longitude=org.longitude,
        user_id=org.user_id,
        instance_type=org.instance_type,
    )


def assignment_record(row: models.ReportAssignment) -> Optional[AssignmentRecord]:
    try:
        r = row.report
        reporter = None
        if r.user is not None:
            reporter = ReporterRecord(id=r.user.id, full_name=r.user.full_name, phone=r.user.phone)
        return AssignmentRecord(
            id=row.id,
            assigned_at=row.assigned_at,
            status=row.status,
            distance=row.distance,
            report=ReportRecord(
                id=r.id,
                title=r.title,
                description=r.description,
                status=r.status,
                latitude=r.latitude,
                longitude=r.longitude,
                address=r.address,
                image_url=r.image_url,
                type=r.type,
                user_id=r.user_id,
                reporter=reporter,
            ),
            organization=organization_record(row.organization),
        )
    except (RecordError, AttributeError) as e:
        logger.warning("Skipping malformed assignment %s: %s", getattr(row, "id", "?"), e)
        return None


# ---- assignments ----

def _assignment_query(db: Session):
    return db.query(models.ReportAssignment).options(
        joinedload(models.ReportAssignment.report).joinedload(models.Report.user),
        joinedload(models.ReportAssignment.organization),
    )


def list_assignments(db: Session, organization_id: int) -> List[AssignmentRecord]:
    try:
        rows = (
            _assignment_query(db)
            .filter(models.ReportAssignment.organization_id == organization_id)
            .order_by(models.ReportAssignment.assigned_at.desc(), models.ReportAssignment.id.desc())
            .all()
        )
    except SQLAlchemyError as e:
        logger.error("Error fetching reports by organization ID %s: %s", organization_id, e)
        return []
    return [rec for rec in (assignment_record(r) for r in rows) if rec is not None]


def get_assignment(db: Session, assignment_id: int, organization_id: int) -> models.ReportAssignment:
    row = (
        _assignment_query(db)
        .filter(
            models.ReportAssignment.id == assignment_id,
            models.ReportAssignment.organization_id == organization_id,
        )
        .first()
    )
    if not row:
        raise NotFoundError("Laporan tidak ditemukan")
    return row


def get_assignment_record(db: Session, assignment_id: int, organization_id: int) -> AssignmentRecord:
    rec = assignment_record(get_assignment(db, assignment_id, organization_id))
    if rec is None:
        raise NotFoundError("Data laporan rusak")
    return rec


def _set_report_status(db: Session, report_id: int, status: str) -> None:
    report = db.query(models.Report).filter(models.Report.id == report_id).first()
    if not report:
        raise NotFoundError(f"Report {report_id} tidak ditemukan")
    report.status = status
    db.flush()


def change_status(
    db: Session,
    assignment_id: int,
    organization_id: int,
    new_status: str,
    mode: str = STATUS_MUTATION_MODE,
) -> AssignmentRecord:
    """Set the assignment status and the underlying report status.

    ``mode="atomic"`` writes both rows in one transaction. ``"compensating"``
    commits them separately and restores the assignment if the report write
    fails. A partial result is always raised as ``StatusChangeError``.
    """
    if new_status not in models.REPORT_STATUSES:
        raise InvalidStatusError(f"Status tidak valid: {new_status}")
    if mode not in MUTATION_MODES:
        raise ServiceError(f"STATUS_MUTATION_MODE tidak dikenal: {mode}")

    row = get_assignment(db, assignment_id, organization_id)
    report_id = row.report_id

    if mode == "atomic":
        try:
            row.status = new_status
            _set_report_status(db, report_id, new_status)
            db.commit()
        except (SQLAlchemyError, ServiceError) as e:
            db.rollback()
            logger.error("Status change of assignment %s rolled back: %s", assignment_id, e)
            raise StatusChangeError("Gagal mengubah status laporan") from e
    else:
        previous = row.status
        try:
            row.status = new_status
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            logger.error("Assignment %s status update failed: %s", assignment_id, e)
            raise StatusChangeError("Gagal mengubah status laporan") from e
        try:
            _set_report_status(db, report_id, new_status)
            db.commit()
        except (SQLAlchemyError, ServiceError) as e:
            db.rollback()
            logger.warning("Report %s status update failed, restoring assignment %s: %s", report_id, assignment_id, e)
            try:
                row = db.query(models.ReportAssignment).filter(models.ReportAssignment.id == assignment_id).first()
                row.status = previous
                db.commit()
            except SQLAlchemyError as e2:
                db.rollback()
                logger.error("Assignment %s and report %s are now inconsistent: %s", assignment_id, report_id, e2)
                raise StatusChangeError("Status laporan tidak konsisten, coba lagi", inconsistent=True) from e2
            raise StatusChangeError("Gagal mengubah status laporan") from e

    return get_assignment_record(db, assignment_id, organization_id)


def announce_new_report(broker: Optional[Broker], organization_id: int, assignment: models.ReportAssignment) -> int:
    if broker is None:
        return 0
    return broker.publish(
        report_channel(organization_id),
        NEW_REPORT_EVENT,
        {
            "report_id": assignment.report_id,
            "assignment_id": assignment.id,
            "title": assignment.report.title if assignment.report else None,
        },
    )


def transfer(
    db: Session,
    assignment_id: int,
    current: models.Organization,
    target_organization_id: int,
    broker: Optional[Broker] = None,
) -> AssignmentRecord:
    row = get_assignment(db, assignment_id, current.id)
    if target_organization_id == current.id:
        raise TransferError("Laporan sudah berada di instansi ini")
    target = db.query(models.Organization).filter(models.Organization.id == target_organization_id).first()
    if not target:
        raise NotFoundError("Instansi tujuan tidak ditemukan")
    if target.instance_type != current.instance_type:
        raise TransferError("Instansi tujuan harus berjenis sama")

    try:
        row.organization_id = target.id
        row.distance = distance_km((target.latitude, target.longitude), (row.report.latitude, row.report.longitude))
        db.commit()
    except (SQLAlchemyError, ValueError) as e:
        db.rollback()
        logger.error("Transfer of assignment %s failed: %s", assignment_id, e)
        raise TransferError("Gagal mengalihkan laporan") from e

    db.refresh(row)
    announce_new_report(broker, target.id, row)
    return get_assignment_record(db, assignment_id, target.id)


# ---- organizations ----

def search_organizations(db: Session, current: models.Organization, q: Optional[str] = None, limit: int = 50) -> List[models.Organization]:
    qs = db.query(models.Organization).filter(
        models.Organization.instance_type == current.instance_type,
        models.Organization.id != current.id,
    )
    term = (q or "").strip()
    if term:
        qs = qs.filter(models.Organization.name.ilike(f"%{term}%"))
    return qs.order_by(models.Organization.name.asc()).limit(limit).all()


def upsert_organization(
    db: Session,
    user: models.User,
    name: str,
    lat_long: str,
    instance_type: str,
) -> Tuple[models.Organization, bool]:
    """Create or update the user's organization. Returns (row, created)."""
    nama = (name or "").strip()
    if not nama:
        raise InvalidInputError("Nama instansi wajib diisi")
    if instance_type not in models.INSTANCE_TYPES:
        raise InvalidInputError("Jenis instansi tidak valid")
    coords = extract_lat_long(lat_long)
    if not is_renderable(coords.latitude, coords.longitude):
        raise InvalidInputError("Latitude atau longitude tidak valid")

    org = db.query(models.Organization).filter(models.Organization.user_id == user.id).first()
    created = org is None
    try:
        if created:
            org = models.Organization(
                name=nama,
                latitude=coords.latitude,
                longitude=coords.longitude,
                user_id=user.id,
                instance_type=instance_type,
            )
            db.add(org)
            increment_count_by_type(db, instance_type)
        else:
            if org.instance_type != instance_type:
                increment_count_by_type(db, org.instance_type, -1)
                increment_count_by_type(db, instance_type)
            org.name = nama
            org.latitude = coords.latitude
            org.longitude = coords.longitude
            org.instance_type = instance_type
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error("Saving organization for user %s failed: %s", user.id, e)
        raise ServiceError("Gagal menyimpan instansi") from e
    db.refresh(org)
    return org, created


# ---- counts ----

def get_count_by_type(db: Session, type_: str) -> int:
    try:
        row = db.query(models.Count).filter(models.Count.title == type_).first()
    except SQLAlchemyError as e:
        logger.error("Error fetching count by type %s: %s", type_, e)
        return 0
    return row.value if row else 0


def increment_count_by_type(db: Session, type_: str, by: int = 1) -> None:
    """Adjust a counter inside the caller's transaction."""
    row = db.query(models.Count).filter(models.Count.title == type_).first()
    if not row:
        row = models.Count(title=type_, value=0)
        db.add(row)
    row.value = max((row.value or 0) + by, 0)
    db.flush()


def counts_summary(db: Session) -> dict:
    return {t: get_count_by_type(db, t) for t in models.INSTANCE_TYPES}


# ---- intake ----

def intake_report(db: Session, payload: ReportIntake, broker: Optional[Broker] = None) -> Optional[AssignmentRecord]:
    """Store a citizen report and route it to the nearest organization of its type."""
    report = models.Report(
        title=payload.title,
        description=payload.description,
        status="pending",
        latitude=payload.latitude,
        longitude=payload.longitude,
        address=payload.address,
        image_url=payload.image_url,
        type=payload.type,
        user_id=payload.user_id,
    )
    try:
        db.add(report)
        db.flush()
        candidates = db.query(models.Organization).filter(models.Organization.instance_type == payload.type).all()
        point = (payload.latitude, payload.longitude)
        nearest, best = None, None
        for org in candidates:
            if not is_renderable(org.latitude, org.longitude):
                continue
            d = distance_km((org.latitude, org.longitude), point)
            if best is None or d < best:
                nearest, best = org, d
        assignment = None
        if nearest is not None:
            assignment = models.ReportAssignment(
                report_id=report.id,
                organization_id=nearest.id,
                status="pending",
                distance=best,
            )
            db.add(assignment)
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error("Report intake failed: %s", e)
        raise ServiceError("Gagal menyimpan laporan") from e

    if assignment is None:
        logger.warning("No %s organization available for report %s", payload.type, report.id)
        return None
    db.refresh(assignment)
    announce_new_report(broker, nearest.id, assignment)
    return get_assignment_record(db, assignment.id, nearest.id)
