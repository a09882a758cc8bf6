"""
Report list state for one view.

Rows are the organization's assignments, newest first. Status changes and
transfers are staged as a ``PendingAction``: nothing reaches the backend
until ``confirm()``; ``cancel()`` leaves rows and backend untouched.
"""

import logging
from typing import Callable, List, Optional

from sqlalchemy.orm import Session

from . import models, services
from .realtime import Broker
from .schemas import AssignmentRecord
from .settings import STATUS_MUTATION_MODE

logger = logging.getLogger(__name__)


class PendingAction:
    def __init__(self, kind: str, assignment_id: int, message: str, run: Callable[[], AssignmentRecord]):
        self.kind = kind
        self.assignment_id = assignment_id
        self.message = message
        self._run = run
        self.done = False

    def confirm(self) -> AssignmentRecord:
        if self.done:
            raise RuntimeError("Aksi sudah diproses")
        self.done = True
        return self._run()

    def cancel(self) -> None:
        self.done = True


class ReportBoard:
    def __init__(
        self,
        session_factory: Callable[[], Session],
        organization_id: int,
        broker: Optional[Broker] = None,
        mode: str = STATUS_MUTATION_MODE,
    ):
        self._session_factory = session_factory
        self.organization_id = organization_id
        self.broker = broker
        self.mode = mode
        self.rows: List[AssignmentRecord] = []
        self.pending: Optional[PendingAction] = None

    def load(self) -> List[AssignmentRecord]:
        db = self._session_factory()
        try:
            self.rows = services.list_assignments(db, self.organization_id)
        finally:
            db.close()
        return self.rows

    refetch = load

    def find(self, assignment_id: int) -> Optional[AssignmentRecord]:
        for row in self.rows:
            if row.id == assignment_id:
                return row
        return None

    def _require(self, assignment_id: int) -> AssignmentRecord:
        row = self.find(assignment_id)
        if row is None:
            raise services.NotFoundError("Laporan tidak ada di daftar")
        return row

    def request_status_change(self, assignment_id: int, status: str) -> PendingAction:
        row = self._require(assignment_id)
        if status not in models.REPORT_STATUSES:
            raise services.InvalidStatusError(f"Status tidak valid: {status}")
        message = f'Ubah status laporan "{row.report.title}" menjadi {status.upper()}?'
        self.pending = PendingAction("status", assignment_id, message, lambda: self._apply_status(assignment_id, status))
        return self.pending

    def request_transfer(self, assignment_id: int, organization_id: int, organization_name: Optional[str] = None) -> PendingAction:
        row = self._require(assignment_id)
        if organization_id == self.organization_id:
            raise services.TransferError("Laporan sudah berada di instansi ini")
        target = organization_name or f"instansi #{organization_id}"
        message = f'Alihkan laporan "{row.report.title}" ke {target}?'
        self.pending = PendingAction("transfer", assignment_id, message, lambda: self._apply_transfer(assignment_id, organization_id))
        return self.pending

    def cancel_pending(self) -> None:
        if self.pending is not None:
            self.pending.cancel()
        self.pending = None

    def confirm_pending(self) -> AssignmentRecord:
        action, self.pending = self.pending, None
        if action is None:
            raise services.ServiceError("Tidak ada aksi yang menunggu konfirmasi")
        return action.confirm()

    def _apply_status(self, assignment_id: int, status: str) -> AssignmentRecord:
        db = self._session_factory()
        try:
            updated = services.change_status(db, assignment_id, self.organization_id, status, mode=self.mode)
        finally:
            db.close()
        self.rows = [updated if r.id == assignment_id else r for r in self.rows]
        return updated

    def _apply_transfer(self, assignment_id: int, organization_id: int) -> AssignmentRecord:
        db = self._session_factory()
        try:
            current = db.query(models.Organization).filter(models.Organization.id == self.organization_id).first()
            if current is None:
                raise services.NotFoundError("Instansi tidak ditemukan")
            moved = services.transfer(db, assignment_id, current, organization_id, broker=self.broker)
        finally:
            db.close()
        # sudah bukan milik instansi ini
        self.rows = [r for r in self.rows if r.id != assignment_id]
        return moved
