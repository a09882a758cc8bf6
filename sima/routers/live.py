"""
Live report list over a websocket.

/ws/reports
    server -> client
        {"type": "rows", "rows": [...]}            snapshot of the list
        {"type": "confirm", "kind", "assignment_id", "message"}
        {"type": "toast", "level", "message"}
        {"type": "sound", "url"}
        {"type": "error", "detail"}
        {"type": "pong"}
    client -> server
        {"action": "status", "assignment_id", "status"}
        {"action": "transfer", "assignment_id", "organization_id", "organization_name"?}
        {"action": "confirm"} / {"action": "cancel"} / {"action": "ping"}

Each connection owns one ReportBoard and one ReportListener on
``report-<organization_id>``; both go away when the socket closes.
"""

import asyncio
import json
import logging

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool

from .. import models, services
from ..board import ReportBoard
from ..database import SessionLocal
from ..deps import get_current_user, organization_of, user_from_cookie
from ..notifications import NotificationDispatcher
from ..realtime import ReportListener
from ..schemas import SoundPreference
from ..settings import COOKIE_SECURE, SOUND_PREF_COOKIE

logger = logging.getLogger(__name__)

router = APIRouter()        # /api/preferences/*
router_ws = APIRouter()     # /ws/*


@router.post("/preferences/sound")
def set_sound_preference(payload: SoundPreference, user: models.User = Depends(get_current_user)):
    value = "true" if payload.enabled else "false"
    resp = JSONResponse({"enabled": payload.enabled})
    # dibaca JS juga, jadi tidak httponly
    resp.set_cookie(
        SOUND_PREF_COOKIE,
        value,
        samesite="lax",
        secure=COOKIE_SECURE,
        max_age=365 * 24 * 3600,
    )
    return resp


def _resolve_organization(token_cookie):
    db = SessionLocal()
    try:
        user = user_from_cookie(db, token_cookie)
        if user is None:
            return None, None
        org = organization_of(db, user)
        if org is None:
            return user.id, None
        return user.id, (org.id, org.instance_type)
    finally:
        db.close()


def _rows_message(rows) -> dict:
    return {"type": "rows", "rows": [r.model_dump(mode="json") for r in rows]}


def _error_detail(e: Exception) -> str:
    if isinstance(e, services.ServiceError):
        return str(e)
    return "Terjadi kesalahan"


class _Session:
    """One websocket client: serialized sends plus the board it drives."""

    def __init__(self, websocket: WebSocket, board: ReportBoard):
        self.ws = websocket
        self.board = board
        self._send_lock = asyncio.Lock()

    async def send(self, message: dict) -> None:
        async with self._send_lock:
            await self.ws.send_json(message)

    async def send_rows(self) -> None:
        await self.send(_rows_message(self.board.rows))

    async def refetch(self) -> None:
        await run_in_threadpool(self.board.refetch)
        await self.send_rows()

    async def handle(self, message: dict) -> None:
        action = message.get("action")
        if action == "ping":
            await self.send({"type": "pong"})
            return
        try:
            if action == "status":
                pending = self.board.request_status_change(int(message.get("assignment_id")), str(message.get("status")))
                await self._ask(pending)
            elif action == "transfer":
                pending = self.board.request_transfer(
                    int(message.get("assignment_id")),
                    int(message.get("organization_id")),
                    message.get("organization_name"),
                )
                await self._ask(pending)
            elif action == "cancel":
                self.board.cancel_pending()
            elif action == "confirm":
                kind = self.board.pending.kind if self.board.pending else None
                await run_in_threadpool(self.board.confirm_pending)
                text = "Status berhasil diubah" if kind == "status" else "Laporan berhasil dialihkan"
                await self.send({"type": "toast", "level": "success", "message": text})
                await self.send_rows()
            else:
                await self.send({"type": "error", "detail": f"Aksi tidak dikenal: {action}"})
        except (TypeError, ValueError):
            await self.send({"type": "error", "detail": "Data aksi tidak valid"})
        except services.ServiceError as e:
            logger.warning("Live action %s failed: %s", action, e)
            await self.send({"type": "toast", "level": "error", "message": _error_detail(e)})
            if action == "confirm":
                # tampilkan ulang kondisi backend setelah kegagalan
                await self.refetch()

    async def _ask(self, pending) -> None:
        await self.send({
            "type": "confirm",
            "kind": pending.kind,
            "assignment_id": pending.assignment_id,
            "message": pending.message,
        })


@router_ws.websocket("/ws/reports")
async def ws_reports(websocket: WebSocket):
    user_id, org = await run_in_threadpool(_resolve_organization, websocket.cookies.get("access_token"))
    if user_id is None:
        await websocket.close(code=4001, reason="Not authenticated")
        return
    if org is None:
        await websocket.close(code=4009, reason="Instansi belum diatur")
        return
    org_id, instance_type = org

    await websocket.accept()
    broker = websocket.app.state.broker
    board = ReportBoard(SessionLocal, org_id, broker)
    session = _Session(websocket, board)
    await run_in_threadpool(board.load)
    await session.send_rows()

    # preferensi suara dicek di browser saat pesan "sound" tiba
    dispatcher = NotificationDispatcher(
        session.send,
        toast=True,
        sound=True,
        instance_type=instance_type,
        refetch=session.refetch,
    )

    with ReportListener(broker) as listener:
        listener.listen(org_id, dispatcher)
        try:
            while True:
                raw = await websocket.receive_text()
                try:
                    message = json.loads(raw)
                except json.JSONDecodeError as e:
                    logger.warning("Invalid JSON received: %s", e)
                    await session.send({"type": "error", "detail": "JSON tidak valid"})
                    continue
                if not isinstance(message, dict):
                    await session.send({"type": "error", "detail": "JSON tidak valid"})
                    continue
                await session.handle(message)
        except WebSocketDisconnect:
            logger.debug("Live client for organization %s disconnected", org_id)
        finally:
            board.cancel_pending()
