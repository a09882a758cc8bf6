import logging
from collections import deque
from typing import Awaitable, Callable, Mapping, Optional

from .settings import SOUND_BASE_URL, SOUND_PREF_COOKIE

logger = logging.getLogger(__name__)

NEW_REPORT_MESSAGE = "Terdapat laporan baru"

Send = Callable[[dict], Awaitable[None]]
Refetch = Callable[[], Awaitable[None]]


def sound_enabled_from(cookies: Mapping[str, str]) -> bool:
    # hanya "true" yang aktif, default mati
    return (cookies.get(SOUND_PREF_COOKIE) or "").strip().lower() == "true"


def sound_url(instance_type: str) -> str:
    return f"{SOUND_BASE_URL}/{instance_type}.mp3"


class NotificationDispatcher:
    """Turns a ``new-report`` payload into toast/sound/refetch reactions.

    Each reaction is opt-in. A payload is handled once per broker event id,
    so a redelivered event does not ring twice while a later announcement
    of the same report (e.g. transferred away and back) still comes through.
    The sound message is always sent; the browser decides whether to play it
    from the current preference cookie, which can change mid-session.
    """

    def __init__(
        self,
        send: Send,
        *,
        toast: bool = True,
        sound: bool = False,
        instance_type: Optional[str] = None,
        refetch: Optional[Refetch] = None,
        history: int = 128,
    ):
        self.send = send
        self.toast = toast
        self.sound = sound
        self.instance_type = instance_type
        self.refetch = refetch
        self._seen: deque = deque(maxlen=history)

    async def __call__(self, payload: dict) -> None:
        event_id = payload.get("event_id")
        if event_id is not None:
            if event_id in self._seen:
                logger.debug("Duplicate new-report event %s ignored", event_id)
                return
            self._seen.append(event_id)

        if self.toast:
            await self.send({
                "type": "toast",
                "level": "success",
                "message": NEW_REPORT_MESSAGE,
                "title": payload.get("title"),
                "report_id": payload.get("report_id"),
            })
        if self.sound and self.instance_type:
            await self.send({"type": "sound", "url": sound_url(self.instance_type)})
        if self.refetch is not None:
            await self.refetch()
