"""
In-process broadcast channels for report notifications.

Channels are named ``report-<organization_id>`` and carry ``new-report``
events. Publishers may run on any thread (sync endpoints run in the
threadpool); each subscription is bound to the event loop that opened it and
receives payloads through that loop.

    broker = Broker()
    with ReportListener(broker) as listener:
        listener.listen(organization_id, dispatcher)
        ...
    # channel closed here

A ``ReportListener`` owns at most one open subscription. Calling ``listen``
with a different organization or a different handler closes the previous
channel before opening the new one, so an event is never delivered twice to
the same consumer.
"""

import asyncio
import itertools
import logging
import threading
from typing import Any, Awaitable, Callable, Dict, Optional, Set

logger = logging.getLogger(__name__)

NEW_REPORT_EVENT = "new-report"

Handler = Callable[[dict], Awaitable[None]]


def report_channel(organization_id: int) -> str:
    return f"report-{organization_id}"


class ChannelError(Exception):
    """The broker could not open a channel."""


class Subscription:
    """Handle for one open channel. ``close()`` is idempotent."""

    def __init__(self, broker: "Broker", topic: str, event: str, loop: asyncio.AbstractEventLoop):
        self.broker = broker
        self.topic = topic
        self.event = event
        self.closed = False
        self._loop = loop
        self._queue: asyncio.Queue = asyncio.Queue()

    def _deliver(self, payload: dict) -> None:
        # runs on self._loop
        if not self.closed:
            self._queue.put_nowait(payload)

    async def next(self) -> dict:
        return await self._queue.get()

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        self.broker._discard(self)
        logger.debug("Channel %s closed", self.topic)

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()
        return False


class Broker:
    def __init__(self):
        self._subs: Dict[str, Set[Subscription]] = {}
        self._lock = threading.Lock()
        self._closed = False
        self._event_ids = itertools.count(1)

    def subscribe(self, topic: str, event: str = NEW_REPORT_EVENT) -> Subscription:
        if self._closed:
            raise ChannelError("Broker sudah ditutup")
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError as e:
            raise ChannelError("Subscribe harus dipanggil dari event loop") from e
        sub = Subscription(self, topic, event, loop)
        with self._lock:
            self._subs.setdefault(topic, set()).add(sub)
        logger.debug("Channel %s opened (%s)", topic, event)
        return sub

    def publish(self, topic: str, event: str = NEW_REPORT_EVENT, payload: Optional[Dict[str, Any]] = None) -> int:
        """Fan out ``payload`` to every subscriber of ``topic``/``event``.

        Safe to call from any thread. Every subscriber gets its own copy of
        the payload stamped with the same ``event_id``, unique per publish.
        Returns the number of subscriptions the payload was handed to;
        delivery itself is best effort.
        """
        with self._lock:
            event_id = next(self._event_ids)
            targets = [s for s in self._subs.get(topic, ()) if s.event == event and not s.closed]
        delivered = 0
        for sub in targets:
            try:
                sub._loop.call_soon_threadsafe(sub._deliver, {**(payload or {}), "event_id": event_id})
            except RuntimeError:
                # loop pemilik sudah berhenti
                logger.warning("Dropping subscriber on %s: event loop closed", topic)
                sub.close()
                continue
            delivered += 1
        return delivered

    def subscriber_count(self, topic: str) -> int:
        with self._lock:
            return sum(1 for s in self._subs.get(topic, ()) if not s.closed)

    def _discard(self, sub: Subscription) -> None:
        with self._lock:
            subs = self._subs.get(sub.topic)
            if subs is None:
                return
            subs.discard(sub)
            if not subs:
                self._subs.pop(sub.topic, None)

    def shutdown(self) -> None:
        self._closed = True
        with self._lock:
            subs = [s for group in self._subs.values() for s in group]
        for sub in subs:
            sub.close()


class ReportListener:
    """Keeps one live ``new-report`` subscription for one organization."""

    def __init__(self, broker: Broker, event: str = NEW_REPORT_EVENT):
        self.broker = broker
        self.event = event
        self.organization_id: Optional[int] = None
        self._handler: Optional[Handler] = None
        self._subscription: Optional[Subscription] = None
        self._task: Optional[asyncio.Task] = None

    @property
    def active(self) -> bool:
        return self._subscription is not None and not self._subscription.closed

    def listen(self, organization_id: Optional[int], handler: Handler) -> Optional[Subscription]:
        """Point the listener at ``organization_id``.

        ``None`` closes any open channel and opens nothing. A transport
        failure is logged and leaves the listener idle; the caller keeps
        working without push updates.
        """
        if organization_id is not None:
            if isinstance(organization_id, bool) or not isinstance(organization_id, int) or organization_id < 1:
                raise ValueError(f"organization_id tidak valid: {organization_id!r}")
        if self.active and organization_id == self.organization_id and handler is self._handler:
            return self._subscription

        self.close()
        if organization_id is None:
            return None
        try:
            sub = self.broker.subscribe(report_channel(organization_id), self.event)
        except ChannelError as e:
            logger.warning("Realtime channel unavailable for organization %s: %s", organization_id, e)
            return None
        self.organization_id = organization_id
        self._handler = handler
        self._subscription = sub
        self._task = asyncio.get_running_loop().create_task(self._pump(sub, handler))
        return sub

    async def _pump(self, sub: Subscription, handler: Handler) -> None:
        while True:
            payload = await sub.next()
            if sub.closed or sub is not self._subscription:
                # kiriman yang tiba setelah teardown dibuang
                return
            try:
                await handler(payload)
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("new-report handler failed on %s", sub.topic)

    def close(self) -> None:
        sub, task = self._subscription, self._task
        self._subscription = None
        self._task = None
        self._handler = None
        self.organization_id = None
        if sub is not None:
            sub.close()
        if task is not None and not task.done():
            task.cancel()

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()
        return False
