"""
Map markers derived from assignments.

The organization gets one fixed marker; every report whose status is not
terminal gets a pulsing circle. Markers are recomputed on every refresh and
never stored.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, List, Optional
from urllib.parse import urlencode

from .geo import is_renderable
from .schemas import AssignmentRecord, OrganizationRecord
from .settings import PULSE_MAX_RADIUS, PULSE_MIN_RADIUS, PULSE_PERIOD_MS, PULSE_STEP

logger = logging.getLogger(__name__)

STATUS_COLORS = {
    "pending": "orange",
    "process": "blue",
    "success": "green",
    "error": "red",
    "fiktif": "purple",
}
UNKNOWN_COLOR = "grey"

BADGE_CLASSES = {
    "pending": "bg-yellow-500",
    "process": "bg-blue-500",
    "success": "bg-green-500",
    "error": "bg-red-500",
    "fiktif": "bg-purple-500",
}
UNKNOWN_BADGE = "bg-gray-500"

TERMINAL_STATUSES = frozenset({"success", "error"})


def status_color(status) -> str:
    if not isinstance(status, str):
        return UNKNOWN_COLOR
    return STATUS_COLORS.get(status, UNKNOWN_COLOR)


def badge_class(status) -> str:
    if not isinstance(status, str):
        return UNKNOWN_BADGE
    return BADGE_CLASSES.get(status, UNKNOWN_BADGE)


def is_live(status) -> bool:
    return status not in TERMINAL_STATUSES


@dataclass(frozen=True)
class Marker:
    id: str
    name: str
    latitude: float
    longitude: float
    user_id: Optional[int] = None
    status: Optional[str] = None
    address: Optional[str] = None
    assignment_id: Optional[int] = None

    @property
    def color(self) -> str:
        return status_color(self.status)

    @property
    def position(self) -> tuple[float, float]:
        return (self.latitude, self.longitude)


def organization_marker(org: OrganizationRecord) -> Optional[Marker]:
    if not is_renderable(org.latitude, org.longitude):
        logger.warning("Organization %s has no usable coordinates", org.id)
        return None
    return Marker(
        id=f"org-{org.id}",
        name=org.name,
        latitude=org.latitude,
        longitude=org.longitude,
        user_id=org.user_id,
    )


def report_markers(assignments: Iterable[AssignmentRecord]) -> List[Marker]:
    out = []
    for a in assignments:
        r = a.report
        out.append(Marker(
            id=f"report-{a.id}",
            name=r.title,
            latitude=r.latitude,
            longitude=r.longitude,
            user_id=r.user_id,
            status=a.status,
            address=r.address,
            assignment_id=a.id,
        ))
    return out


def live_markers(markers: Iterable[Marker]) -> List[Marker]:
    """Markers that belong on the live map: non-terminal and drawable."""
    return [m for m in markers if is_live(m.status) and is_renderable(m.latitude, m.longitude)]


def directions_url(origin: tuple[float, float], destination: tuple[float, float]) -> str:
    query = urlencode({
        "api": 1,
        "origin": f"{origin[0]},{origin[1]}",
        "destination": f"{destination[0]},{destination[1]}",
        "travelmode": "driving",
    })
    return f"https://www.google.com/maps/dir/?{query}"


class PulseAnimation:
    """Triangle-wave radius between ``min_radius`` and ``max_radius``."""

    def __init__(
        self,
        min_radius: float = PULSE_MIN_RADIUS,
        max_radius: float = PULSE_MAX_RADIUS,
        step: float = PULSE_STEP,
        radius: Optional[float] = None,
        growing: bool = True,
    ):
        if min_radius >= max_radius or step <= 0:
            raise ValueError("Batas pulse tidak valid")
        self.min_radius = min_radius
        self.max_radius = max_radius
        self.step = step
        self.radius = min_radius if radius is None else min(max(radius, min_radius), max_radius)
        self.growing = growing
        self._cancelled = False

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        self._cancelled = True

    def tick(self) -> float:
        if self._cancelled:
            return self.radius
        if self.growing:
            self.radius = min(self.radius + self.step, self.max_radius)
            if self.radius >= self.max_radius:
                self.growing = False
        else:
            self.radius = max(self.radius - self.step, self.min_radius)
            if self.radius <= self.min_radius:
                self.growing = True
        return self.radius

    async def run(self, on_tick: Callable[[float], None], period_ms: int = PULSE_PERIOD_MS) -> None:
        """Tick every ``period_ms`` until cancelled."""
        while not self._cancelled:
            on_tick(self.tick())
            await asyncio.sleep(period_ms / 1000)

    def to_state(self) -> list:
        return [self.radius, self.growing]

    @classmethod
    def from_state(cls, state, **bounds) -> "PulseAnimation":
        radius, growing = state
        return cls(radius=float(radius), growing=bool(growing), **bounds)


@dataclass
class InfoOverlay:
    marker: Marker
    is_current: bool
    lines: List[str] = field(default_factory=list)
    directions: Optional[str] = None


class MarkerLayer:
    """Map-view state: markers, their pulses, and at most one open overlay."""

    def __init__(self, min_radius: float = PULSE_MIN_RADIUS, max_radius: float = PULSE_MAX_RADIUS, step: float = PULSE_STEP):
        self._bounds = {"min_radius": min_radius, "max_radius": max_radius, "step": step}
        self.organization: Optional[Marker] = None
        self.markers: Dict[str, Marker] = {}
        self.pulses: Dict[str, PulseAnimation] = {}
        self.overlay: Optional[InfoOverlay] = None

    def sync(self, organization: Optional[Marker], markers: Iterable[Marker]) -> None:
        self.organization = organization
        fresh = {m.id: m for m in live_markers(markers)}
        for gone in set(self.pulses) - set(fresh):
            self.pulses.pop(gone).cancel()
        for mid in fresh:
            if mid not in self.pulses:
                self.pulses[mid] = PulseAnimation(**self._bounds)
        self.markers = fresh
        if self.overlay is not None and self._lookup(self.overlay.marker.id) is None:
            self.overlay = None

    def tick(self) -> Dict[str, float]:
        return {mid: p.tick() for mid, p in self.pulses.items()}

    def radius(self, marker_id: str) -> float:
        pulse = self.pulses.get(marker_id)
        return pulse.radius if pulse else self._bounds["min_radius"]

    def _lookup(self, marker_id: str) -> Optional[Marker]:
        if self.organization is not None and self.organization.id == marker_id:
            return self.organization
        return self.markers.get(marker_id)

    def select(self, marker_id: str) -> Optional[InfoOverlay]:
        """Open the overlay for ``marker_id``, closing any other one."""
        marker = self._lookup(marker_id)
        self.overlay = None
        if marker is None:
            return None
        is_current = self.organization is not None and marker.id == self.organization.id
        lines = []
        if is_current:
            lines.append("Posisi Anda Sekarang")
        else:
            lines.append((marker.status or "-").upper())
        lines.append(f"Nama: {marker.name}")
        if marker.address:
            lines.append(f"Alamat: {marker.address}")
        lines.append(f"Latitude: {marker.latitude}")
        lines.append(f"Longitude: {marker.longitude}")
        directions = None
        if not is_current and self.organization is not None:
            directions = directions_url(self.organization.position, marker.position)
        self.overlay = InfoOverlay(marker=marker, is_current=is_current, lines=lines, directions=directions)
        return self.overlay

    def state(self) -> dict:
        return {
            "pulses": {mid: p.to_state() for mid, p in self.pulses.items()},
            "overlay": self.overlay.marker.id if self.overlay else None,
        }

    def restore(self, state: Optional[dict]) -> None:
        """Reapply pulse phases and the open overlay saved by ``state()``."""
        if not state:
            return
        for mid, saved in (state.get("pulses") or {}).items():
            if mid in self.pulses:
                self.pulses[mid] = PulseAnimation.from_state(saved, **self._bounds)
        overlay_id = state.get("overlay")
        if overlay_id:
            self.select(overlay_id)
