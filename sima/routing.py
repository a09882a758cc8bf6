"""
Route service (OSRM)

Fetches the driving route from an organization to a report location and
decodes the route geometry for the map.

OSRM returns ``routes[0].geometry`` as an encoded polyline (precision 5):
every coordinate is stored as a delta from the previous point, zig-zag
encoded, split into 5-bit groups with 0x20 as the continuation bit and
offset by 63 into printable ASCII.

Dependencies:
    - httpx
    - OSRM HTTP API (public demo server by default, see OSRM_BASE_URL)
"""

import logging
from dataclasses import dataclass
from typing import Iterable, List, Optional, Tuple

import httpx

from .geo import is_renderable
from .settings import OSRM_BASE_URL, ROUTE_TIMEOUT

logger = logging.getLogger(__name__)

LatLon = Tuple[float, float]


def decode_polyline(encoded: str, precision: int = 5) -> List[LatLon]:
    coordinates: List[LatLon] = []
    factor = 10 ** precision
    index = lat = lng = 0
    length = len(encoded)

    while index < length:
        deltas = []
        for _ in range(2):
            shift = result = 0
            while True:
                if index >= length:
                    raise ValueError("Polyline terpotong")
                b = ord(encoded[index]) - 63
                index += 1
                if not 0 <= b < 64:
                    raise ValueError(f"Karakter polyline tidak valid di posisi {index - 1}")
                result |= (b & 0x1F) << shift
                shift += 5
                if b < 0x20:
                    break
            deltas.append(~(result >> 1) if result & 1 else result >> 1)
        lat += deltas[0]
        lng += deltas[1]
        coordinates.append((lat / factor, lng / factor))

    return coordinates


def _encode_value(value: int) -> str:
    value = ~(value << 1) if value < 0 else value << 1
    chunks = []
    while value >= 0x20:
        chunks.append(chr((0x20 | (value & 0x1F)) + 63))
        value >>= 5
    chunks.append(chr(value + 63))
    return "".join(chunks)


def encode_polyline(coordinates: Iterable[LatLon], precision: int = 5) -> str:
    factor = 10 ** precision
    out = []
    prev_lat = prev_lng = 0
    for lat, lng in coordinates:
        ilat, ilng = int(round(lat * factor)), int(round(lng * factor))
        out.append(_encode_value(ilat - prev_lat))
        out.append(_encode_value(ilng - prev_lng))
        prev_lat, prev_lng = ilat, ilng
    return "".join(out)


@dataclass
class Route:
    coordinates: List[LatLon]
    distance_meters: Optional[float] = None
    duration_seconds: Optional[float] = None


class RouteClient:
    def __init__(self, base_url: str = OSRM_BASE_URL, timeout: float = ROUTE_TIMEOUT, client: Optional[httpx.Client] = None):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._client = client

    def _get(self, url: str, params: dict) -> httpx.Response:
        if self._client is not None:
            return self._client.get(url, params=params, timeout=self.timeout)
        with httpx.Client(timeout=self.timeout) as client:
            return client.get(url, params=params)

    def fetch(self, origin: LatLon, destination: LatLon) -> Optional[Route]:
        """
        Fetch a driving route. Points are (latitude, longitude); OSRM wants
        longitude first, which is handled here.

        Returns None on any failure (logged, never raised).
        """
        if not (is_renderable(*origin) and is_renderable(*destination)):
            logger.warning("Route skipped: invalid coordinates %s -> %s", origin, destination)
            return None

        url = (
            f"{self.base_url}/route/v1/driving/"
            f"{origin[1]},{origin[0]};{destination[1]},{destination[0]}"
        )
        try:
            resp = self._get(url, {"overview": "full"})
            resp.raise_for_status()
            data = resp.json()
            routes = data.get("routes") or []
            if not routes:
                logger.warning("OSRM returned no route (code=%s)", data.get("code"))
                return None
            route = routes[0]
            return Route(
                coordinates=decode_polyline(route["geometry"]),
                distance_meters=route.get("distance"),
                duration_seconds=route.get("duration"),
            )
        except httpx.TimeoutException:
            logger.warning("OSRM route request timed out")
            return None
        except (httpx.HTTPError, ValueError, KeyError, TypeError) as e:
            logger.error("Error fetching route data: %s", e)
            return None


class RouteOverlay:
    """The single active route line on a map view.

    ``show`` always removes the current line first. A response that arrives
    after a newer ``show`` or after ``close`` is discarded.
    """

    def __init__(self, client: RouteClient):
        self.client = client
        self.line: Optional[List[LatLon]] = None
        self.target: Optional[str] = None
        self.closed = False
        self._generation = 0

    def show(self, origin: LatLon, destination: LatLon, target: Optional[str] = None) -> Optional[List[LatLon]]:
        self.clear()
        if self.closed:
            return None
        self._generation += 1
        generation = self._generation
        route = self.client.fetch(origin, destination)
        if self.closed or generation != self._generation:
            logger.debug("Stale route response for %s dropped", target)
            return None
        if route is None or not route.coordinates:
            return None
        self.line = route.coordinates
        self.target = target
        return self.line

    def clear(self) -> None:
        self.line = None
        self.target = None

    def close(self) -> None:
        self.closed = True
        self._generation += 1
        self.clear()
