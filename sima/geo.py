"""Coordinate helpers."""
import math
from typing import NamedTuple

from geopy.distance import distance


class LatLng(NamedTuple):
    latitude: float
    longitude: float


def _to_float(raw: str) -> float:
    try:
        return float(raw.strip())
    except ValueError:
        return math.nan


def extract_lat_long(lat_long: str) -> LatLng:
    """Parse ``"lat,lon"``; bad or missing halves come back as NaN."""
    if lat_long is None:
        return LatLng(math.nan, math.nan)
    lat, sep, lon = str(lat_long).partition(",")
    if not sep:
        return LatLng(math.nan, math.nan)
    # "−" (U+2212) sering ikut tersalin dari peta
    lat = lat.replace("−", "-")
    lon = lon.replace("−", "-")
    return LatLng(_to_float(lat), _to_float(lon))


def is_renderable(lat, lon) -> bool:
    if lat is None or lon is None:
        return False
    try:
        lat, lon = float(lat), float(lon)
    except (TypeError, ValueError):
        return False
    if math.isnan(lat) or math.isnan(lon):
        return False
    return -90.0 <= lat <= 90.0 and -180.0 <= lon <= 180.0


def distance_km(a: tuple[float, float], b: tuple[float, float]) -> float:
    return round(distance(a, b).km, 3)
