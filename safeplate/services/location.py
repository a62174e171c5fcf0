"""Geographic helpers."""

from __future__ import annotations

import math

from ..models import LocationCoordinates

EARTH_RADIUS_KM = 6371.0

# Approximate kilometres per degree of latitude
KM_PER_DEGREE = 111.32


def calculate_distance(a: LocationCoordinates, b: LocationCoordinates) -> float:
    """Great-circle distance between two points in kilometres (haversine)."""
    d_lat = math.radians(b.latitude - a.latitude)
    d_lon = math.radians(b.longitude - a.longitude)
    h = (
        math.sin(d_lat / 2) ** 2
        + math.cos(math.radians(a.latitude))
        * math.cos(math.radians(b.latitude))
        * math.sin(d_lon / 2) ** 2
    )
    return EARTH_RADIUS_KM * 2 * math.atan2(math.sqrt(h), math.sqrt(1 - h))


def bounding_box(center: LocationCoordinates, radius_km: float) -> tuple[float, float, float, float]:
    """Return (min_lat, max_lat, min_lon, max_lon) enclosing the radius."""
    lat_range = radius_km / KM_PER_DEGREE
    lon_range = radius_km / (KM_PER_DEGREE * math.cos(math.radians(center.latitude)))
    return (
        center.latitude - lat_range,
        center.latitude + lat_range,
        center.longitude - lon_range,
        center.longitude + lon_range,
    )
