from __future__ import annotations

import math


EARTH_RADIUS_METERS = 6_371_000
EARTH_RADIUS_KM = 6371


def distance_meters(lat_a: float, lon_a: float, lat_b: float, lon_b: float) -> float:
    """
    Great-circle distance between two coordinates (haversine).

    Inputs are decimal degrees. Rejecting NaN/None is the caller's job.
    """
    d_lat = math.radians(lat_b - lat_a)
    d_lon = math.radians(lon_b - lon_a)
    a = (
        math.sin(d_lat / 2) ** 2
        + math.cos(math.radians(lat_a)) * math.cos(math.radians(lat_b)) * math.sin(d_lon / 2) ** 2
    )
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return EARTH_RADIUS_METERS * c


def is_within_radius(lat: float, lon: float, center_lat: float, center_lon: float, radius_m: float) -> bool:
    return distance_meters(lat, lon, center_lat, center_lon) <= radius_m


def bounding_box(lat: float, lon: float, radius_km: float) -> tuple[float, float, float, float]:
    """
    Approximate (min_lat, max_lat, min_lon, max_lon) box around a point.

    Used to pre-filter rows in SQL before an exact distance check.
    """
    lat_range = radius_km / EARTH_RADIUS_KM * (180 / math.pi)
    cos_lat = math.cos(math.radians(lat))
    if abs(cos_lat) < 1e-12:
        lon_range = 180.0
    else:
        lon_range = min(180.0, lat_range / abs(cos_lat))
    return lat - lat_range, lat + lat_range, lon - lon_range, lon + lon_range
