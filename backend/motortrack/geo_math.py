from __future__ import annotations

import math
from collections.abc import Iterable

from .core_errors import InputValidationError

EARTH_RADIUS_M = 6_371_000.0


def haversine_m(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Great-circle distance in metres on a spherical Earth."""
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    dphi = phi2 - phi1
    dlambda = math.radians(lon2 - lon1)
    a = (
        math.sin(dphi / 2.0) ** 2
        + (math.cos(phi1) * math.cos(phi2) * (math.sin(dlambda / 2.0) ** 2))
    )
    return 2.0 * EARTH_RADIUS_M * math.asin(min(1.0, math.sqrt(max(0.0, a))))


def bearing_deg(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Initial bearing from point 1 to point 2, degrees clockwise from north in [0, 360)."""
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    dlambda = math.radians(lon2 - lon1)
    y = math.sin(dlambda) * math.cos(phi2)
    x = (math.cos(phi1) * math.sin(phi2)) - (math.sin(phi1) * math.cos(phi2) * math.cos(dlambda))
    bearing = math.degrees(math.atan2(y, x)) % 360.0
    # -0.0 % 360 and float rounding can both land exactly on 360.0
    return 0.0 if bearing >= 360.0 else bearing


def is_valid_coordinate(lat: float, lon: float) -> bool:
    try:
        lat_f = float(lat)
        lon_f = float(lon)
    except (TypeError, ValueError):
        return False
    if not (math.isfinite(lat_f) and math.isfinite(lon_f)):
        return False
    return -90.0 <= lat_f <= 90.0 and -180.0 <= lon_f <= 180.0


def require_valid_coordinate(lat: float, lon: float, *, index: int | None = None) -> None:
    if is_valid_coordinate(lat, lon):
        return
    where = f" at index {index}" if index is not None else ""
    raise InputValidationError(
        reason_code="coordinate_out_of_range",
        message=f"Coordinate ({lat}, {lon}){where} is outside latitude [-90, 90] / longitude [-180, 180]",
        details={"index": index} if index is not None else None,
    )


def path_length_m(points: Iterable[tuple[float, float]]) -> float:
    """Sum of haversine legs along an ordered list of (lat, lon) points."""
    total = 0.0
    prev: tuple[float, float] | None = None
    for lat, lon in points:
        if prev is not None:
            total += haversine_m(prev[0], prev[1], lat, lon)
        prev = (lat, lon)
    return total
