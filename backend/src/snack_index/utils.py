"""Utility helpers for the Snack Index core."""

from __future__ import annotations

import math
from typing import Optional

from snack_index.models import Coordinates, ServiceRegion


EARTH_RADIUS_MILES = 3959.0
MILES_TO_METERS = 1609.34


def mask_secret(value: Optional[str], visible: int = 4) -> str:
    if not value:
        return "unset"
    if len(value) <= visible * 2:
        return "*" * len(value)
    return f"{value[:visible]}...{value[-visible:]}"


def distance_miles(a: Coordinates, b: Coordinates) -> float:
    """Great-circle (haversine) distance in miles."""
    if a == b:
        return 0.0
    phi1 = math.radians(a.latitude)
    phi2 = math.radians(b.latitude)
    dphi = math.radians(b.latitude - a.latitude)
    dlambda = math.radians(b.longitude - a.longitude)
    h = math.sin(dphi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(dlambda / 2) ** 2
    c = 2 * math.atan2(math.sqrt(h), math.sqrt(1 - h))
    return EARTH_RADIUS_MILES * c


def is_in_service_region(point: Coordinates, region: ServiceRegion) -> bool:
    """Inclusive rectangular bounds check."""
    return (
        region.south <= point.latitude <= region.north
        and region.west <= point.longitude <= region.east
    )


def format_distance(miles: float) -> str:
    if miles < 0.1:
        return "nearby"
    if miles < 1:
        return f"{int(miles * 10 + 0.5)}00 ft"
    return f"{miles:.1f} mi"
