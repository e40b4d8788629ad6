"""Geohash encoding and circular query bounds.

The bounds follow the geofire approach: the disc around a center is covered by
the geohash cells of nine sample points (center, edges and corners of the
bounding box) truncated to a precision coarse enough for the radius. Each
cell becomes one inclusive ``[start, end]`` range over a geohash-ordered field.
The union is a superset of the disc, so callers post-filter by true distance.
"""

from __future__ import annotations

import math
from typing import List, Tuple

from snack_index.models import Coordinates


BASE32 = "0123456789bcdefghjkmnpqrstuvwxyz"
GEOHASH_PRECISION = 10
BITS_PER_CHAR = 5
MAXIMUM_BITS_PRECISION = 22 * BITS_PER_CHAR

EARTH_EQ_RADIUS = 6378137.0
EARTH_MERI_CIRCUMFERENCE = 40007860.0
METERS_PER_DEGREE_LATITUDE = 110574.0
E2 = 0.00669447819799
EPSILON = 1e-12

# Sorts after every base32 character.
RANGE_END_SENTINEL = "~"


def encode(point: Coordinates, precision: int = GEOHASH_PRECISION) -> str:
    if not 1 <= precision <= 22:
        raise ValueError(f"precision must be within 1..22, got {precision}")
    if not -90 <= point.latitude <= 90 or not -180 <= point.longitude <= 180:
        raise ValueError(f"coordinates out of range: {point}")

    lat_range = [-90.0, 90.0]
    lon_range = [-180.0, 180.0]
    chars: list[str] = []
    value = 0
    bits = 0
    even = True
    while len(chars) < precision:
        rng = lon_range if even else lat_range
        target = point.longitude if even else point.latitude
        mid = (rng[0] + rng[1]) / 2
        if target > mid:
            value = (value << 1) + 1
            rng[0] = mid
        else:
            value = value << 1
            rng[1] = mid
        even = not even
        bits += 1
        if bits == BITS_PER_CHAR:
            chars.append(BASE32[value])
            value = 0
            bits = 0
    return "".join(chars)


def _log2(x: float) -> float:
    return math.log(x) / math.log(2)


def meters_to_longitude_degrees(distance: float, latitude: float) -> float:
    radians = math.radians(latitude)
    num = math.cos(radians) * EARTH_EQ_RADIUS * math.pi / 180
    denom = 1 / math.sqrt(1 - E2 * math.sin(radians) * math.sin(radians))
    delta_deg = num * denom
    if delta_deg < EPSILON:
        return 360.0 if distance > 0 else 0.0
    return min(360.0, distance / delta_deg)


def wrap_longitude(longitude: float) -> float:
    if -180 <= longitude <= 180:
        return longitude
    adjusted = longitude + 180
    if adjusted > 0:
        return (adjusted % 360) - 180
    return 180 - (-adjusted % 360)


def _longitude_bits_for_resolution(resolution: float, latitude: float) -> float:
    degs = meters_to_longitude_degrees(resolution, latitude)
    return max(1.0, _log2(360 / degs)) if abs(degs) > 0.000001 else 1.0


def _latitude_bits_for_resolution(resolution: float) -> float:
    return min(_log2(EARTH_MERI_CIRCUMFERENCE / 2 / resolution), MAXIMUM_BITS_PRECISION)


def _bounding_box_bits(center: Coordinates, size: float) -> int:
    lat_delta = size / METERS_PER_DEGREE_LATITUDE
    lat_north = min(90.0, center.latitude + lat_delta)
    lat_south = max(-90.0, center.latitude - lat_delta)
    bits_lat = math.floor(_latitude_bits_for_resolution(size)) * 2
    bits_lon_north = math.floor(_longitude_bits_for_resolution(size, lat_north)) * 2 - 1
    bits_lon_south = math.floor(_longitude_bits_for_resolution(size, lat_south)) * 2 - 1
    return min(bits_lat, bits_lon_north, bits_lon_south, MAXIMUM_BITS_PRECISION)


def _bounding_box_points(center: Coordinates, radius_m: float) -> List[Coordinates]:
    lat_degrees = radius_m / METERS_PER_DEGREE_LATITUDE
    lat_north = min(90.0, center.latitude + lat_degrees)
    lat_south = max(-90.0, center.latitude - lat_degrees)
    lon_degs = max(
        meters_to_longitude_degrees(radius_m, lat_north),
        meters_to_longitude_degrees(radius_m, lat_south),
    )
    west = wrap_longitude(center.longitude - lon_degs)
    east = wrap_longitude(center.longitude + lon_degs)
    points: list[Coordinates] = []
    for lat in (center.latitude, lat_north, lat_south):
        for lon in (center.longitude, west, east):
            points.append(Coordinates(lat, lon))
    return points


def _cell_range(geohash: str, bits: int) -> Tuple[str, str]:
    precision = math.ceil(bits / BITS_PER_CHAR)
    if len(geohash) < precision:
        return geohash, geohash + RANGE_END_SENTINEL
    ghash = geohash[:precision]
    base = ghash[:-1]
    last_value = BASE32.index(ghash[-1])
    significant_bits = bits - len(base) * BITS_PER_CHAR
    unused_bits = BITS_PER_CHAR - significant_bits
    start_value = (last_value >> unused_bits) << unused_bits
    end_value = start_value + (1 << unused_bits)
    if end_value > 31:
        return base + BASE32[start_value], base + RANGE_END_SENTINEL
    return base + BASE32[start_value], base + BASE32[end_value]


def query_bounds(center: Coordinates, radius_m: float) -> List[Tuple[str, str]]:
    """Geohash ranges whose union covers the disc of ``radius_m`` around ``center``."""
    if radius_m <= 0:
        raise ValueError("radius must be positive")
    query_bits = max(1, _bounding_box_bits(center, radius_m))
    precision = math.ceil(query_bits / BITS_PER_CHAR)
    bounds: list[Tuple[str, str]] = []
    for point in _bounding_box_points(center, radius_m):
        rng = _cell_range(encode(point, precision), query_bits)
        if rng not in bounds:
            bounds.append(rng)
    return bounds
