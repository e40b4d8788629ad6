from __future__ import annotations

import asyncio
import math
from typing import Dict, Iterable, List

from loguru import logger

from snack_index.config import Configuration
from snack_index.models import Coordinates, NearbyVenue, Venue
from snack_index.services import geohash
from snack_index.services.venues import VenueRepository
from snack_index.utils import MILES_TO_METERS, distance_miles


def resolve_search_radius(max_radius_miles: float, cfg: Configuration) -> float:
    """Physical query radius: default for non-finite/non-positive input, else clamped."""
    try:
        radius = float(max_radius_miles)
    except (TypeError, ValueError):
        return cfg.default_search_radius_miles
    if not math.isfinite(radius) or radius <= 0:
        return cfg.default_search_radius_miles
    return min(radius, cfg.max_search_radius_miles)


def _within_radius(center: Coordinates, venues: Iterable[Venue], radius_miles: float) -> List[NearbyVenue]:
    seen: Dict[str, NearbyVenue] = {}
    for venue in venues:
        if venue.id in seen:
            continue
        dist = distance_miles(center, venue.coordinates)
        if dist <= radius_miles:
            seen[venue.id] = NearbyVenue(venue=venue, distance_miles=dist)
    return sorted(seen.values(), key=lambda c: c.distance_miles)


async def locate_indexed(venues: VenueRepository, center: Coordinates, radius_miles: float) -> List[NearbyVenue]:
    bounds = geohash.query_bounds(center, radius_miles * MILES_TO_METERS)
    pages = await asyncio.gather(
        *(asyncio.to_thread(venues.query_accepted_by_geohash, start, end) for start, end in bounds)
    )
    merged = [venue for page in pages for venue in page]
    logger.debug("geohash search: {} bounds, {} raw hits", len(bounds), len(merged))
    return _within_radius(center, merged, radius_miles)


def locate_by_scan(venues: VenueRepository, center: Coordinates, radius_miles: float) -> List[NearbyVenue]:
    return _within_radius(center, venues.list_accepted_venues(), radius_miles)


async def find_nearby_eligible(
    venues: VenueRepository,
    center: Coordinates,
    max_radius_miles: float,
    cfg: Configuration,
) -> List[NearbyVenue]:
    """ACCEPTED venues within the effective radius, nearest first, one entry per venue.

    Falls back to a full scan when the geohash index yields nothing.
    """
    radius = resolve_search_radius(max_radius_miles, cfg)
    found = await locate_indexed(venues, center, radius)
    if found:
        return found
    logger.debug("geohash search empty; scanning all accepted venues")
    return await asyncio.to_thread(locate_by_scan, venues, center, radius)
