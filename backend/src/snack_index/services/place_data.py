from __future__ import annotations

from dataclasses import asdict
from datetime import datetime
from typing import Any, Dict, List, Optional

from loguru import logger

from snack_index.config import Configuration
from snack_index.models import CacheKind, Coordinates, HoursInfo, OpeningPeriod, PlaceDetails, Venue
from snack_index.services.cache import TwoTierCache, make_cache_key
from snack_index.services.hours import interpret_hours
from snack_index.services.id_refresh import IdRefreshContext, PlaceIdRefresher
from snack_index.services.places_api import GooglePlacesClient, PlacesApiError


def _details_from_cache(raw: Dict[str, Any]) -> PlaceDetails:
    coords = raw.get("coordinates")
    return PlaceDetails(
        external_id=raw["external_id"],
        name=raw.get("name") or "",
        address=raw.get("address"),
        coordinates=(Coordinates(coords["latitude"], coords["longitude"]) if coords else None),
        periods=[OpeningPeriod.from_dict(p) for p in raw.get("periods") or []],
        photo_ref=raw.get("photo_ref"),
    )


class PlaceDataService:
    """Registry data for venues, read through the two-tier cache.

    Every accessor runs under the stale-id refresher, so a retired place id is
    re-resolved once and the cache repopulates under the new id.
    Cached payloads are plain dicts/lists so the shared tier can store them.
    """

    def __init__(
        self,
        cfg: Configuration,
        cache: TwoTierCache,
        registry: GooglePlacesClient,
        refresher: PlaceIdRefresher,
    ) -> None:
        self.cfg = cfg
        self.cache = cache
        self.registry = registry
        self.refresher = refresher

    def _context(self, venue: Venue) -> IdRefreshContext:
        return IdRefreshContext(internal_id=venue.id, external_id=venue.external_place_id)

    def _cached(self, kind: CacheKind, external_id: str, fetch, suffix: Optional[str] = None):
        persistent_ttl, local_ttl = self.cfg.ttls_for(kind)
        return self.cache.get_cached(
            make_cache_key(kind, external_id, suffix),
            kind,
            external_id,
            persistent_ttl,
            local_ttl,
            fetch,
        )

    def get_periods(self, venue: Venue) -> List[OpeningPeriod]:
        def operation(external_id: str) -> List[Dict[str, Any]]:
            return self._cached(
                CacheKind.HOURS,
                external_id,
                lambda: [p.to_dict() for p in self.registry.fetch_hours(external_id)],
            )

        raw = self.refresher.run(self._context(venue), operation)
        return [OpeningPeriod.from_dict(p) for p in raw or []]

    def get_hours(self, venue: Venue, now: Optional[datetime] = None) -> HoursInfo:
        """Upstream errors propagate; the caller picks the degradation policy."""
        return interpret_hours(self.get_periods(venue), now)

    def _fetch_details(self, external_id: str) -> PlaceDetails:
        raw = self._cached(
            CacheKind.DETAILS,
            external_id,
            lambda: asdict(self.registry.fetch_details(external_id)),
        )
        return _details_from_cache(raw)

    def get_details(self, venue: Venue) -> Optional[PlaceDetails]:
        try:
            return self.refresher.run(self._context(venue), self._fetch_details)
        except PlacesApiError as exc:
            logger.warning("details unavailable for venue {}: {}", venue.id, exc)
            return None

    def get_photo_url(self, venue: Venue, width: Optional[int] = None) -> Optional[str]:
        width = width or self.cfg.photo_width

        def operation(external_id: str) -> Optional[str]:
            details = self._fetch_details(external_id)
            if not details.photo_ref:
                return None
            return self._cached(
                CacheKind.PHOTO,
                external_id,
                lambda: self.registry.photo_url(details.photo_ref, width),
                suffix=str(width),
            )

        try:
            return self.refresher.run(self._context(venue), operation)
        except PlacesApiError as exc:
            logger.warning("photo unavailable for venue {}: {}", venue.id, exc)
            return None
