"""Recovery for place ids the upstream registry has retired.

When an operation fails with the registry's stale-id signal, the venue is
re-resolved by text search (name, biased to its coordinates). A different id
is persisted onto the venue, local cache entries under the old id are dropped,
and the operation is retried exactly once with the new id.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Optional, TypeVar

from loguru import logger

from snack_index.models import Venue
from snack_index.services.cache import TwoTierCache
from snack_index.services.places_api import GooglePlacesClient, PlacesApiError
from snack_index.services.venues import VenueRepository


T = TypeVar("T")


class StaleIdentifierError(RuntimeError):
    def __init__(self, external_id: str, cause: BaseException) -> None:
        super().__init__(f"place id {external_id} is no longer valid: {cause}")
        self.external_id = external_id
        self.cause = cause


@dataclass(frozen=True)
class IdRefreshContext:
    internal_id: str
    external_id: str


def is_stale_id_error(exc: BaseException) -> bool:
    return isinstance(exc, PlacesApiError) and exc.is_stale_id


class PlaceIdRefresher:
    def __init__(self, venues: VenueRepository, registry: GooglePlacesClient, cache: TwoTierCache) -> None:
        self.venues = venues
        self.registry = registry
        self.cache = cache

    def _resolve_replacement(self, venue: Venue) -> Optional[str]:
        candidates = self.registry.text_search(venue.name, location_bias=venue.coordinates)
        if not candidates:
            return None
        return candidates[0].external_id

    def run(self, context: IdRefreshContext, operation: Callable[[str], T]) -> T:
        try:
            return operation(context.external_id)
        except Exception as exc:
            if not is_stale_id_error(exc):
                raise
            stale_exc = exc

        logger.info("place id {} looks stale for venue {}; re-resolving", context.external_id, context.internal_id)
        venue = self.venues.get_venue(context.internal_id)
        if venue is None:
            raise stale_exc

        try:
            new_id = self._resolve_replacement(venue)
        except PlacesApiError as search_exc:
            logger.warning("re-resolution search failed for venue {}: {}", context.internal_id, search_exc)
            raise StaleIdentifierError(context.external_id, stale_exc) from search_exc

        if not new_id or new_id == context.external_id:
            raise StaleIdentifierError(context.external_id, stale_exc) from stale_exc

        self.venues.update_external_place_id(context.internal_id, new_id)
        self.cache.invalidate_external_id(context.external_id)
        logger.info("venue {} place id refreshed {} -> {}", context.internal_id, context.external_id, new_id)

        try:
            return operation(new_id)
        except Exception as exc:
            if not is_stale_id_error(exc):
                raise
            logger.warning("refreshed place id {} for venue {} is stale too", new_id, context.internal_id)
            raise StaleIdentifierError(new_id, exc) from exc
