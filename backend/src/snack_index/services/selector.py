"""Recommendation selection: nearest open venue and the swipe queue.

Both operations share one pipeline: locate nearby ACCEPTED venues (geohash
bounds, scan fallback) while loading the user's dismissals, drop dismissed and
out-of-range candidates, then evaluate the closest batch in parallel (dishes
and hours together, hero dish only for open venues). Batch results keep
input order, so the first open result is the closest open venue.
"""

from __future__ import annotations

import asyncio
import math
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional, Set, Tuple, Union

from loguru import logger

from snack_index.config import Configuration
from snack_index.models import (
    AllSeen,
    Coordinates,
    DietaryFilters,
    HoursInfo,
    NearbyVenue,
    NextToOpen,
    NotInServiceArea,
    NothingOpen,
    PlaceRecommendation,
    Recommendation,
    RecommendationResult,
    Venue,
)
from snack_index.services.candidate_search import find_nearby_eligible
from snack_index.services.eligibility import exclude_ineligible, filter_dishes_by_dietary
from snack_index.services.hours import format_minutes_until, minutes_until_open
from snack_index.services.interactions import get_dismissed_venue_ids
from snack_index.services.place_data import PlaceDataService
from snack_index.services.places_api import PlacesApiError
from snack_index.services.store import RecordStore
from snack_index.services.venues import VenueRepository
from snack_index.utils import is_in_service_region


@dataclass
class _Evaluation:
    recommendation: PlaceRecommendation
    minutes_until_open: Optional[int] = None


def _radius_ceiling(max_radius_miles: float) -> float:
    if not math.isfinite(max_radius_miles) or max_radius_miles <= 0:
        return math.inf
    return max_radius_miles


class RecommendationSelector:
    def __init__(
        self,
        cfg: Configuration,
        store: RecordStore,
        venues: VenueRepository,
        place_data: PlaceDataService,
    ) -> None:
        self.cfg = cfg
        self.store = store
        self.venues = venues
        self.place_data = place_data

    # ---- pipeline stages ----

    def _in_area(self, center: Coordinates) -> bool:
        return is_in_service_region(center, self.cfg.service_region())

    async def _preview_venues(self) -> List[Venue]:
        venues = await asyncio.to_thread(self.venues.list_accepted_venues)
        return venues[: self.cfg.preview_limit]

    async def _source_candidates(
        self, center: Coordinates, user_id: str, max_radius_miles: float
    ) -> Tuple[List[NearbyVenue], Set[str]]:
        nearby, dismissed = await asyncio.gather(
            find_nearby_eligible(self.venues, center, max_radius_miles, self.cfg),
            asyncio.to_thread(get_dismissed_venue_ids, self.store, user_id),
        )
        logger.debug("user {}: {} nearby candidates, {} dismissed", user_id, len(nearby), len(dismissed))
        return nearby, dismissed

    def _hours_or_assume_open(self, venue: Venue, now: datetime) -> HoursInfo:
        try:
            return self.place_data.get_hours(venue, now)
        except PlacesApiError as exc:
            if exc.is_stale_id:
                raise
            logger.warning("hours unavailable for venue {} ({}); assuming open", venue.id, exc)
            return HoursInfo(is_open=True)

    async def _evaluate(
        self, candidate: NearbyVenue, dietary: DietaryFilters, now: datetime
    ) -> Optional[_Evaluation]:
        venue = candidate.venue
        dishes, hours = await asyncio.gather(
            asyncio.to_thread(self.venues.get_accepted_dishes, venue.id),
            asyncio.to_thread(self._hours_or_assume_open, venue, now),
        )
        matching = filter_dishes_by_dietary(dishes, dietary)
        if not matching:
            return None

        hero = await asyncio.to_thread(self.venues.get_hero_dish, venue.id) if hours.is_open else None
        reopen = None
        if not hours.is_open and hours.periods:
            reopen = minutes_until_open(hours.periods, now)

        return _Evaluation(
            recommendation=PlaceRecommendation(
                venue=venue,
                hero_dish=hero,
                matching_dishes=matching,
                distance_miles=candidate.distance_miles,
                is_open=hours.is_open,
                close_time_label=hours.close_time_label,
            ),
            minutes_until_open=reopen,
        )

    async def _evaluate_batch(
        self, candidates: List[NearbyVenue], dietary: DietaryFilters, now: datetime
    ) -> List[Optional[_Evaluation]]:
        return list(await asyncio.gather(*(self._evaluate(c, dietary, now) for c in candidates)))

    # ---- public operations ----

    async def get_nearby_eligible_venues(
        self,
        center: Coordinates,
        user_id: str,
        max_radius_miles: float = math.inf,
    ) -> Union[List[NearbyVenue], NotInServiceArea]:
        """Undismissed candidates nearest first, without hours or dish checks."""
        if not self._in_area(center):
            return NotInServiceArea(preview_venues=await self._preview_venues())
        nearby, dismissed = await self._source_candidates(center, user_id, max_radius_miles)
        return exclude_ineligible(nearby, dismissed, _radius_ceiling(max_radius_miles))

    async def process_candidate_batch(
        self,
        candidates: List[NearbyVenue],
        dietary: DietaryFilters,
        now: Optional[datetime] = None,
    ) -> List[PlaceRecommendation]:
        """Open, dietary-eligible recommendations for ``candidates``, nearest first."""
        if not candidates:
            return []
        now = now or datetime.now()
        results = await self._evaluate_batch(candidates, dietary, now)
        recs = [r.recommendation for r in results if r is not None and r.recommendation.is_open]
        return sorted(recs, key=lambda r: r.distance_miles)

    async def get_nearest_open(
        self,
        center: Coordinates,
        dietary: DietaryFilters,
        user_id: str,
        max_radius_miles: float = math.inf,
        now: Optional[datetime] = None,
    ) -> RecommendationResult:
        if not self._in_area(center):
            return NotInServiceArea(preview_venues=await self._preview_venues())

        now = now or datetime.now()
        nearby, dismissed = await self._source_candidates(center, user_id, max_radius_miles)
        if not nearby:
            return NothingOpen()

        eligible = exclude_ineligible(nearby, dismissed, _radius_ceiling(max_radius_miles))
        if not eligible:
            return AllSeen()

        batch = eligible[: min(len(eligible), self.cfg.nearest_batch_size)]
        results = await self._evaluate_batch(batch, dietary, now)

        for result in results:
            if result is not None and result.recommendation.is_open:
                logger.info(
                    "recommending venue {} at {:.2f} mi for user {}",
                    result.recommendation.venue.id,
                    result.recommendation.distance_miles,
                    user_id,
                )
                return Recommendation(recommendation=result.recommendation)

        closed = [r for r in results if r is not None and r.minutes_until_open is not None]
        if closed:
            soonest = min(closed, key=lambda r: r.minutes_until_open)
            return NothingOpen(
                next_to_open=NextToOpen(
                    venue=soonest.recommendation.venue,
                    opens_in_label=format_minutes_until(soonest.minutes_until_open or 0),
                )
            )
        return AllSeen()

    async def get_recommendation_queue(
        self,
        center: Coordinates,
        dietary: DietaryFilters,
        user_id: str,
        limit: int = 10,
        max_radius_miles: float = math.inf,
        now: Optional[datetime] = None,
    ) -> List[PlaceRecommendation]:
        if limit <= 0 or not self._in_area(center):
            return []

        nearby, dismissed = await self._source_candidates(center, user_id, max_radius_miles)
        eligible = exclude_ineligible(nearby, dismissed, _radius_ceiling(max_radius_miles))

        # Oversample: dietary and hours checks drop some of the batch.
        batch_size = min(len(eligible), limit * self.cfg.queue_oversample)
        recs = await self.process_candidate_batch(eligible[:batch_size], dietary, now)
        return recs[:limit]
