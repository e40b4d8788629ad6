from __future__ import annotations

from typing import Iterable, List, Set

from snack_index.models import DietaryFilters, Dish, NearbyVenue


def dish_matches(dish: Dish, filters: DietaryFilters) -> bool:
    """Strict AND over the requested flags; no flags means every dish matches."""
    if filters.is_empty:
        return True
    if filters.vegetarian and not dish.dietary.vegetarian:
        return False
    if filters.vegan and not dish.dietary.vegan:
        return False
    if filters.gluten_free and not dish.dietary.gluten_free:
        return False
    return True


def filter_dishes_by_dietary(dishes: Iterable[Dish], filters: DietaryFilters) -> List[Dish]:
    return [d for d in dishes if dish_matches(d, filters)]


def exclude_ineligible(
    candidates: Iterable[NearbyVenue],
    dismissed_ids: Set[str],
    max_radius_miles: float = float("inf"),
) -> List[NearbyVenue]:
    """Drop dismissed venues and anything beyond the caller's radius ceiling."""
    return [
        c
        for c in candidates
        if c.venue.id not in dismissed_ids and c.distance_miles <= max_radius_miles
    ]
