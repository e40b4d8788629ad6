from __future__ import annotations

from unittest.mock import MagicMock

from snack_index.models import Coordinates, DietaryFilters, Dish, NearbyVenue, Venue
from snack_index.services.eligibility import dish_matches, exclude_ineligible, filter_dishes_by_dietary
from snack_index.services.interactions import (
    INTERACTIONS,
    dismiss_venue,
    get_dismissed_venue_ids,
    interaction_id,
)
from snack_index.services.store import InMemoryRecordStore


def _dish(**flags) -> Dish:
    return Dish(id="d", venue_id="v", name="dish", dietary=DietaryFilters(**flags))


def _nearby(venue_id: str, miles: float) -> NearbyVenue:
    venue = Venue(venue_id, f"ext-{venue_id}", venue_id, "", Coordinates(47.6, -122.3), "c23n")
    return NearbyVenue(venue=venue, distance_miles=miles)


def test_dismissals_are_per_user_and_idempotent() -> None:
    store = InMemoryRecordStore()
    dismiss_venue(store, "u1", "v1")
    dismiss_venue(store, "u1", "v1")
    dismiss_venue(store, "u1", "v2")
    dismiss_venue(store, "u2", "v3")

    assert get_dismissed_venue_ids(store, "u1") == {"v1", "v2"}
    assert get_dismissed_venue_ids(store, "nobody") == set()
    assert store.get_by_id(INTERACTIONS, interaction_id("u1", "v1"))["dismissed"] is True


def test_dismissal_lookup_failure_degrades_to_empty() -> None:
    store = MagicMock()
    store.query_equals.side_effect = RuntimeError("index missing")
    assert get_dismissed_venue_ids(store, "u1") == set()


def test_empty_filters_match_everything() -> None:
    dishes = [_dish(), _dish(vegan=True), _dish(gluten_free=True)]
    assert filter_dishes_by_dietary(dishes, DietaryFilters()) == dishes


def test_every_requested_flag_must_hold() -> None:
    wanted = DietaryFilters(vegan=True, gluten_free=True)
    assert dish_matches(_dish(vegan=True, gluten_free=True, vegetarian=True), wanted)
    assert not dish_matches(_dish(vegan=True), wanted)
    assert not dish_matches(_dish(vegetarian=True, gluten_free=True), wanted)


def test_exclude_dismissed_and_out_of_range() -> None:
    candidates = [_nearby("a", 0.5), _nearby("b", 1.0), _nearby("c", 6.0)]
    kept = exclude_ineligible(candidates, {"b"}, 5.0)
    assert [c.venue.id for c in kept] == ["a"]
    assert [c.venue.id for c in exclude_ineligible(candidates, set())] == ["a", "b", "c"]
