from __future__ import annotations

from datetime import datetime
from unittest.mock import MagicMock

import pytest

from snack_index.config import Configuration
from snack_index.models import CacheKind, Coordinates, OpeningPeriod, PlaceDetails, RegistryCandidate, VenueStatus
from snack_index.services.cache import LocalCache, PersistentCache, TwoTierCache, make_cache_key
from snack_index.services.id_refresh import PlaceIdRefresher
from snack_index.services.place_data import PlaceDataService
from snack_index.services.places_api import PlacesApiError
from snack_index.services.store import InMemoryRecordStore
from snack_index.services.venues import VenueRepository


MONDAY_NOON = datetime(2024, 1, 1, 12, 0)


@pytest.fixture()
def env():
    store = InMemoryRecordStore()
    venues = VenueRepository(store)
    venue = venues.create_venue(
        name="Bagel Bar",
        address="3 Pine St",
        coordinates=Coordinates(47.61, -122.33),
        external_place_id="old-id",
        status=VenueStatus.ACCEPTED,
    )
    registry = MagicMock()
    cache = TwoTierCache(LocalCache(), PersistentCache(store))
    service = PlaceDataService(Configuration(), cache, registry, PlaceIdRefresher(venues, registry, cache))
    return service, registry, cache, venues, venue


def test_hours_are_cached_and_interpreted(env) -> None:
    service, registry, cache, _, venue = env
    registry.fetch_hours.return_value = [OpeningPeriod(1, "0900", 1, "1700")]

    first = service.get_hours(venue, MONDAY_NOON)
    second = service.get_hours(venue, MONDAY_NOON)

    assert first.is_open and second.is_open
    assert first.close_time_label == "5 PM"
    registry.fetch_hours.assert_called_once_with("old-id")
    assert cache.local.get(make_cache_key(CacheKind.HOURS, "old-id"), 60)[0]


def test_hours_errors_propagate(env) -> None:
    service, registry, _, _, venue = env
    registry.fetch_hours.side_effect = PlacesApiError("upstream 500", status_code=500)
    with pytest.raises(PlacesApiError):
        service.get_hours(venue, MONDAY_NOON)


def test_stale_hours_id_is_refreshed(env) -> None:
    service, registry, _, venues, venue = env

    def fetch_hours(ext):
        if ext == "old-id":
            raise PlacesApiError("upstream 404", status_code=404, body="NOT_FOUND")
        return [OpeningPeriod(1, "0900", 1, "1700")]

    registry.fetch_hours.side_effect = fetch_hours
    registry.text_search.return_value = [RegistryCandidate(external_id="new-id", name="Bagel Bar")]

    assert service.get_hours(venue, MONDAY_NOON).is_open
    assert venues.get_venue(venue.id).external_place_id == "new-id"


def test_details_and_photo_variants(env) -> None:
    service, registry, cache, _, venue = env
    registry.fetch_details.return_value = PlaceDetails(
        external_id="old-id",
        name="Bagel Bar",
        address="3 Pine St",
        coordinates=Coordinates(47.61, -122.33),
        periods=[OpeningPeriod(1, "0900", 1, "1700")],
        photo_ref="places/old-id/photos/p1",
    )
    registry.photo_url.side_effect = lambda ref, width: f"https://img.example/{width}.jpg"

    details = service.get_details(venue)
    assert details.periods == [OpeningPeriod(1, "0900", 1, "1700")]
    assert details.coordinates == Coordinates(47.61, -122.33)
    assert service.get_photo_url(venue) == "https://img.example/800.jpg"
    assert service.get_photo_url(venue, 400) == "https://img.example/400.jpg"
    assert service.get_photo_url(venue, 400) == "https://img.example/400.jpg"

    registry.fetch_details.assert_called_once_with("old-id")
    assert registry.photo_url.call_count == 2
    assert "photo:old-id:400" in cache.local.keys()


def test_details_failure_is_treated_as_absent(env) -> None:
    service, registry, _, _, venue = env
    registry.fetch_details.side_effect = PlacesApiError("upstream 500", status_code=500)
    assert service.get_details(venue) is None
    assert service.get_photo_url(venue) is None
