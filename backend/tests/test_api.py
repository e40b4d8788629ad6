from __future__ import annotations

from unittest.mock import MagicMock

import pytest
from fastapi.testclient import TestClient

from snack_index.config import Configuration
from snack_index.main import create_app
from snack_index.models import Coordinates, DietaryFilters, OpeningPeriod, PlaceDetails, VenueStatus
from snack_index.services.places_api import PlacesApiError
from snack_index.services.store import InMemoryRecordStore


MONDAY_NOON = "2024-01-01T12:00:00"


@pytest.fixture()
def setup():
    store = InMemoryRecordStore()
    registry = MagicMock()
    registry.fetch_hours.return_value = [OpeningPeriod(1, "0900", 1, "2100")]
    app = create_app(Configuration(places_api_key="test-key"), store=store, registry=registry)
    venues = app.state.venues
    venue = venues.create_venue(
        name="Dumpling House",
        address="5 Jackson St",
        coordinates=Coordinates(47.6, -122.325),
        external_place_id="ext-dumpling",
        status=VenueStatus.ACCEPTED,
    )
    venues.add_dish(venue.id, name="Veg Dumplings", dietary=DietaryFilters(vegetarian=True, vegan=True), is_hero=True)
    return TestClient(app), registry, venue


def _body(**extra):
    body = {"user_id": "u1", "lat": 47.6062, "lon": -122.3321, "now": MONDAY_NOON}
    body.update(extra)
    return body


def test_healthz(setup) -> None:
    client, _, _ = setup
    assert client.get("/healthz").json() == {"status": "ok"}


def test_nearest_returns_recommendation(setup) -> None:
    client, _, venue = setup
    resp = client.post("/recommendations/nearest", json=_body(dietary={"vegan": True}))
    assert resp.status_code == 200
    data = resp.json()
    assert data["kind"] == "recommendation"
    rec = data["recommendation"]
    assert rec["venue"]["id"] == venue.id
    assert rec["venue"]["status"] == "ACCEPTED"
    assert rec["hero_dish"]["name"] == "Veg Dumplings"
    assert rec["close_time_label"] == "9 PM"
    assert rec["distance_label"].endswith("ft")


def test_nearest_outside_area(setup) -> None:
    client, _, venue = setup
    data = client.post("/recommendations/nearest", json=_body(lat=45.5, lon=-122.6)).json()
    assert data["kind"] == "not_in_area"
    assert [v["id"] for v in data["preview_venues"]] == [venue.id]


def test_dismissal_then_all_seen(setup) -> None:
    client, _, venue = setup
    resp = client.post("/dismissals", json={"user_id": "u1", "venue_id": venue.id})
    assert resp.status_code == 200
    assert resp.json()["dismissed"] is True
    assert client.post("/recommendations/nearest", json=_body()).json()["kind"] == "all_seen"
    assert client.post("/recommendations/queue", json=_body()).json() == {"count": 0, "recommendations": []}


def test_dismissal_unknown_venue_is_404(setup) -> None:
    client, _, _ = setup
    assert client.post("/dismissals", json={"user_id": "u1", "venue_id": "nope"}).status_code == 404


def test_queue(setup) -> None:
    client, _, venue = setup
    data = client.post("/recommendations/queue", json=_body(limit=5)).json()
    assert data["count"] == 1
    assert data["recommendations"][0]["venue"]["id"] == venue.id


def test_request_validation(setup) -> None:
    client, _, _ = setup
    assert client.post("/recommendations/nearest", json=_body(lat=123)).status_code == 422


def test_missing_credentials_is_503() -> None:
    store = InMemoryRecordStore()
    app = create_app(Configuration(places_api_key=None), store=store)
    venue = app.state.venues.create_venue(
        name="Cafe",
        address="",
        coordinates=Coordinates(47.6, -122.33),
        external_place_id="ext-cafe",
        status=VenueStatus.ACCEPTED,
    )
    app.state.venues.add_dish(venue.id, name="Toast", is_hero=True)
    client = TestClient(app)
    assert client.post("/recommendations/nearest", json=_body()).status_code == 503


def test_unexpected_errors_are_500(setup) -> None:
    client, registry, _ = setup
    registry.fetch_hours.side_effect = KeyError("boom")
    resp = client.post("/recommendations/nearest", json=_body())
    assert resp.status_code == 500
    assert resp.json()["detail"] == "internal error"


def test_venue_details(setup) -> None:
    client, registry, venue = setup
    registry.fetch_details.return_value = PlaceDetails(
        external_id="ext-dumpling",
        name="Dumpling House",
        address="5 Jackson St",
        coordinates=Coordinates(47.6, -122.325),
        periods=[OpeningPeriod(1, "0900", 1, "2100")],
        photo_ref="places/ext-dumpling/photos/p1",
    )
    registry.photo_url.return_value = "https://img.example/p1.jpg"

    data = client.get(f"/venues/{venue.id}/details").json()
    assert data["details"]["name"] == "Dumpling House"
    assert data["photo_url"] == "https://img.example/p1.jpg"
    assert data["hours"]["periods"][0]["open_time"] == "0900"
    assert [d["name"] for d in data["dishes"]] == ["Veg Dumplings"]

    assert client.get("/venues/missing/details").status_code == 404


def test_venue_details_degrade_on_upstream_failure(setup) -> None:
    client, registry, venue = setup
    registry.fetch_details.side_effect = PlacesApiError("upstream 500", status_code=500)
    data = client.get(f"/venues/{venue.id}/details").json()
    assert data["details"] is None
    assert data["photo_url"] is None
    assert data["hours"] is None
