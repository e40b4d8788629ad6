from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from loguru import logger

from snack_index.models import Coordinates, DietaryFilters, Dish, Venue, VenueStatus
from snack_index.services import geohash
from snack_index.services.store import RecordNotFoundError, RecordStore


VENUES = "places"
DISHES = "dishes"


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def venue_from_doc(doc: Dict[str, Any]) -> Venue:
    coords = Coordinates(float(doc["latitude"]), float(doc["longitude"]))
    return Venue(
        id=str(doc["id"]),
        external_place_id=str(doc.get("external_place_id") or ""),
        name=str(doc.get("name") or ""),
        address=str(doc.get("address") or ""),
        coordinates=coords,
        geohash=str(doc.get("geohash") or ""),
        status=VenueStatus(doc.get("status", VenueStatus.PENDING.value)),
        rejection_reason=doc.get("rejection_reason"),
    )


def dish_from_doc(doc: Dict[str, Any]) -> Dish:
    dietary = doc.get("dietary") or {}
    return Dish(
        id=str(doc["id"]),
        venue_id=str(doc["venue_id"]),
        name=str(doc.get("name") or ""),
        dietary=DietaryFilters(
            vegetarian=bool(dietary.get("vegetarian")),
            vegan=bool(dietary.get("vegan")),
            gluten_free=bool(dietary.get("gluten_free")),
        ),
        is_hero=bool(doc.get("is_hero")),
        status=VenueStatus(doc.get("status", VenueStatus.PENDING.value)),
    )


def _has_coordinates(doc: Dict[str, Any]) -> bool:
    return isinstance(doc.get("latitude"), (int, float)) and isinstance(doc.get("longitude"), (int, float))


class VenueRepository:
    """Venue and dish access over the record store."""

    def __init__(self, store: RecordStore) -> None:
        self.store = store

    # ---- reads ----

    def get_venue(self, venue_id: str) -> Optional[Venue]:
        doc = self.store.get_by_id(VENUES, venue_id)
        if doc is None or not _has_coordinates(doc):
            return None
        return venue_from_doc(doc)

    def list_accepted_venues(self) -> List[Venue]:
        docs = self.store.query_equals(VENUES, {"status": VenueStatus.ACCEPTED.value})
        return [venue_from_doc(d) for d in docs if _has_coordinates(d)]

    def query_accepted_by_geohash(self, start: str, end: str) -> List[Venue]:
        docs = self.store.query_range(
            VENUES, "geohash", start, end, filters={"status": VenueStatus.ACCEPTED.value}
        )
        return [venue_from_doc(d) for d in docs if _has_coordinates(d)]

    def get_accepted_dishes(self, venue_id: str) -> List[Dish]:
        docs = self.store.query_equals(
            DISHES, {"venue_id": venue_id, "status": VenueStatus.ACCEPTED.value}
        )
        return [dish_from_doc(d) for d in docs]

    def get_hero_dish(self, venue_id: str) -> Optional[Dish]:
        docs = self.store.query_equals(
            DISHES,
            {"venue_id": venue_id, "is_hero": True, "status": VenueStatus.ACCEPTED.value},
        )
        return dish_from_doc(docs[0]) if docs else None

    # ---- writes ----

    def create_venue(
        self,
        *,
        name: str,
        address: str,
        coordinates: Coordinates,
        external_place_id: str,
        status: VenueStatus = VenueStatus.PENDING,
    ) -> Venue:
        now = _now_iso()
        venue_id = self.store.add(
            VENUES,
            {
                "name": name,
                "address": address,
                "latitude": coordinates.latitude,
                "longitude": coordinates.longitude,
                "geohash": geohash.encode(coordinates),
                "external_place_id": external_place_id,
                "status": status.value,
                "created_at": now,
                "updated_at": now,
            },
        )
        logger.info("created venue {} ({})", venue_id, name)
        venue = self.get_venue(venue_id)
        assert venue is not None
        return venue

    def update_venue(self, venue_id: str, **updates: Any) -> None:
        """Partial update; recomputes the geohash whenever a coordinate changes."""
        fields = dict(updates)
        if isinstance(fields.get("status"), VenueStatus):
            fields["status"] = fields["status"].value
        if "latitude" in fields or "longitude" in fields:
            current = self.store.get_by_id(VENUES, venue_id)
            if current is None:
                raise RecordNotFoundError(f"{VENUES}/{venue_id}")
            lat = fields.get("latitude", current.get("latitude"))
            lon = fields.get("longitude", current.get("longitude"))
            if isinstance(lat, (int, float)) and isinstance(lon, (int, float)):
                fields["geohash"] = geohash.encode(Coordinates(float(lat), float(lon)))
        fields["updated_at"] = _now_iso()
        self.store.update(VENUES, venue_id, fields)

    def update_external_place_id(self, venue_id: str, external_place_id: str) -> None:
        self.update_venue(venue_id, external_place_id=external_place_id)

    def reject_venue(self, venue_id: str, reason: Optional[str] = None) -> None:
        """Soft delete: venues are never removed, so history and caches stay valid."""
        self.update_venue(venue_id, status=VenueStatus.REJECTED, rejection_reason=reason)

    def add_dish(
        self,
        venue_id: str,
        *,
        name: str,
        dietary: DietaryFilters = DietaryFilters(),
        is_hero: bool = False,
        status: VenueStatus = VenueStatus.ACCEPTED,
    ) -> Dish:
        if is_hero:
            self._unset_hero(venue_id)
        now = _now_iso()
        dish_id = self.store.add(
            DISHES,
            {
                "venue_id": venue_id,
                "name": name,
                "dietary": {
                    "vegetarian": dietary.vegetarian,
                    "vegan": dietary.vegan,
                    "gluten_free": dietary.gluten_free,
                },
                "is_hero": is_hero,
                "status": status.value,
                "created_at": now,
                "updated_at": now,
            },
        )
        doc = self.store.get_by_id(DISHES, dish_id)
        assert doc is not None
        return dish_from_doc(doc)

    def _unset_hero(self, venue_id: str) -> None:
        heroes = self.store.query_equals(DISHES, {"venue_id": venue_id, "is_hero": True})
        if heroes:
            now = _now_iso()
            self.store.write_batch(
                (DISHES, d["id"], {"is_hero": False, "updated_at": now}) for d in heroes
            )

    def backfill_geohashes(self, batch_size: int = 400) -> Tuple[int, int]:
        """Rewrite missing or outdated geohashes. Returns (updated, skipped)."""
        updated = 0
        skipped = 0
        pending: list[Tuple[str, str, Dict[str, Any]]] = []
        for doc in self.store.query_equals(VENUES, {}):
            if not _has_coordinates(doc):
                logger.warning("skipping venue {}: missing coordinates", doc["id"])
                skipped += 1
                continue
            new_hash = geohash.encode(Coordinates(float(doc["latitude"]), float(doc["longitude"])))
            if doc.get("geohash") == new_hash:
                skipped += 1
                continue
            pending.append((VENUES, doc["id"], {"geohash": new_hash}))
            updated += 1
            if len(pending) >= batch_size:
                self.store.write_batch(pending)
                logger.info("committed geohash batch; updated so far: {}", updated)
                pending = []
        if pending:
            self.store.write_batch(pending)
        logger.info("geohash backfill complete: updated={} skipped={}", updated, skipped)
        return updated, skipped
