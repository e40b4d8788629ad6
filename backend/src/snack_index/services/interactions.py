from __future__ import annotations

from datetime import datetime, timezone
from typing import Set

from loguru import logger

from snack_index.services.store import RecordStore


INTERACTIONS = "userPlaceInteractions"


def interaction_id(user_id: str, venue_id: str) -> str:
    return f"{user_id}_{venue_id}"


def dismiss_venue(store: RecordStore, user_id: str, venue_id: str) -> None:
    """Never show this venue to this user again (merge write)."""
    store.upsert(
        INTERACTIONS,
        interaction_id(user_id, venue_id),
        {
            "user_id": user_id,
            "venue_id": venue_id,
            "dismissed": True,
            "dismissed_at": datetime.now(timezone.utc).isoformat(),
        },
        merge=True,
    )
    logger.info("user {} dismissed venue {}", user_id, venue_id)


def get_dismissed_venue_ids(store: RecordStore, user_id: str) -> Set[str]:
    """Venue ids the user dismissed. A failed lookup yields an empty set."""
    try:
        docs = store.query_equals(INTERACTIONS, {"user_id": user_id, "dismissed": True})
    except Exception as exc:
        logger.warning("failed to load dismissed venues for {}: {}", user_id, exc)
        return set()
    return {str(d["venue_id"]) for d in docs if d.get("venue_id")}
