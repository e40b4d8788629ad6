from __future__ import annotations

import math
import sys
from dataclasses import asdict
from datetime import datetime
from typing import Any, Dict, List, NoReturn, Optional

from dotenv import load_dotenv
from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from loguru import logger
from pydantic import BaseModel, Field

from snack_index.config import Configuration, ConfigurationError
from snack_index.models import Coordinates, DietaryFilters
from snack_index.services.cache import LocalCache, PersistentCache, TwoTierCache
from snack_index.services.hours import interpret_hours
from snack_index.services.id_refresh import PlaceIdRefresher, StaleIdentifierError
from snack_index.services.interactions import dismiss_venue
from snack_index.services.place_data import PlaceDataService
from snack_index.services.places_api import GooglePlacesClient
from snack_index.services.selector import RecommendationSelector
from snack_index.services.store import InMemoryRecordStore, RecordStore
from snack_index.services.venues import VenueRepository
from snack_index.utils import format_distance


def configure_logging(cfg: Configuration) -> None:
    logger.remove()
    logger.add(sys.stderr, level=cfg.log_level.upper())


class DietaryPayload(BaseModel):
    vegetarian: bool = False
    vegan: bool = False
    gluten_free: bool = False

    def to_filters(self) -> DietaryFilters:
        return DietaryFilters(vegetarian=self.vegetarian, vegan=self.vegan, gluten_free=self.gluten_free)


class NearestRequest(BaseModel):
    user_id: str = Field(..., min_length=1)
    lat: float = Field(..., ge=-90, le=90)
    lon: float = Field(..., ge=-180, le=180)
    dietary: DietaryPayload = Field(default_factory=DietaryPayload)
    max_radius_miles: Optional[float] = Field(None, description="Ceiling on candidate distance; unset means no ceiling")
    now: Optional[datetime] = Field(None, description="Evaluation instant, local time; defaults to the server clock")


class QueueRequest(NearestRequest):
    limit: int = Field(10, ge=0, le=50)


class DismissRequest(BaseModel):
    user_id: str = Field(..., min_length=1)
    venue_id: str = Field(..., min_length=1)


def _radius(value: Optional[float]) -> float:
    return math.inf if value is None else value


def _recommendation_payload(rec) -> Dict[str, Any]:
    payload = asdict(rec)
    payload["distance_label"] = format_distance(rec.distance_miles)
    return payload


def _raise_http(exc: Exception, what: str) -> NoReturn:
    if isinstance(exc, HTTPException):
        raise exc
    if isinstance(exc, ConfigurationError):
        raise HTTPException(status_code=503, detail=str(exc))
    if isinstance(exc, ValueError):
        raise HTTPException(status_code=400, detail=str(exc))
    if isinstance(exc, StaleIdentifierError):
        logger.warning("{} failed on stale place id: {}", what, exc)
        raise HTTPException(status_code=502, detail=str(exc))
    logger.exception("{} failed: {}", what, exc)
    raise HTTPException(status_code=500, detail="internal error")


def create_app(
    cfg: Optional[Configuration] = None,
    store: Optional[RecordStore] = None,
    registry: Optional[GooglePlacesClient] = None,
) -> FastAPI:
    cfg = cfg or Configuration.from_env()
    store = store if store is not None else InMemoryRecordStore()
    registry = registry or GooglePlacesClient(cfg)

    venues = VenueRepository(store)
    cache = TwoTierCache(
        LocalCache(max_entries=cfg.local_cache_max_entries),
        PersistentCache(store),
    )
    refresher = PlaceIdRefresher(venues, registry, cache)
    place_data = PlaceDataService(cfg, cache, registry, refresher)
    selector = RecommendationSelector(cfg, store, venues, place_data)

    app = FastAPI(title="Snack Index")
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.state.cfg = cfg
    app.state.store = store
    app.state.venues = venues
    app.state.cache = cache
    app.state.place_data = place_data
    app.state.selector = selector

    @app.get("/healthz")
    def healthz() -> dict:
        logger.info("cfg: {}", cfg.log_summary())
        return {"status": "ok"}

    @app.post("/recommendations/nearest")
    async def nearest(req: NearestRequest) -> dict:
        try:
            result = await selector.get_nearest_open(
                Coordinates(req.lat, req.lon),
                req.dietary.to_filters(),
                req.user_id,
                max_radius_miles=_radius(req.max_radius_miles),
                now=req.now,
            )
        except Exception as exc:
            _raise_http(exc, "nearest recommendation")
        payload = asdict(result)
        if result.kind == "recommendation":
            payload["recommendation"] = _recommendation_payload(result.recommendation)
        return payload

    @app.post("/recommendations/queue")
    async def queue(req: QueueRequest) -> dict:
        try:
            recs = await selector.get_recommendation_queue(
                Coordinates(req.lat, req.lon),
                req.dietary.to_filters(),
                req.user_id,
                limit=req.limit,
                max_radius_miles=_radius(req.max_radius_miles),
                now=req.now,
            )
        except Exception as exc:
            _raise_http(exc, "recommendation queue")
        items: List[Dict[str, Any]] = [_recommendation_payload(r) for r in recs]
        return {"count": len(items), "recommendations": items}

    @app.post("/dismissals")
    def dismissals(req: DismissRequest) -> dict:
        if venues.get_venue(req.venue_id) is None:
            raise HTTPException(status_code=404, detail=f"unknown venue {req.venue_id}")
        dismiss_venue(store, req.user_id, req.venue_id)
        return {"user_id": req.user_id, "venue_id": req.venue_id, "dismissed": True}

    @app.get("/venues/{venue_id}/details")
    def venue_details(venue_id: str, width: Optional[int] = None) -> dict:
        venue = venues.get_venue(venue_id)
        if venue is None:
            raise HTTPException(status_code=404, detail=f"unknown venue {venue_id}")
        try:
            details = place_data.get_details(venue)
            photo = place_data.get_photo_url(venue, width)
            hours = interpret_hours(details.periods) if details is not None else None
        except Exception as exc:
            _raise_http(exc, f"details for venue {venue_id}")
        return {
            "venue": asdict(venue),
            "details": asdict(details) if details is not None else None,
            "photo_url": photo,
            "hours": asdict(hours) if hours is not None else None,
            "dishes": [asdict(d) for d in venues.get_accepted_dishes(venue_id)],
        }

    return app


load_dotenv()
_cfg = Configuration.from_env()
configure_logging(_cfg)
app = create_app(_cfg)
