from __future__ import annotations

import os
from typing import Any, Optional, Tuple

from pydantic import BaseModel, Field

from snack_index.models import CacheKind, ServiceRegion
from snack_index.utils import mask_secret


HOUR_SEC = 60 * 60
DAY_SEC = 24 * HOUR_SEC


class ConfigurationError(ValueError):
    """Required configuration is missing or invalid. Never retried."""


class Configuration(BaseModel):
    # Google Places (New)
    places_api_key: Optional[str] = Field(default=None)
    places_base_url: str = Field(default="https://places.googleapis.com/v1")
    places_timeout: int = Field(default=15)
    places_retries: int = Field(default=3)

    # Persistent tier TTLs (seconds)
    cache_ttl_hours: int = Field(default=DAY_SEC)
    cache_ttl_details: int = Field(default=7 * DAY_SEC)
    cache_ttl_photo: int = Field(default=DAY_SEC)

    # Local tier TTLs (seconds), matched to the persistent tier by default
    local_ttl_hours: int = Field(default=DAY_SEC)
    local_ttl_details: int = Field(default=7 * DAY_SEC)
    local_ttl_photo: int = Field(default=DAY_SEC)
    local_cache_max_entries: Optional[int] = Field(default=None)

    # Service area (Seattle metro)
    service_north: float = Field(default=47.8)
    service_south: float = Field(default=47.3)
    service_east: float = Field(default=-122.0)
    service_west: float = Field(default=-122.5)

    # Selection
    default_search_radius_miles: float = Field(default=20.0)
    max_search_radius_miles: float = Field(default=50.0)
    nearest_batch_size: int = Field(default=10)
    queue_oversample: int = Field(default=2)
    preview_limit: int = Field(default=6)
    photo_width: int = Field(default=800)

    log_level: str = Field(default="INFO")

    @classmethod
    def from_env(cls, overrides: Optional[dict[str, Any]] = None) -> "Configuration":
        raw: dict[str, Any] = {}

        env_map = {
            "places_api_key": os.getenv("GOOGLE_PLACES_API_KEY"),
            "places_base_url": os.getenv("GOOGLE_PLACES_BASE_URL"),
            "places_timeout": os.getenv("GOOGLE_PLACES_TIMEOUT"),
            "places_retries": os.getenv("GOOGLE_PLACES_RETRIES"),
            "cache_ttl_hours": os.getenv("CACHE_TTL_HOURS"),
            "cache_ttl_details": os.getenv("CACHE_TTL_DETAILS"),
            "cache_ttl_photo": os.getenv("CACHE_TTL_PHOTO"),
            "local_ttl_hours": os.getenv("LOCAL_CACHE_TTL_HOURS"),
            "local_ttl_details": os.getenv("LOCAL_CACHE_TTL_DETAILS"),
            "local_ttl_photo": os.getenv("LOCAL_CACHE_TTL_PHOTO"),
            "local_cache_max_entries": os.getenv("LOCAL_CACHE_MAX_ENTRIES"),
            "service_north": os.getenv("SERVICE_NORTH"),
            "service_south": os.getenv("SERVICE_SOUTH"),
            "service_east": os.getenv("SERVICE_EAST"),
            "service_west": os.getenv("SERVICE_WEST"),
            "default_search_radius_miles": os.getenv("DEFAULT_SEARCH_RADIUS_MILES"),
            "max_search_radius_miles": os.getenv("MAX_SEARCH_RADIUS_MILES"),
            "nearest_batch_size": os.getenv("NEAREST_BATCH_SIZE"),
            "queue_oversample": os.getenv("QUEUE_OVERSAMPLE"),
            "preview_limit": os.getenv("PREVIEW_LIMIT"),
            "photo_width": os.getenv("PHOTO_WIDTH"),
            "log_level": os.getenv("LOG_LEVEL"),
        }

        for k, v in env_map.items():
            if v is None or v == "":
                continue
            raw[k] = v

        if overrides:
            raw.update({k: v for k, v in overrides.items() if v is not None})

        return cls(**raw)

    def require_places_api(self) -> None:
        if not self.places_api_key:
            raise ConfigurationError("GOOGLE_PLACES_API_KEY is required")

    def service_region(self) -> ServiceRegion:
        return ServiceRegion(
            north=self.service_north,
            south=self.service_south,
            east=self.service_east,
            west=self.service_west,
        )

    def ttls_for(self, kind: CacheKind) -> Tuple[int, int]:
        """Return (persistent_ttl, local_ttl) in seconds for a cache kind."""
        if kind is CacheKind.HOURS:
            return self.cache_ttl_hours, self.local_ttl_hours
        if kind is CacheKind.DETAILS:
            return self.cache_ttl_details, self.local_ttl_details
        return self.cache_ttl_photo, self.local_ttl_photo

    def log_summary(self) -> str:
        return (
            "places=%s base=%s timeout=%s region=(%s,%s,%s,%s) radius=%s/%s api_key=%s"
            % (
                bool(self.places_api_key),
                self.places_base_url,
                self.places_timeout,
                self.service_north,
                self.service_south,
                self.service_east,
                self.service_west,
                self.default_search_radius_miles,
                self.max_search_radius_miles,
                mask_secret(self.places_api_key),
            )
        )
