"""Data models for the Snack Index recommendation core."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Union


@dataclass(frozen=True)
class Coordinates:
    latitude: float
    longitude: float


@dataclass(frozen=True)
class ServiceRegion:
    north: float
    south: float
    east: float
    west: float


class VenueStatus(str, Enum):
    ACCEPTED = "ACCEPTED"
    PENDING = "PENDING"
    REJECTED = "REJECTED"


@dataclass
class Venue:
    id: str
    external_place_id: str
    name: str
    address: str
    coordinates: Coordinates
    geohash: str
    status: VenueStatus = VenueStatus.ACCEPTED
    rejection_reason: Optional[str] = None


@dataclass(frozen=True)
class DietaryFilters:
    vegetarian: bool = False
    vegan: bool = False
    gluten_free: bool = False

    @property
    def is_empty(self) -> bool:
        return not (self.vegetarian or self.vegan or self.gluten_free)


@dataclass
class Dish:
    id: str
    venue_id: str
    name: str
    dietary: DietaryFilters = field(default_factory=DietaryFilters)
    is_hero: bool = False
    status: VenueStatus = VenueStatus.ACCEPTED


@dataclass(frozen=True)
class OpeningPeriod:
    open_day: int  # 0=Sunday .. 6=Saturday
    open_time: str  # HHMM, 24h
    close_day: Optional[int] = None
    close_time: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "open_day": self.open_day,
            "open_time": self.open_time,
            "close_day": self.close_day,
            "close_time": self.close_time,
        }

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> "OpeningPeriod":
        return cls(
            open_day=int(raw["open_day"]),
            open_time=str(raw["open_time"]),
            close_day=(int(raw["close_day"]) if raw.get("close_day") is not None else None),
            close_time=(str(raw["close_time"]) if raw.get("close_time") else None),
        )


@dataclass
class HoursInfo:
    is_open: bool
    close_time_label: Optional[str] = None
    today_hours_label: Optional[str] = None
    periods: List[OpeningPeriod] = field(default_factory=list)


class CacheKind(str, Enum):
    HOURS = "hours"
    DETAILS = "details"
    PHOTO = "photo"


@dataclass
class CacheEntry:
    kind: CacheKind
    external_id: str
    data: Any
    created_at: float
    expires_at: float


@dataclass
class PlaceDetails:
    external_id: str
    name: str
    address: Optional[str]
    coordinates: Optional[Coordinates]
    periods: List[OpeningPeriod] = field(default_factory=list)
    photo_ref: Optional[str] = None


@dataclass
class RegistryCandidate:
    external_id: str
    name: str
    address: Optional[str] = None
    coordinates: Optional[Coordinates] = None


@dataclass
class NearbyVenue:
    venue: Venue
    distance_miles: float


@dataclass
class PlaceRecommendation:
    venue: Venue
    hero_dish: Optional[Dish]
    matching_dishes: List[Dish]
    distance_miles: float
    is_open: bool
    close_time_label: Optional[str] = None


@dataclass
class NextToOpen:
    venue: Venue
    opens_in_label: str


# RecommendationResult variants


@dataclass
class Recommendation:
    recommendation: PlaceRecommendation
    kind: str = field(default="recommendation", init=False)


@dataclass
class NothingOpen:
    next_to_open: Optional[NextToOpen] = None
    kind: str = field(default="nothing_open", init=False)


@dataclass
class NotInServiceArea:
    preview_venues: List[Venue] = field(default_factory=list)
    kind: str = field(default="not_in_area", init=False)


@dataclass
class AllSeen:
    kind: str = field(default="all_seen", init=False)


RecommendationResult = Union[Recommendation, NothingOpen, NotInServiceArea, AllSeen]
