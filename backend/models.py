"""Pydantic models for session state, discovery payloads and API bodies."""

import math
from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_validator


class Coordinate(BaseModel):
    model_config = ConfigDict(frozen=True)

    lat: float
    lng: float

    @field_validator("lat", "lng")
    @classmethod
    def _finite(cls, v: float) -> float:
        if not math.isfinite(v):
            raise ValueError("coordinate components must be finite numbers")
        return v


class Category(str, Enum):
    BAR = "bar"
    SALON = "salon"
    RENTAL = "rental"
    GENERIC = "generic"
    DISTRICT = "district"


class PointStatus(str, Enum):
    PENDING = "pending"
    SUCCESS = "success"
    FAILURE = "failure"


class Phase(str, Enum):
    IDLE = "idle"
    PREVIEWING = "previewing"
    TRACKING = "tracking"
    ARRIVED = "arrived"
    CANCELLED = "cancelled"


# ---------- Discovery seeds (raw provider data, no identity yet) ----------

class PoiSeed(BaseModel):
    name: str
    coordinate: Coordinate
    category: Category = Category.BAR
    address: str | None = None


class DistrictSeed(BaseModel):
    name: str
    coordinate: Coordinate
    description: str | None = None
    population: str | None = None


class DiscoveryBundle(BaseModel):
    model_config = ConfigDict(frozen=True)

    city_name: str | None = None
    city_population: str | None = None
    businesses: list[PoiSeed] = Field(default_factory=list)
    districts: list[DistrictSeed] = Field(default_factory=list)

    def is_empty(self) -> bool:
        return not (self.city_name or self.businesses or self.districts)


# ---------- Session entities ----------

class PointOfInterest(BaseModel):
    id: str
    name: str
    category: Category
    coordinate: Coordinate
    address: str | None = None
    status: PointStatus = PointStatus.PENDING


class District(BaseModel):
    id: str
    name: str
    coordinate: Coordinate
    description: str | None = None
    covered: bool = False
    population: str | None = None


class TrackPoint(BaseModel):
    model_config = ConfigDict(frozen=True)

    timestamp: datetime
    coordinate: Coordinate


class RouteFragment(BaseModel):
    """What the routing layer knows about a path, before it is tied to a target."""

    geometry: list[Coordinate]
    distance_m: float
    duration_s: float
    distance_text: str
    duration_text: str
    estimated_arrival: datetime


class ActiveRoute(BaseModel):
    target_id: str
    target_name: str
    distance_text: str
    duration_text: str
    distance_m: float
    duration_s: float
    estimated_arrival: datetime
    geometry: list[Coordinate]


class RouteHistory(BaseModel):
    id: str
    date: str
    start_time: str
    end_time: str
    distance_km: float
    path: list[Coordinate]


class SessionState(BaseModel):
    """Render-ready snapshot of the navigation session."""

    phase: Phase = Phase.IDLE
    current_location: Coordinate | None = None
    map_focus: Coordinate | None = None
    heading: float = 0.0
    tracking_enabled: bool = False
    location_available: bool = True
    active_route: ActiveRoute | None = None
    selected_target_id: str | None = None
    points_of_interest: list[PointOfInterest] = Field(default_factory=list)
    districts: list[District] = Field(default_factory=list)
    city_label: str = ""
    city_population_label: str = ""
    city_center: Coordinate | None = None
    loading: bool = False
    track: list[TrackPoint] = Field(default_factory=list)


class Announcement(BaseModel):
    text: str
    created_at: datetime
    audio_base64: str | None = None
    sample_rate: int | None = None


# ---------- API request bodies ----------

class SearchRequest(BaseModel):
    query: str = Field(..., min_length=1)


class StatusRequest(BaseModel):
    status: PointStatus

    @field_validator("status")
    @classmethod
    def _terminal_only(cls, v: PointStatus) -> PointStatus:
        if v is PointStatus.PENDING:
            raise ValueError("status can only be set to success or failure")
        return v
