"""
schemas/trip.py
---------------
Dataclass definitions for the inputs and intermediate structures of one
optimization run.

Inputs (never mutated by the engine):
  Member, Place, Preference, OptimizationSettings, OptimizationRequest

Per-stage outputs (ephemeral, owned by a single run):
  StandardizedPreference, MemberStatistics  -- preference normalizer
  Cluster                                   -- geographic clusterer
  SelectedPlace                             -- fair selector
  Airport, RouteLeg                         -- route sequencer
  ScheduledStop, MealBreak, DaySchedule     -- daily schedule splitter
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from typing import Optional

import config

# Place roles
ROLE_DEPARTURE = "departure"
ROLE_DESTINATION = "destination"
ROLE_CANDIDATE = "candidate"
PLACE_ROLES = (ROLE_DEPARTURE, ROLE_DESTINATION, ROLE_CANDIDATE)

TRANSPORT_MODES = ("walk", "drive", "fly")


# ── Inputs ─────────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class Member:
    """A trip member. Immutable for the duration of a run."""
    member_id: str
    display_name: str = ""
    color: str = ""


@dataclass(frozen=True)
class Place:
    """
    A place on the trip wishlist.

    role:
      "departure"   -- fixed start of the route (system-owned)
      "destination" -- fixed end of the route (system-owned)
      "candidate"   -- competes for selection
    """
    place_id: str
    name: str
    lat: float
    lon: float
    category: str = ""
    role: str = ROLE_CANDIDATE

    @property
    def is_system(self) -> bool:
        return self.role in (ROLE_DEPARTURE, ROLE_DESTINATION)


@dataclass(frozen=True)
class Preference:
    """One member's raw wish for one place."""
    member_id: str
    place_id: str
    raw_score: float
    requested_duration_minutes: float = 0.0
    is_favorite: bool = False


@dataclass
class OptimizationSettings:
    fairness_weight: float = 0.6
    max_places: int = 10
    max_daily_distance_km: float = 400.0
    max_daily_minutes: float = 600.0
    preferred_transport_modes: list[str] = field(default_factory=lambda: list(TRANSPORT_MODES))
    cluster_radius_km: float = 50.0
    start_date: Optional[date] = None

    @classmethod
    def from_config(cls, **overrides) -> "OptimizationSettings":
        """Settings populated from config.py defaults, with keyword overrides."""
        values = dict(
            fairness_weight=config.FAIRNESS_WEIGHT,
            max_places=config.MAX_PLACES,
            max_daily_distance_km=config.MAX_DAILY_DISTANCE_KM,
            max_daily_minutes=config.MAX_DAILY_MINUTES,
            preferred_transport_modes=list(TRANSPORT_MODES),
            cluster_radius_km=config.CLUSTER_RADIUS_KM,
            start_date=None,
        )
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)

    def to_dict(self) -> dict:
        return {
            "fairness_weight":           self.fairness_weight,
            "max_places":                self.max_places,
            "max_daily_distance_km":     self.max_daily_distance_km,
            "max_daily_minutes":         self.max_daily_minutes,
            "preferred_transport_modes": sorted(self.preferred_transport_modes),
            "cluster_radius_km":         self.cluster_radius_km,
            "start_date":                self.start_date.isoformat() if self.start_date else None,
        }


@dataclass
class OptimizationRequest:
    trip_id: str
    places: list[Place] = field(default_factory=list)
    preferences: list[Preference] = field(default_factory=list)
    members: list[Member] = field(default_factory=list)
    settings: OptimizationSettings = field(default_factory=OptimizationSettings.from_config)

    @property
    def departure(self) -> Optional[Place]:
        return next((p for p in self.places if p.role == ROLE_DEPARTURE), None)

    @property
    def destination(self) -> Optional[Place]:
        return next((p for p in self.places if p.role == ROLE_DESTINATION), None)

    @property
    def candidates(self) -> list[Place]:
        return [p for p in self.places if not p.is_system]


# ── Normalizer outputs ─────────────────────────────────────────────────────────

@dataclass
class StandardizedPreference:
    """
    A Preference with its per-member z-score.

    fallback_reason is None when the member's own statistics were used,
    otherwise "single_rating" | "identical_ratings" (panel-wide statistics used).
    """
    member_id: str
    place_id: str
    raw_score: float
    standardized_score: float
    requested_duration_minutes: float = 0.0
    is_favorite: bool = False
    fallback_reason: Optional[str] = None

    @property
    def contributing_member_id(self) -> str:
        return self.member_id


@dataclass
class MemberStatistics:
    member_id: str
    rating_count: int
    mean: float
    std_dev: float
    min_score: float
    max_score: float
    used_fallback: bool = False
    fallback_reason: Optional[str] = None


# ── Clusterer outputs ──────────────────────────────────────────────────────────

@dataclass
class Cluster:
    cluster_id: str
    place_ids: list[str] = field(default_factory=list)
    centroid_lat: float = 0.0
    centroid_lon: float = 0.0
    total_desirability: float = 0.0
    average_stay_minutes: float = 0.0
    member_preferences: dict[str, float] = field(default_factory=dict)  # member_id -> summed score

    @property
    def size(self) -> int:
        return len(self.place_ids)


# ── Selector outputs ───────────────────────────────────────────────────────────

@dataclass
class SelectedPlace:
    place: Place
    selection_round: int
    selection_score: float
    # member_id -> normalized contribution weight (weights sum to 1)
    contributors: dict[str, float] = field(default_factory=dict)
    wish_score: float = 0.0
    fairness_impact: float = 0.0
    cluster_id: Optional[str] = None

    @property
    def place_id(self) -> str:
        return self.place.place_id


# ── Sequencer outputs ──────────────────────────────────────────────────────────

@dataclass
class Airport:
    code: str
    name: str
    lat: float
    lon: float
    is_commercial: bool = True
    is_international: bool = False
    size: str = "medium"                 # "large" | "medium" | "small"
    distance_km: float = 0.0             # from the query point
    capability_score: float = 0.0
    source: str = "fallback"             # "cache" | "external" | "fallback"


@dataclass
class RouteLeg:
    """
    One directed travel segment. Fly legs are represented as three RouteLegs
    (drive to airport, fly, drive from airport) sharing a segment_index.
    """
    from_id: str
    to_id: str
    transport_mode: str
    distance_km: float
    duration_minutes: float
    segment_index: int = 0
    from_name: str = ""
    to_name: str = ""
    airport_code: Optional[str] = None
    note: Optional[str] = None
    # fly legs: describe_airport() of the departure and arrival airports
    airports: list[dict] = field(default_factory=list)


# ── Splitter outputs ───────────────────────────────────────────────────────────

@dataclass
class MealBreak:
    after_place_id: str
    start: str                # "HH:MM"
    duration_minutes: float
    kind: str = "lunch"       # "lunch" | "dinner" | "snack"


@dataclass
class ScheduledStop:
    place: Place
    arrival: str              # "HH:MM"
    departure: str            # "HH:MM"
    allocated_minutes: float
    buffer_minutes: float = 0.0
    priority: str = "medium"  # "high" | "medium" | "low"
    legs_in: list[RouteLeg] = field(default_factory=list)


@dataclass
class DaySchedule:
    day_number: int
    date: Optional[date] = None
    stops: list[ScheduledStop] = field(default_factory=list)
    meals: list[MealBreak] = field(default_factory=list)
    total_distance_km: float = 0.0
    travel_minutes: float = 0.0
    total_minutes: float = 0.0
    compactness: str = "light"  # "light" | "moderate" | "packed"
    warnings: list[str] = field(default_factory=list)
