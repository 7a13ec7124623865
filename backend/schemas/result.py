"""
schemas/result.py
-----------------
OptimizationResult: the immutable snapshot produced by one successful run,
plus the serialisers that turn stage outputs into its plain-dict sections.

Sections:
  selected_places  ordered by selection round (system places first, round 0)
  route            every RouteLeg in travel order
  day_schedules    DaySchedule per calendar day
  metrics          fairness / distance / duration / efficiency and analyses
  generation_info  algorithm_version, generated_at, processing_time_ms, cache
  warnings         human-readable notes collected across stages

Idempotence: two runs on identical input produce identical sections except
generation_info's generated_at / processing_time_ms / cache fields;
stable_dict() drops those.
"""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from typing import Any, Optional

from schemas.trip import DaySchedule, MealBreak, Place, RouteLeg, ScheduledStop, SelectedPlace

_VOLATILE_INFO_KEYS = ("generated_at", "processing_time_ms", "cache")


def _r(value: float, ndigits: int = 3) -> float:
    return round(float(value), ndigits)


# ── Serialisers ────────────────────────────────────────────────────────────────

def ser_place(p: Place) -> dict:
    return {
        "place_id": p.place_id,
        "name":     p.name,
        "lat":      p.lat,
        "lon":      p.lon,
        "category": p.category,
        "role":     p.role,
    }


def ser_selected(s: SelectedPlace) -> dict:
    return {
        **ser_place(s.place),
        "selection_round": s.selection_round,
        "selection_score": _r(s.selection_score, 6),
        "wish_score":      _r(s.wish_score, 6),
        "fairness_impact": _r(s.fairness_impact, 6),
        "contributors":    {m: _r(w, 6) for m, w in sorted(s.contributors.items())},
        "cluster_id":      s.cluster_id,
    }


def ser_leg(leg: RouteLeg) -> dict:
    return {
        "from_id":          leg.from_id,
        "to_id":            leg.to_id,
        "from_name":        leg.from_name,
        "to_name":          leg.to_name,
        "transport_mode":   leg.transport_mode,
        "distance_km":      _r(leg.distance_km),
        "duration_minutes": _r(leg.duration_minutes, 1),
        "segment_index":    leg.segment_index,
        "airport_code":     leg.airport_code,
        "airports":         [dict(a) for a in leg.airports],
        "note":             leg.note,
    }


def ser_stop(s: ScheduledStop) -> dict:
    return {
        "place":             ser_place(s.place),
        "arrival":           s.arrival,
        "departure":         s.departure,
        "allocated_minutes": _r(s.allocated_minutes, 1),
        "buffer_minutes":    _r(s.buffer_minutes, 1),
        "priority":          s.priority,
        "legs_in":           [ser_leg(leg) for leg in s.legs_in],
    }


def ser_meal(m: MealBreak) -> dict:
    return {
        "after_place_id":   m.after_place_id,
        "start":            m.start,
        "duration_minutes": _r(m.duration_minutes, 1),
        "kind":             m.kind,
    }


def ser_day(d: DaySchedule) -> dict:
    return {
        "day_number":        d.day_number,
        "date":              d.date.isoformat() if d.date else None,
        "stops":             [ser_stop(s) for s in d.stops],
        "meals":             [ser_meal(m) for m in d.meals],
        "total_distance_km": _r(d.total_distance_km),
        "travel_minutes":    _r(d.travel_minutes, 1),
        "total_minutes":     _r(d.total_minutes, 1),
        "compactness":       d.compactness,
        "warnings":          list(d.warnings),
    }


# ── Snapshot ───────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class OptimizationResult:
    trip_id: str
    places_hash: str
    settings_hash: str
    selected_places: list[dict] = field(default_factory=list)
    route: list[dict] = field(default_factory=list)
    day_schedules: list[dict] = field(default_factory=list)
    metrics: dict = field(default_factory=dict)
    generation_info: dict = field(default_factory=dict)
    warnings: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return copy.deepcopy({
            "trip_id":         self.trip_id,
            "places_hash":     self.places_hash,
            "settings_hash":   self.settings_hash,
            "selected_places": self.selected_places,
            "route":           self.route,
            "day_schedules":   self.day_schedules,
            "metrics":         self.metrics,
            "generation_info": self.generation_info,
            "warnings":        self.warnings,
        })

    def stable_dict(self) -> dict:
        """to_dict() without the per-run timing / cache fields."""
        out = self.to_dict()
        for key in _VOLATILE_INFO_KEYS:
            out["generation_info"].pop(key, None)
        return out

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "OptimizationResult":
        data = copy.deepcopy(data)
        return cls(
            trip_id=data["trip_id"],
            places_hash=data["places_hash"],
            settings_hash=data["settings_hash"],
            selected_places=data.get("selected_places", []),
            route=data.get("route", []),
            day_schedules=data.get("day_schedules", []),
            metrics=data.get("metrics", {}),
            generation_info=data.get("generation_info", {}),
            warnings=data.get("warnings", []),
        )

    def with_generation_info(self, **updates: Optional[Any]) -> "OptimizationResult":
        """A copy with generation_info fields replaced (the snapshot itself is never mutated)."""
        data = self.to_dict()
        data["generation_info"].update(updates)
        return OptimizationResult.from_dict(data)
