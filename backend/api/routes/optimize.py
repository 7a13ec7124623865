"""
api/routes/optimize.py
-----------------------
POST /v1/trips/{trip_id}/optimize
GET  /v1/trips/{trip_id}/progress

Runs the optimization pipeline for one trip and returns the
OptimizationResult JSON. Progress of the latest run is readable from the
progress endpoint while (and after) it runs.

The orchestrator is built once per process from config and shared by every
request; tests swap it through app.dependency_overrides[get_orchestrator].
"""

from __future__ import annotations

import threading
from datetime import date as date_type
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from db.cache import ResultCache
from db.result_store import build_result_store
from modules.optimization.orchestrator import OptimizationOrchestrator
from modules.optimization.progress import build_progress_sink
from schemas.trip import (
    ROLE_CANDIDATE,
    Member,
    OptimizationRequest,
    OptimizationSettings,
    Place,
    Preference,
)

router = APIRouter()

_lock = threading.Lock()
_orchestrator: Optional[OptimizationOrchestrator] = None


def get_orchestrator() -> OptimizationOrchestrator:
    """Process-wide orchestrator (cache, store and progress sink from config)."""
    global _orchestrator
    with _lock:
        if _orchestrator is None:
            _orchestrator = OptimizationOrchestrator(
                cache=ResultCache(),
                store=build_result_store(),
                progress_sink=build_progress_sink(),
            )
        return _orchestrator


# ── Request schemas ────────────────────────────────────────────────────────────

class PlaceIn(BaseModel):
    place_id: str
    name: str
    lat: float
    lon: float
    category: str = ""
    role: str = Field(ROLE_CANDIDATE, description="departure | destination | candidate")


class PreferenceIn(BaseModel):
    member_id: str
    place_id: str
    raw_score: float
    requested_duration_minutes: float = 0.0
    is_favorite: bool = False


class MemberIn(BaseModel):
    member_id: str
    display_name: str = ""
    color: str = ""


class SettingsIn(BaseModel):
    fairness_weight:       Optional[float] = Field(None, ge=0.0, le=1.0)
    max_places:            Optional[int]   = Field(None, ge=1)
    max_daily_distance_km: Optional[float] = Field(None, gt=0)
    max_daily_minutes:     Optional[float] = Field(None, gt=0)
    cluster_radius_km:     Optional[float] = Field(None, gt=0)
    preferred_transport_modes: Optional[list[str]] = None
    start_date: Optional[str] = Field(None, description="ISO-8601 date YYYY-MM-DD")


class OptimizeRequest(BaseModel):
    places: list[PlaceIn] = Field(default_factory=list)
    preferences: list[PreferenceIn] = Field(default_factory=list)
    members: list[MemberIn] = Field(default_factory=list)
    settings: SettingsIn = Field(default_factory=SettingsIn)


def _to_domain(trip_id: str, req: OptimizeRequest) -> OptimizationRequest:
    start: Optional[date_type] = None
    if req.settings.start_date:
        try:
            start = date_type.fromisoformat(req.settings.start_date)
        except ValueError as exc:
            raise HTTPException(status_code=422, detail=f"Invalid start_date: {exc}") from exc

    settings = OptimizationSettings.from_config(
        fairness_weight=req.settings.fairness_weight,
        max_places=req.settings.max_places,
        max_daily_distance_km=req.settings.max_daily_distance_km,
        max_daily_minutes=req.settings.max_daily_minutes,
        cluster_radius_km=req.settings.cluster_radius_km,
        preferred_transport_modes=req.settings.preferred_transport_modes,
        start_date=start,
    )
    return OptimizationRequest(
        trip_id=trip_id,
        places=[Place(**p.model_dump()) for p in req.places],
        preferences=[Preference(**p.model_dump()) for p in req.preferences],
        members=[Member(**m.model_dump()) for m in req.members],
        settings=settings,
    )


# ── Endpoints ──────────────────────────────────────────────────────────────────

@router.post("/{trip_id}/optimize", summary="Optimize a trip into a fair day-by-day itinerary")
def optimize_trip(
    trip_id: str,
    req: OptimizeRequest,
    orchestrator: OptimizationOrchestrator = Depends(get_orchestrator),
) -> dict:
    """
    Runs normalize -> cluster -> select -> route -> split and returns the
    OptimizationResult. Identical inputs are served from the result cache.
    Engine errors are rendered by the handler registered in api/server.py.
    """
    return orchestrator.optimize(_to_domain(trip_id, req)).to_dict()


@router.get("/{trip_id}/progress", summary="Latest optimization progress for a trip")
def get_progress(
    trip_id: str,
    orchestrator: OptimizationOrchestrator = Depends(get_orchestrator),
) -> dict:
    sink = orchestrator.progress_sink
    latest = sink.latest(trip_id) if sink is not None and hasattr(sink, "latest") else None
    if latest is None:
        raise HTTPException(status_code=404, detail=f"No optimization progress for trip {trip_id!r}")
    return latest
