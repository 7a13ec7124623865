"""
modules/optimization/orchestrator.py
-------------------------------------
Runs the five planning stages for one optimization request.

  validate   boundary checks (ValidationError, no progress written)
  collecting content hash -> cache lookup -> in-flight claim; data sufficiency
  normalizing PreferenceNormalizer + GeoClusterer
  selecting   FairSelector
  routing     RouteSequencer + DaySplitter
  complete    OptimizationResult snapshot -> cache (TTL) -> result store

On any failure the stage tracker moves to "error" with the failure message;
nothing is cached or persisted. Unexpected exceptions are wrapped in
ComputationError(ERROR_INTERNAL). Progress, cache and store write failures
are logged and swallowed.
"""

from __future__ import annotations

import hashlib
import json
import logging
import time as _time_mod
from datetime import datetime, timezone
from typing import Optional

import config
from db.cache import ResultCache
from db.result_store import InMemoryResultStore, ResultStore, build_record
from modules.observability.logger import StructuredLogger
from modules.optimization.errors import (
    ComputationError,
    InsufficientDataError,
    OptimizationError,
)
from modules.optimization.progress import ProgressSink, StageTracker
from modules.planning.day_splitter import DaySplitter, ScheduleResult
from modules.planning.fair_selector import FairSelector, SelectionResult
from modules.planning.geo_clustering import GeoClusterer
from modules.planning.preference_normalizer import NormalizationResult, PreferenceNormalizer
from modules.planning.route_sequencer import RouteResult, RouteSequencer
from modules.tool_usage.airport_tool import AirportTool
from modules.validation import require_valid_request
from schemas.result import OptimizationResult, ser_day, ser_leg, ser_selected
from schemas.trip import OptimizationRequest

logger = logging.getLogger(__name__)


# ── Content hashes ─────────────────────────────────────────────────────────────

def _sha256(obj) -> str:
    encoded = json.dumps(obj, sort_keys=True, default=str).encode()
    return hashlib.sha256(encoded).hexdigest()


def compute_places_hash(request: OptimizationRequest) -> str:
    """Deterministic SHA-256 of the place set, preferences and members (order-insensitive)."""
    return _sha256({
        "places": sorted(
            [p.place_id, p.name, p.lat, p.lon, p.category, p.role] for p in request.places
        ),
        "preferences": sorted(
            [p.member_id, p.place_id, float(p.raw_score),
             float(p.requested_duration_minutes), bool(p.is_favorite)]
            for p in request.preferences
        ),
        "members": sorted(m.member_id for m in request.members),
    })


def compute_settings_hash(request: OptimizationRequest, rating_scale: tuple[float, float]) -> str:
    """Deterministic SHA-256 of the run settings and algorithm version."""
    return _sha256({
        "settings":          request.settings.to_dict(),
        "rating_scale":      list(rating_scale),
        "algorithm_version": config.ALGORITHM_VERSION,
    })


# ── Orchestrator ───────────────────────────────────────────────────────────────

class OptimizationOrchestrator:
    """
    One instance per process; the cache, store, progress sink and airport tool
    are injected so tests and the API can share or replace them.
    """

    def __init__(
        self,
        cache: Optional[ResultCache] = None,
        store: Optional[ResultStore] = None,
        progress_sink: Optional[ProgressSink] = None,
        airport_tool: Optional[AirportTool] = None,
        structured_logger: Optional[StructuredLogger] = None,
        rating_min: float = config.RATING_MIN,
        rating_max: float = config.RATING_MAX,
    ) -> None:
        self.cache = cache if cache is not None else ResultCache(backend="in_memory")
        self.store = store if store is not None else InMemoryResultStore()
        self.progress_sink = progress_sink
        self.airport_tool = airport_tool or AirportTool()
        self.slog = structured_logger or StructuredLogger()
        self.rating_min = rating_min
        self.rating_max = rating_max

    # ── public API ────────────────────────────────────────────────────────

    def optimize(self, request: OptimizationRequest) -> OptimizationResult:
        require_valid_request(request, rating_min=self.rating_min, rating_max=self.rating_max)

        t0 = _time_mod.perf_counter()
        tracker = StageTracker(request.trip_id, self.progress_sink)
        places_hash = compute_places_hash(request)
        settings_hash = compute_settings_hash(request, (self.rating_min, self.rating_max))
        key = self.cache.key(request.trip_id, places_hash, settings_hash)

        claimed = False
        try:
            self._enter(tracker, "collecting", "Collecting places and preferences")

            cached = self._cached(key)
            if cached is None and not self.cache.claim(key):
                logger.info("Waiting for in-flight computation of %s", key)
                cached = self.cache.wait(key)
            else:
                claimed = cached is None
            if cached is not None:
                self.slog.log(request.trip_id, "CACHE_HIT", {"key": key})
                self._enter(tracker, "complete", "Served from cache")
                tracker.finish("Optimization complete")
                return OptimizationResult.from_dict(cached).with_generation_info(cache="hit")

            self.slog.log(request.trip_id, "CACHE_MISS", {"key": key})
            self._check_sufficient(request)
            tracker.finish(f"{len(request.places)} places, {len(request.preferences)} preferences")

            self._enter(tracker, "normalizing", "Normalizing member preferences")
            normalization, clustering = self._timed(request.trip_id, "normalizing",
                                                    self._normalize, request)
            tracker.finish(f"{len(clustering.clusters)} clusters")

            self._enter(tracker, "selecting", "Selecting places fairly")
            selection = self._timed(request.trip_id, "selecting",
                                    self._select, request, normalization, clustering)
            tracker.finish(f"{len(selection.candidates)} places selected")

            self._enter(tracker, "routing", "Sequencing route and daily schedules")
            route, schedule = self._timed(request.trip_id, "routing",
                                          self._route, request, normalization, selection)
            tracker.finish(f"{len(schedule.days)} day(s) scheduled")

            result = self._build_result(
                request, places_hash, settings_hash,
                normalization, clustering, selection, route, schedule,
                processing_ms=(_time_mod.perf_counter() - t0) * 1000,
            )
            self._enter(tracker, "complete", "Saving optimization result")
            self._save(request.trip_id, key, places_hash, settings_hash, result)
            tracker.finish("Optimization complete")
            return result

        except OptimizationError as exc:
            self._fail(tracker, request.trip_id, exc)
            raise
        except Exception as exc:
            wrapped = ComputationError(
                f"unexpected failure during {tracker.stage}: {exc}",
                code="ERROR_INTERNAL",
                context={"stage": tracker.stage, "exception": type(exc).__name__},
            )
            self._fail(tracker, request.trip_id, wrapped)
            raise wrapped from exc
        finally:
            if claimed:
                self.cache.release(key)

    # ── stages ────────────────────────────────────────────────────────────

    @staticmethod
    def _check_sufficient(request: OptimizationRequest) -> None:
        if not request.places:
            raise InsufficientDataError("trip has no places", code="ERROR_NO_PLACES", field="places")
        if not request.candidates:
            raise InsufficientDataError(
                "trip has no candidate places besides departure/destination",
                code="ERROR_NO_CANDIDATES", field="places",
            )
        if not request.preferences:
            raise InsufficientDataError(
                "trip has no member preferences", code="ERROR_NO_PREFERENCES", field="preferences",
            )

    def _normalize(self, request: OptimizationRequest):
        normalizer = PreferenceNormalizer(rating_min=self.rating_min, rating_max=self.rating_max)
        normalization = normalizer.normalize(request.preferences)
        clustering = GeoClusterer(request.settings.cluster_radius_km).cluster(
            request.candidates, normalization,
        )
        return normalization, clustering

    @staticmethod
    def _select(request: OptimizationRequest, normalization, clustering) -> SelectionResult:
        selector = FairSelector(
            max_places=request.settings.max_places,
            fairness_weight=request.settings.fairness_weight,
        )
        return selector.select(request.places, normalization, request.members, clustering)

    def _route(
        self,
        request: OptimizationRequest,
        normalization: NormalizationResult,
        selection: SelectionResult,
    ) -> tuple[RouteResult, ScheduleResult]:
        sequencer = RouteSequencer(airport_tool=self.airport_tool, perf_logger=self.slog)
        route = sequencer.sequence(
            selection.selected,
            departure=request.departure,
            destination=request.destination,
            preferred_modes=request.settings.preferred_transport_modes,
            run_id=request.trip_id,
        )
        requested, scores = _stay_inputs(normalization, selection)
        splitter = DaySplitter(
            max_daily_minutes=request.settings.max_daily_minutes,
            max_daily_distance_km=request.settings.max_daily_distance_km,
        )
        schedule = splitter.split(route, requested, scores, request.settings.start_date)
        return route, schedule

    # ── result ────────────────────────────────────────────────────────────

    def _build_result(
        self,
        request: OptimizationRequest,
        places_hash: str,
        settings_hash: str,
        normalization: NormalizationResult,
        clustering,
        selection: SelectionResult,
        route: RouteResult,
        schedule: ScheduleResult,
        processing_ms: float,
    ) -> OptimizationResult:
        travel = route.total_duration_minutes
        visit = sum(stop.allocated_minutes for day in schedule.days for stop in day.stops)
        efficiency = visit / (visit + travel) if (visit + travel) > 0 else 0.0
        feasible = not any(day.warnings for day in schedule.days)

        warnings = (
            [w.message for w in normalization.warnings]
            + route.warnings
            + schedule.warnings
        )
        metrics = {
            "fairness_score":         round(selection.fairness_score, 6),
            "member_fairness":        {m: round(r, 6) for m, r in selection.member_fairness.items()},
            "total_distance_km":      round(route.total_distance_km, 3),
            "total_duration_minutes": round(schedule.total_minutes, 1),
            "travel_minutes":         round(travel, 1),
            "visit_minutes":          round(visit, 1),
            "efficiency_score":       round(efficiency, 6),
            "feasible":               feasible,
            "days":                   len(schedule.days),
            "rest_day_recommended":   schedule.rest_day_recommended,
            "round_trip":             route.round_trip,
            "transport":              _round_nested(route.transport_stats()),
            "two_opt":                _round_nested(route.two_opt),
            "normalization_quality": {
                "is_valid":             normalization.quality.is_valid,
                "issues":               normalization.quality.issues,
                "mean_of_member_means": round(normalization.quality.mean_of_member_means, 6),
                "fallback_fraction":    round(normalization.quality.fallback_fraction, 6),
            },
            "preference_levels":      normalization.interpretations(),
            "clusters": {
                "total":                 clustering.analysis.total_clusters,
                "isolated_destinations": clustering.analysis.isolated_destinations,
                "average_size":          round(clustering.analysis.average_cluster_size, 3),
            },
            "fairness_analysis":      _round_nested(selection.analysis),
            "satisfaction":           _round_nested(selection.satisfaction),
            "merged_duplicates":      selection.merged_duplicates,
        }
        return OptimizationResult(
            trip_id=request.trip_id,
            places_hash=places_hash,
            settings_hash=settings_hash,
            selected_places=[ser_selected(s) for s in selection.selected],
            route=[ser_leg(leg) for leg in route.legs],
            day_schedules=[ser_day(d) for d in schedule.days],
            metrics=metrics,
            generation_info={
                "algorithm_version":  config.ALGORITHM_VERSION,
                "generated_at":       datetime.now(timezone.utc).isoformat(),
                "processing_time_ms": round(processing_ms, 3),
                "cache":              "miss",
            },
            warnings=warnings,
        )

    # ── side effects (never fatal) ────────────────────────────────────────

    def _cached(self, key: str) -> Optional[dict]:
        return self.cache.get(key)

    def _save(self, trip_id: str, key: str, places_hash: str, settings_hash: str,
              result: OptimizationResult) -> None:
        payload = result.to_dict()
        if not self.cache.set(key, payload):
            logger.warning("Result for %s computed but not cached", trip_id)
        try:
            self.store.save(build_record(trip_id, places_hash, settings_hash, payload))
        except Exception as exc:
            logger.warning("Result store write failed for %s: %s", trip_id, exc)

    def _enter(self, tracker: StageTracker, stage: str, message: str) -> None:
        tracker.enter(stage, message)
        self.slog.log(tracker.trip_id, "STAGE_TRANSITION", {"stage": stage, "message": message})

    def _fail(self, tracker: StageTracker, trip_id: str, exc: OptimizationError) -> None:
        failed_stage = tracker.stage
        tracker.fail(exc.message)
        payload = {**exc.to_dict(), "stage": failed_stage, "context": exc.context}
        if isinstance(exc, ComputationError):
            logger.error("Optimization %s failed: %s context=%s", trip_id, exc, exc.context)
        else:
            logger.info("Optimization %s stopped: %s", trip_id, exc)
        self.slog.log(trip_id, "RUN_FAILED", payload)

    def _timed(self, run_id: str, component: str, fn, *args):
        _t0 = _time_mod.perf_counter()
        out = fn(*args)
        self.slog.log(run_id, "PERFORMANCE", {
            "component":   component,
            "duration_ms": round((_time_mod.perf_counter() - _t0) * 1000, 3),
        })
        return out


# ── helpers ────────────────────────────────────────────────────────────────────

def _stay_inputs(
    normalization: NormalizationResult,
    selection: SelectionResult,
) -> tuple[dict[str, float], dict[str, float]]:
    """
    place_id -> requested stay (average of contributors' requested durations,
    else of every rater's) and place_id -> average standardized score.
    """
    requested: dict[str, float] = {}
    scores: dict[str, float] = {}
    for sel in selection.candidates:
        pid = sel.place_id
        ids = {pid} | {d for d, k in selection.merged_duplicates.items() if k == pid}
        prefs = [sp for sp in normalization.standardized_preferences if sp.place_id in ids]
        if not prefs:
            continue
        scores[pid] = sum(sp.standardized_score for sp in prefs) / len(prefs)
        durations = [
            sp.requested_duration_minutes for sp in prefs
            if sp.member_id in sel.contributors and sp.requested_duration_minutes > 0
        ] or [sp.requested_duration_minutes for sp in prefs if sp.requested_duration_minutes > 0]
        if durations:
            requested[pid] = sum(durations) / len(durations)
    return requested, scores


def _round_nested(value, ndigits: int = 6):
    if isinstance(value, float):
        return round(value, ndigits)
    if isinstance(value, dict):
        return {k: _round_nested(v, ndigits) for k, v in value.items()}
    if isinstance(value, list):
        return [_round_nested(v, ndigits) for v in value]
    return value
