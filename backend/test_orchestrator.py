"""
test_orchestrator.py
───────────────────────────────────────────────────────────────────────────────
End-to-end runs through OptimizationOrchestrator: idempotence, cache hits,
stage progress, failure handling and the shape of the result snapshot.
───────────────────────────────────────────────────────────────────────────────
"""

from __future__ import annotations

import pytest

from conftest import TOKYO_STATION
from db.cache import ResultCache
from db.result_store import InMemoryResultStore
from modules.optimization.errors import ComputationError, InsufficientDataError, ValidationError
from modules.optimization.orchestrator import (
    OptimizationOrchestrator,
    compute_places_hash,
    compute_settings_hash,
)
from modules.optimization.progress import STAGES, InMemoryProgressSink
from schemas.trip import (
    Member,
    OptimizationRequest,
    OptimizationSettings,
    Place,
    Preference,
)


def _stages(events) -> list[str]:
    stages: list[str] = []
    for e in events:
        if not stages or stages[-1] != e.stage:
            stages.append(e.stage)
    return stages


# ─────────────────────────────────────────────────────────────────────────────
# Idempotence and caching
# ─────────────────────────────────────────────────────────────────────────────

def test_identical_input_gives_identical_result(orchestrator, tokyo_request):
    first = orchestrator.optimize(tokyo_request)
    orchestrator.cache.flush()
    second = orchestrator.optimize(tokyo_request)

    assert first.generation_info["cache"] == "miss"
    assert second.generation_info["cache"] == "miss"
    assert first.stable_dict() == second.stable_dict()


def test_second_run_is_served_from_cache(orchestrator, tokyo_request, progress_sink):
    first = orchestrator.optimize(tokyo_request)
    before = len(progress_sink.events)
    second = orchestrator.optimize(tokyo_request)

    assert second.generation_info["cache"] == "hit"
    assert second.stable_dict() == first.stable_dict()
    assert _stages(progress_sink.events[before:]) == ["collecting", "complete"]
    assert len(orchestrator.store.records) == 1


def test_hashes_ignore_input_order(tokyo_request):
    shuffled = OptimizationRequest(
        trip_id=tokyo_request.trip_id,
        places=list(reversed(tokyo_request.places)),
        preferences=list(reversed(tokyo_request.preferences)),
        members=list(reversed(tokyo_request.members)),
        settings=tokyo_request.settings,
    )
    assert compute_places_hash(shuffled) == compute_places_hash(tokyo_request)
    assert compute_settings_hash(tokyo_request, (1, 5)) != compute_settings_hash(tokyo_request, (1, 10))


def test_changed_settings_miss_the_cache(orchestrator, tokyo_request):
    orchestrator.optimize(tokyo_request)
    tokyo_request.settings = OptimizationSettings.from_config(max_places=2)
    result = orchestrator.optimize(tokyo_request)
    assert result.generation_info["cache"] == "miss"
    assert len([p for p in result.selected_places if p["selection_round"] > 0]) == 2


# ─────────────────────────────────────────────────────────────────────────────
# Progress
# ─────────────────────────────────────────────────────────────────────────────

def test_stages_run_in_order_with_rising_percent(orchestrator, tokyo_request, progress_sink):
    orchestrator.optimize(tokyo_request)

    assert _stages(progress_sink.events) == list(STAGES)
    percents = [e.percent for e in progress_sink.events]
    assert percents == sorted(percents)
    assert progress_sink.latest("trip-tokyo")["percent"] == 100


def test_structured_log_records_the_run(orchestrator, tokyo_request, slog):
    orchestrator.optimize(tokyo_request)
    events = [r["event_type"] for r in slog.read("trip-tokyo")]
    assert "CACHE_MISS" in events
    assert events.count("STAGE_TRANSITION") == len(STAGES)
    components = [r["payload"]["component"] for r in slog.read("trip-tokyo", "PERFORMANCE")]
    assert {"normalizing", "selecting", "routing", "route_sequencer"} <= set(components)


# ─────────────────────────────────────────────────────────────────────────────
# Failures
# ─────────────────────────────────────────────────────────────────────────────

def test_no_candidates_fails_without_caching(orchestrator, progress_sink):
    request = OptimizationRequest(
        trip_id="trip-empty",
        places=[TOKYO_STATION],
        members=[Member("alice")],
    )
    with pytest.raises(InsufficientDataError) as exc_info:
        orchestrator.optimize(request)

    assert exc_info.value.code == "ERROR_NO_CANDIDATES"
    assert progress_sink.latest("trip-empty")["stage"] == "error"
    assert progress_sink.latest("trip-empty")["percent"] == 0
    assert orchestrator.store.records == []

    key = ResultCache.key(
        request.trip_id,
        compute_places_hash(request),
        compute_settings_hash(request, (orchestrator.rating_min, orchestrator.rating_max)),
    )
    assert orchestrator.cache.get(key) is None
    assert orchestrator.cache.claim(key), "failed run must release its in-flight claim"


def test_invalid_input_is_rejected_before_any_stage(orchestrator, tokyo_request, progress_sink):
    tokyo_request.preferences.append(Preference("alice", "meiji", 7))

    with pytest.raises(ValidationError) as exc_info:
        orchestrator.optimize(tokyo_request)

    assert exc_info.value.code == "ERROR_RATING_OUT_OF_RANGE"
    assert progress_sink.events == []


def test_unexpected_exception_is_wrapped(orchestrator, tokyo_request, progress_sink, monkeypatch):
    def explode(*args):
        raise RuntimeError("selector blew up")

    monkeypatch.setattr(orchestrator, "_select", explode)

    with pytest.raises(ComputationError) as exc_info:
        orchestrator.optimize(tokyo_request)

    assert exc_info.value.code == "ERROR_INTERNAL"
    assert exc_info.value.context["stage"] == "selecting"
    assert progress_sink.latest("trip-tokyo")["stage"] == "error"
    assert orchestrator.store.records == []


# ─────────────────────────────────────────────────────────────────────────────
# Result content
# ─────────────────────────────────────────────────────────────────────────────

def test_result_metrics(orchestrator, tokyo_request):
    result = orchestrator.optimize(tokyo_request)
    metrics = result.metrics

    for key in ("fairness_score", "member_fairness", "total_distance_km",
                "total_duration_minutes", "efficiency_score", "feasible", "days"):
        assert key in metrics
    assert 0.0 <= metrics["efficiency_score"] <= 1.0
    assert 0.0 <= metrics["fairness_score"] <= 1.0
    assert metrics["total_distance_km"] == pytest.approx(
        sum(leg["distance_km"] for leg in result.route), abs=0.01,
    )
    assert metrics["days"] == len(result.day_schedules)
    assert set(metrics["member_fairness"]) == {"alice", "bob", "charlie"}
    assert metrics["preference_levels"]["alice"]["tokyo_tower"] == "high"
    assert metrics["preference_levels"]["alice"]["shibuya"] == "low"
    assert set(metrics["preference_levels"]["bob"]) == {"tokyo_tower", "shibuya", "meiji"}


def test_selected_places_are_bounded_and_ordered(orchestrator, tokyo_request):
    result = orchestrator.optimize(tokyo_request)
    chosen = [p for p in result.selected_places if p["selection_round"] > 0]

    assert 1 <= len(chosen) <= tokyo_request.settings.max_places
    assert result.selected_places[0]["place_id"] == "tokyo_station"
    assert result.selected_places[0]["selection_round"] == 0
    assert [p["selection_round"] for p in chosen] == list(range(1, len(chosen) + 1))
    assert result.route[0]["from_id"] == "tokyo_station"
    assert result.route[-1]["to_id"] == "tokyo_station"


def test_compressed_scale_member_is_represented(airport_tool, slog):
    places = [
        Place("p1", "Place One", 35.00, 139.00),
        Place("p2", "Place Two", 35.10, 139.10),
        Place("p3", "Place Three", 35.20, 139.20),
    ]
    prefs = [
        Preference("alice", "p1", 9), Preference("alice", "p2", 8), Preference("alice", "p3", 10),
        Preference("bob", "p1", 3), Preference("bob", "p2", 2), Preference("bob", "p3", 4),
        Preference("charlie", "p1", 5), Preference("charlie", "p2", 6),
    ]
    request = OptimizationRequest(
        trip_id="trip-bob",
        places=places,
        preferences=prefs,
        members=[Member("alice"), Member("bob"), Member("charlie")],
        settings=OptimizationSettings.from_config(max_places=2, fairness_weight=0.6),
    )
    orch = OptimizationOrchestrator(
        cache=ResultCache(backend="in_memory"),
        store=InMemoryResultStore(),
        progress_sink=InMemoryProgressSink(),
        airport_tool=airport_tool,
        structured_logger=slog,
        rating_min=1,
        rating_max=10,
    )
    result = orch.optimize(request)

    assert [p["place_id"] for p in result.selected_places] == ["p3", "p2"]
    assert any("bob" in p["contributors"] for p in result.selected_places)
