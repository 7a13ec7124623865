"""
conftest.py
───────────────────────────────────────────────────────────────────────────────
Shared pytest fixtures: a small Tokyo trip, a stub-catalogue airport tool, and
an orchestrator wired to in-memory cache / store / progress backends with its
JSONL log redirected to tmp_path.
───────────────────────────────────────────────────────────────────────────────
"""

from __future__ import annotations

import pytest

from db.cache import ResultCache
from db.result_store import InMemoryResultStore
from modules.observability.logger import StructuredLogger
from modules.optimization.orchestrator import OptimizationOrchestrator
from modules.optimization.progress import InMemoryProgressSink
from modules.tool_usage.airport_tool import AirportTool
from schemas.trip import (
    ROLE_DEPARTURE,
    Member,
    OptimizationRequest,
    OptimizationSettings,
    Place,
    Preference,
    SelectedPlace,
)

TOKYO_STATION = Place("tokyo_station", "Tokyo Station", 35.6812, 139.7671, "station", ROLE_DEPARTURE)
TOKYO_TOWER = Place("tokyo_tower", "Tokyo Tower", 35.6586, 139.7454, "landmark")
SENSO_JI = Place("senso_ji", "Senso-ji", 35.7148, 139.7967, "temple")
SHIBUYA = Place("shibuya", "Shibuya Crossing", 35.6595, 139.7005, "landmark")
MEIJI = Place("meiji", "Meiji Jingu", 35.6764, 139.6993, "shrine")
MT_FUJI = Place("mt_fuji", "Mount Fuji", 35.3606, 138.7274, "nature")
OSAKA_CASTLE = Place("osaka_castle", "Osaka Castle", 34.6873, 135.5262, "castle")


def as_selected(places: list[Place]) -> list[SelectedPlace]:
    """Wrap places as selection-order SelectedPlace records (round 1..n)."""
    return [
        SelectedPlace(place=p, selection_round=i, selection_score=1.0)
        for i, p in enumerate(places, start=1)
    ]


@pytest.fixture
def tokyo_places() -> list[Place]:
    return [TOKYO_STATION, TOKYO_TOWER, SENSO_JI, SHIBUYA, MEIJI, MT_FUJI]


@pytest.fixture
def members() -> list[Member]:
    return [Member("alice", "Alice"), Member("bob", "Bob"), Member("charlie", "Charlie")]


@pytest.fixture
def tokyo_request(tokyo_places, members) -> OptimizationRequest:
    ratings = {
        "alice":   {"tokyo_tower": 5, "senso_ji": 4, "shibuya": 2, "mt_fuji": 3},
        "bob":     {"tokyo_tower": 2, "shibuya": 5, "meiji": 4},
        "charlie": {"senso_ji": 3, "meiji": 2, "mt_fuji": 5},
    }
    prefs = [
        Preference(m, pid, score, requested_duration_minutes=90.0)
        for m, scores in ratings.items()
        for pid, score in scores.items()
    ]
    return OptimizationRequest(
        trip_id="trip-tokyo",
        places=list(tokyo_places),
        preferences=prefs,
        members=list(members),
        settings=OptimizationSettings.from_config(max_places=4),
    )


@pytest.fixture
def airport_tool() -> AirportTool:
    return AirportTool(use_stub=True)


@pytest.fixture
def slog(tmp_path) -> StructuredLogger:
    logger = StructuredLogger(tmp_path / "logs")
    yield logger
    logger.close()


@pytest.fixture
def progress_sink() -> InMemoryProgressSink:
    return InMemoryProgressSink()


@pytest.fixture
def orchestrator(airport_tool, slog, progress_sink) -> OptimizationOrchestrator:
    return OptimizationOrchestrator(
        cache=ResultCache(backend="in_memory", ttl=3600),
        store=InMemoryResultStore(),
        progress_sink=progress_sink,
        airport_tool=airport_tool,
        structured_logger=slog,
    )
