"""
test_day_splitter.py
───────────────────────────────────────────────────────────────────────────────
Day splitting and time allocation: daily limits, meals, redistribution,
compactness, calendar dates and the stay-time rules behind them.
───────────────────────────────────────────────────────────────────────────────
"""

from __future__ import annotations

from datetime import date

import pytest

import config
from conftest import as_selected
from modules.planning.day_splitter import DaySplitter, classify_day
from modules.planning.route_sequencer import RouteResult, RouteSequencer
from modules.planning.time_allocator import AdjustableStop, TimeAllocator, period_for, priority_for
from schemas.trip import Place, RouteLeg

HOTEL = Place("hotel", "Hotel", 35.68, 139.76)
STOPS = [Place(f"s{k}", f"Stop {k}", 35.68 + k * 0.0135, 139.76) for k in range(1, 6)]


def _five_stop_route(airport_tool) -> RouteResult:
    return RouteSequencer(airport_tool=airport_tool).sequence(as_selected(STOPS), departure=HOTEL)


def _visited(schedule) -> list[str]:
    return [
        stop.place.place_id
        for day in schedule.days
        for stop in day.stops
        if stop.place.place_id != "hotel"
    ]


# ─────────────────────────────────────────────────────────────────────────────
# DaySplitter
# ─────────────────────────────────────────────────────────────────────────────

def test_five_long_stops_need_at_least_two_days(airport_tool):
    schedule = DaySplitter(max_daily_minutes=600).split(
        _five_stop_route(airport_tool),
        requested_minutes={p.place_id: 150.0 for p in STOPS},
    )

    assert len(schedule.days) >= 2
    for day in schedule.days:
        assert day.total_minutes <= 600 + 1e-6
        assert not day.warnings
    assert sorted(_visited(schedule)) == ["s1", "s2", "s3", "s4", "s5"]
    assert [d.day_number for d in schedule.days] == list(range(1, len(schedule.days) + 1))


def test_leg_into_a_new_day_belongs_to_that_day(airport_tool):
    schedule = DaySplitter(max_daily_minutes=600).split(
        _five_stop_route(airport_tool),
        requested_minutes={p.place_id: 150.0 for p in STOPS},
    )
    second_day_first_stop = schedule.days[1].stops[0]
    assert second_day_first_stop.legs_in
    assert second_day_first_stop.arrival > "09:00"


def test_meal_inserted_after_long_stretch(airport_tool):
    schedule = DaySplitter(max_daily_minutes=600).split(
        _five_stop_route(airport_tool),
        requested_minutes={p.place_id: 150.0 for p in STOPS},
    )
    first = schedule.days[0]
    assert first.meals
    assert first.meals[0].duration_minutes in (config.MEAL_MIN_MIN, config.MEAL_MAX_MIN)
    assert first.meals[0].kind in ("lunch", "dinner")


def test_generous_budget_fits_one_day(airport_tool):
    schedule = DaySplitter(max_daily_minutes=2000).split(
        _five_stop_route(airport_tool),
        requested_minutes={p.place_id: 60.0 for p in STOPS},
    )
    assert len(schedule.days) == 1
    day = schedule.days[0]
    assert day.stops[0].place.place_id == "hotel"
    assert day.stops[-1].place.place_id == "hotel"
    assert day.stops[0].arrival == "09:00"


def test_distance_limit_also_splits_days(airport_tool):
    schedule = DaySplitter(max_daily_minutes=2000, max_daily_distance_km=3.0).split(
        _five_stop_route(airport_tool),
        requested_minutes={p.place_id: 30.0 for p in STOPS},
    )
    assert len(schedule.days) >= 2
    for day in schedule.days[:-1]:
        assert day.total_distance_km <= 3.0 + 1e-6


def test_dates_follow_start_date(airport_tool):
    schedule = DaySplitter(max_daily_minutes=600).split(
        _five_stop_route(airport_tool),
        requested_minutes={p.place_id: 150.0 for p in STOPS},
        start_date=date(2026, 4, 1),
    )
    assert schedule.days[0].date == date(2026, 4, 1)
    assert schedule.days[1].date == date(2026, 4, 2)


def test_single_oversized_stop_is_flagged():
    a, b = Place("a", "A", 35.0, 139.0), Place("b", "B", 35.001, 139.0)
    legs = [
        RouteLeg("a", "b", "walk", 0.1, 6.2, segment_index=0),
        RouteLeg("b", "a", "walk", 0.1, 6.2, segment_index=1),
    ]
    route = RouteResult(stops=[a, b, a], legs=legs, round_trip=True)
    schedule = DaySplitter(max_daily_minutes=40).split(route, requested_minutes={"b": 300.0})

    flagged = [d for d in schedule.days if d.warnings]
    assert flagged
    assert "exceeds max_daily_minutes" in flagged[0].warnings[0]
    assert schedule.warnings[0].startswith(f"Day {flagged[0].day_number}:")


def test_empty_route_gives_empty_schedule():
    assert DaySplitter().split(RouteResult()).days == []


@pytest.mark.parametrize("minutes,label", [
    (120, "light"), (299, "light"), (300, "moderate"), (420, "moderate"), (421, "packed"),
])
def test_classify_day(minutes, label):
    assert classify_day(minutes) == label


# ─────────────────────────────────────────────────────────────────────────────
# TimeAllocator
# ─────────────────────────────────────────────────────────────────────────────

def test_priority_and_period_bands():
    assert priority_for(1.2) == "high"
    assert priority_for(0.5) == "medium"
    assert priority_for(-0.3) == "low"
    assert priority_for(None) == "medium"
    assert period_for(9 * 60) == "morning"
    assert period_for(13 * 60) == "afternoon"
    assert period_for(19 * 60) == "evening"


def test_allocation_applies_energy_and_clamps():
    allocator = TimeAllocator()

    high_morning = allocator.allocate(120, 1.0, clock_minute=10 * 60)
    assert high_morning.minutes == 120
    assert high_morning.buffer_minutes == config.BASE_BUFFER_MIN + config.HIGH_PRIORITY_BUFFER_MIN

    default_stay = allocator.allocate(None, None, clock_minute=10 * 60)
    assert default_stay.minutes == round(config.DEFAULT_STAY_MIN * 0.95)

    assert allocator.allocate(1000, 1.0, clock_minute=10 * 60).minutes == config.MAX_STAY_MIN
    assert allocator.allocate(10, 1.0, clock_minute=10 * 60).minutes == config.MIN_STAY_MIN


def test_late_day_and_long_activity_shorten_stays():
    allocator = TimeAllocator()
    fresh = allocator.allocate(200, 1.0, clock_minute=10 * 60)
    tired = allocator.allocate(200, 1.0, clock_minute=10 * 60, day_progress=0.8, previous_stay=200)
    assert tired.multiplier == pytest.approx(0.9 * 0.95)
    assert tired.minutes < fresh.minutes


def test_last_stop_buffer():
    assert TimeAllocator.buffer_for("low", is_last=True) == (
        config.BASE_BUFFER_MIN + config.LAST_STOP_BUFFER_MIN
    )


def test_redistribution_cuts_low_priority_first():
    low = AdjustableStop("low", stay=200.0, buffer=15.0, priority="low")
    high = AdjustableStop("high", stay=200.0, buffer=15.0, priority="high")

    remaining = TimeAllocator().redistribute([low, high], 50.0)

    assert remaining == 0.0
    assert low.stay == pytest.approx(160.0)
    assert high.stay == pytest.approx(190.0)
    assert low.buffer == high.buffer == 15.0


def test_redistribution_reports_what_cannot_be_removed():
    stop = AdjustableStop("only", stay=40.0, buffer=20.0, priority="medium")
    remaining = TimeAllocator().redistribute([stop], 100.0)

    assert stop.stay == pytest.approx(30.0)
    assert stop.buffer == pytest.approx(config.MIN_BUFFER_MIN)
    assert remaining == pytest.approx(100.0 - 10.0 - (20.0 - config.MIN_BUFFER_MIN))
