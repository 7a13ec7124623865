"""
modules/planning/day_splitter.py
---------------------------------
Stage 5: partition the sequenced route into per-day schedules.

Walk the route stop by stop, accumulating (travel + stay + buffer) minutes
and travel km for the current day. When adding the next stop would exceed
max_daily_minutes or max_daily_distance_km, the day is closed and the next
day starts with that stop; the travel leg into it belongs to the new day.

After packing, each day is finished in four steps:
  1. last-of-day buffer added to the final visiting stop
  2. meal break after the stop where continuous activity crosses
     MEAL_THRESHOLD_MIN (60 min if it still fits the day, else 30)
  3. over-budget days: meals shrink to MEAL_MIN_MIN, then
     TimeAllocator.redistribute() trims stays/buffers by priority
  4. arrival/departure clock times from DAY_START_HOUR

Compactness: light < 300 min, moderate 300-420, packed > 420.
More than 40% packed days -> rest-day recommendation.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, time, timedelta
from typing import Optional

import config
from modules.planning.route_sequencer import RouteResult
from modules.planning.time_allocator import AdjustableStop, TimeAllocator
from schemas.trip import DaySchedule, MealBreak, Place, RouteLeg, ScheduledStop

logger = logging.getLogger(__name__)


# ── Module-level time helpers ─────────────────────────────────────────────────

def _t2m(t: time) -> int:
    """Convert a time object to integer minutes-from-midnight."""
    return t.hour * 60 + t.minute


def _m2t(mins: float) -> time:
    """Convert minutes-from-midnight to a time object (clamped to [0, 1439])."""
    mins = max(0, min(int(round(mins)), 23 * 60 + 59))
    return time(mins // 60, mins % 60)


def _fmt(mins: float) -> str:
    return _m2t(mins).strftime("%H:%M")


def classify_day(total_minutes: float) -> str:
    if total_minutes < config.LIGHT_DAY_MAX_MIN:
        return "light"
    if total_minutes <= config.MODERATE_DAY_MAX_MIN:
        return "moderate"
    return "packed"


@dataclass
class _Draft:
    """Working state for one stop before clock times are fixed."""
    place: Place
    legs_in: list[RouteLeg]
    travel: float
    km: float
    stay: float
    buffer: float
    priority: str
    visiting: bool = True   # False for the fixed start / end points

    @property
    def minutes(self) -> float:
        return self.travel + self.stay + self.buffer


@dataclass
class ScheduleResult:
    days: list[DaySchedule] = field(default_factory=list)
    rest_day_recommended: bool = False
    warnings: list[str] = field(default_factory=list)

    @property
    def total_minutes(self) -> float:
        return sum(d.total_minutes for d in self.days)


class DaySplitter:
    def __init__(
        self,
        max_daily_minutes: float = config.MAX_DAILY_MINUTES,
        max_daily_distance_km: float = config.MAX_DAILY_DISTANCE_KM,
        allocator: Optional[TimeAllocator] = None,
        day_start: Optional[time] = None,
    ) -> None:
        self.max_daily_minutes = max_daily_minutes
        self.max_daily_distance_km = max_daily_distance_km
        self.allocator = allocator or TimeAllocator()
        self.day_start = day_start or time(config.DAY_START_HOUR, 0)

    def split(
        self,
        route: RouteResult,
        requested_minutes: Optional[dict[str, float]] = None,
        place_scores: Optional[dict[str, float]] = None,
        start_date: Optional[date] = None,
    ) -> ScheduleResult:
        """
        Args:
            route:             Sequenced route (stops + legs by segment).
            requested_minutes: place_id -> requested stay (contributors' average).
            place_scores:      place_id -> average standardized score (priority).
            start_date:        Calendar date of day 1, if known.
        """
        requested_minutes = requested_minutes or {}
        place_scores = place_scores or {}
        if not route.stops:
            return ScheduleResult()

        start_min = _t2m(self.day_start)
        days: list[list[_Draft]] = [[self._fixed(route.stops[0], [])]]
        day_minutes = 0.0
        day_km = 0.0
        prev_stay = 0.0
        last_index = len(route.stops) - 1

        for i in range(1, len(route.stops)):
            place = route.stops[i]
            legs = route.segment(i - 1)
            travel = sum(leg.duration_minutes for leg in legs)
            km = sum(leg.distance_km for leg in legs)

            is_end = i == last_index
            if is_end:
                draft = self._fixed(place, legs, travel, km)
            else:
                alloc = self.allocator.allocate(
                    requested_minutes.get(place.place_id),
                    place_scores.get(place.place_id),
                    clock_minute=start_min + day_minutes + travel,
                    day_progress=day_minutes / self.max_daily_minutes,
                    previous_stay=prev_stay,
                )
                draft = _Draft(place, legs, travel, km, alloc.minutes,
                               alloc.buffer_minutes, alloc.priority)

            over_time = day_minutes + draft.minutes > self.max_daily_minutes
            over_km = day_km + km > self.max_daily_distance_km
            if (over_time or over_km) and any(d.legs_in for d in days[-1]):
                days.append([])
                day_minutes, day_km = 0.0, 0.0
                if draft.visiting:
                    # re-allocate with the fresh morning clock
                    alloc = self.allocator.allocate(
                        requested_minutes.get(place.place_id),
                        place_scores.get(place.place_id),
                        clock_minute=start_min + travel,
                    )
                    draft.stay, draft.buffer, draft.priority = (
                        alloc.minutes, alloc.buffer_minutes, alloc.priority,
                    )

            days[-1].append(draft)
            day_minutes += draft.minutes
            day_km += km
            prev_stay = draft.stay

        result = ScheduleResult()
        for n, drafts in enumerate(days, start=1):
            day = self._finish_day(n, drafts, start_min, start_date)
            result.days.append(day)
            result.warnings.extend(f"Day {n}: {w}" for w in day.warnings)

        packed = sum(1 for d in result.days if d.compactness == "packed")
        result.rest_day_recommended = (
            bool(result.days) and packed / len(result.days) > config.REST_DAY_PACKED_RATIO
        )
        if result.rest_day_recommended:
            result.warnings.append(
                f"{packed} of {len(result.days)} days are packed; consider adding a rest day"
            )
        logger.info("Split route of %d stops into %d day(s)", len(route.stops), len(result.days))
        return result

    # ── internals ─────────────────────────────────────────────────────────

    @staticmethod
    def _fixed(place: Place, legs: list[RouteLeg], travel: float = 0.0, km: float = 0.0) -> _Draft:
        return _Draft(place, legs, travel, km, stay=0.0, buffer=0.0,
                      priority="fixed", visiting=False)

    def _finish_day(
        self,
        day_number: int,
        drafts: list[_Draft],
        start_min: int,
        start_date: Optional[date],
    ) -> DaySchedule:
        warnings: list[str] = []

        visiting = [d for d in drafts if d.visiting]
        if visiting:
            last = visiting[-1]
            last.buffer = self.allocator.buffer_for(last.priority, is_last=True)

        # ── meals ───────────────────────────────────────────────────────────
        meals: list[tuple[int, float]] = []   # (draft index, minutes)
        continuous = 0.0
        total = sum(d.minutes for d in drafts)
        for idx, d in enumerate(drafts):
            continuous += d.minutes
            if d.visiting and continuous > config.MEAL_THRESHOLD_MIN and idx < len(drafts) - 1:
                size = (
                    config.MEAL_MAX_MIN
                    if total + config.MEAL_MAX_MIN <= self.max_daily_minutes
                    else config.MEAL_MIN_MIN
                )
                meals.append((idx, size))
                total += size
                continuous = 0.0

        # ── redistribution ──────────────────────────────────────────────────
        excess = total - self.max_daily_minutes
        if excess > 0 and meals:
            shrunk = []
            for idx, size in meals:
                cut = min(size - config.MEAL_MIN_MIN, max(0.0, excess))
                excess -= cut
                shrunk.append((idx, size - cut))
            meals = shrunk
        if excess > 0:
            views = [
                AdjustableStop(key=str(i), stay=d.stay, buffer=d.buffer, priority=d.priority)
                for i, d in enumerate(drafts) if d.visiting
            ]
            remaining = self.allocator.redistribute(views, excess)
            for v in views:
                drafts[int(v.key)].stay = v.stay
                drafts[int(v.key)].buffer = v.buffer
            if remaining > 0:
                warnings.append(
                    f"exceeds max_daily_minutes by {remaining:.0f} min even at minimum stay times"
                )

        # ── clock times ─────────────────────────────────────────────────────
        clock = float(start_min)
        meal_after = dict(meals)
        stops: list[ScheduledStop] = []
        meal_breaks: list[MealBreak] = []
        for idx, d in enumerate(drafts):
            clock += d.travel
            arrival = clock
            clock += d.stay + d.buffer
            stops.append(ScheduledStop(
                place=d.place,
                arrival=_fmt(arrival),
                departure=_fmt(clock),
                allocated_minutes=d.stay,
                buffer_minutes=d.buffer,
                priority=d.priority,
                legs_in=list(d.legs_in),
            ))
            if idx in meal_after:
                meal_breaks.append(MealBreak(
                    after_place_id=d.place.place_id,
                    start=_fmt(clock),
                    duration_minutes=meal_after[idx],
                    kind="lunch" if clock < 15 * 60 else "dinner",
                ))
                clock += meal_after[idx]

        travel = sum(d.travel for d in drafts)
        total = clock - start_min
        return DaySchedule(
            day_number=day_number,
            date=start_date + timedelta(days=day_number - 1) if start_date else None,
            stops=stops,
            meals=meal_breaks,
            total_distance_km=sum(d.km for d in drafts),
            travel_minutes=travel,
            total_minutes=total,
            compactness=classify_day(total),
            warnings=warnings,
        )
