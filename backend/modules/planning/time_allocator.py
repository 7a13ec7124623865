"""
modules/planning/time_allocator.py
-----------------------------------
Stay-time, buffer and redistribution rules used by the day splitter.
All time values are minutes.

Priority of a stop (average standardized score of its raters):
  >= 0.8 high | >= 0.5 medium | otherwise low

Stay = requested duration (average over contributing members, else
DEFAULT_STAY_MIN) x energy multiplier, clamped to [MIN_STAY_MIN, MAX_STAY_MIN].

Energy multiplier = ENERGY_MULTIPLIERS[preferred period][current period]
  preferred period: high -> morning, medium -> afternoon, low -> evening
  current period:   09-12 morning, 12-17 afternoon, otherwise evening
  x 0.90 once the day is more than 70% used
  x 0.95 after an activity longer than 3 h

Buffer = BASE_BUFFER_MIN (+HIGH_PRIORITY_BUFFER_MIN for high priority,
+LAST_STOP_BUFFER_MIN for the last stop of a day).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

import config

logger = logging.getLogger(__name__)

ENERGY_MULTIPLIERS: dict[str, dict[str, float]] = {
    "morning":   {"morning": 1.00, "afternoon": 0.90, "evening": 0.80},
    "afternoon": {"morning": 0.95, "afternoon": 1.00, "evening": 0.85},
    "evening":   {"morning": 0.80, "afternoon": 0.90, "evening": 1.00},
}

PREFERRED_PERIOD: dict[str, str] = {
    "high":   "morning",
    "medium": "afternoon",
    "low":    "evening",
}

# Share of the reduction each priority keeps when a day must be shortened
PRIORITY_MULTIPLIERS: dict[str, float] = {"high": 0.9, "medium": 0.8, "low": 0.6}

_LATE_DAY_PROGRESS = 0.7
_LATE_DAY_FACTOR = 0.9
_LONG_ACTIVITY_MIN = 180.0
_LONG_ACTIVITY_FACTOR = 0.95
_STAY_FLOOR_MIN = 30.0


def priority_for(avg_score: Optional[float]) -> str:
    if avg_score is None:
        return "medium"
    if avg_score >= 0.8:
        return "high"
    if avg_score >= 0.5:
        return "medium"
    return "low"


def period_for(minute_of_day: float) -> str:
    hour = int(minute_of_day // 60) % 24
    if 9 <= hour < 12:
        return "morning"
    if 12 <= hour < 17:
        return "afternoon"
    return "evening"


@dataclass
class StayAllocation:
    minutes: float
    buffer_minutes: float
    priority: str
    period: str
    multiplier: float


@dataclass
class AdjustableStop:
    """Mutable view of one stop used by redistribute()."""
    key: str
    stay: float
    buffer: float
    priority: str


class TimeAllocator:
    def __init__(
        self,
        min_stay: float = config.MIN_STAY_MIN,
        max_stay: float = config.MAX_STAY_MIN,
        default_stay: float = config.DEFAULT_STAY_MIN,
        energy_multipliers: Optional[dict[str, dict[str, float]]] = None,
    ) -> None:
        self.min_stay = min_stay
        self.max_stay = max_stay
        self.default_stay = default_stay
        self.energy = energy_multipliers or ENERGY_MULTIPLIERS

    def allocate(
        self,
        requested_minutes: Optional[float],
        avg_score: Optional[float],
        clock_minute: float,
        day_progress: float = 0.0,
        previous_stay: float = 0.0,
    ) -> StayAllocation:
        priority = priority_for(avg_score)
        period = period_for(clock_minute)
        multiplier = self.energy[PREFERRED_PERIOD[priority]][period]
        if day_progress > _LATE_DAY_PROGRESS:
            multiplier *= _LATE_DAY_FACTOR
        if previous_stay > _LONG_ACTIVITY_MIN:
            multiplier *= _LONG_ACTIVITY_FACTOR

        base = requested_minutes if requested_minutes and requested_minutes > 0 else self.default_stay
        minutes = round(min(self.max_stay, max(self.min_stay, base * multiplier)))
        return StayAllocation(
            minutes=float(minutes),
            buffer_minutes=self.buffer_for(priority, is_last=False),
            priority=priority,
            period=period,
            multiplier=multiplier,
        )

    @staticmethod
    def buffer_for(priority: str, is_last: bool) -> float:
        buffer = config.BASE_BUFFER_MIN
        if priority == "high":
            buffer += config.HIGH_PRIORITY_BUFFER_MIN
        if is_last:
            buffer += config.LAST_STOP_BUFFER_MIN
        return buffer

    def redistribute(self, stops: list[AdjustableStop], excess: float) -> float:
        """
        Shrink stays (then buffers) by *excess* minutes in total.

        Low-priority stops give up time first: each stop's share of the cut is
        weighted by (1 - PRIORITY_MULTIPLIERS[priority]). Stays never drop below
        the 30-minute floor, buffers never below MIN_BUFFER_MIN. Returns the
        excess that could not be removed (0.0 when the day now fits).
        """
        excess = self._shrink(stops, excess, "stay", _STAY_FLOOR_MIN)
        if excess > 0:
            excess = self._shrink(stops, excess, "buffer", config.MIN_BUFFER_MIN)
        if excess > 0:
            logger.warning("Redistribution left %.1f min over budget", excess)
        return max(0.0, excess)

    @staticmethod
    def _shrink(stops: list[AdjustableStop], excess: float, attr: str, floor: float) -> float:
        for _ in range(len(stops) + 1):
            if excess <= 1e-9:
                return 0.0
            weights = {
                s.key: (getattr(s, attr) - floor) * (1.0 - PRIORITY_MULTIPLIERS.get(s.priority, 0.8))
                for s in stops if getattr(s, attr) > floor
            }
            total = sum(weights.values())
            if total <= 0:
                return excess
            removed = 0.0
            for s in stops:
                w = weights.get(s.key)
                if not w:
                    continue
                cut = min(getattr(s, attr) - floor, excess * w / total)
                setattr(s, attr, getattr(s, attr) - cut)
                removed += cut
            excess -= removed
        return max(0.0, excess)
