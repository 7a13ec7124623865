"""
modules/tool_usage/distance_tool.py
-------------------------------------
Great-circle distances and per-mode travel-time estimates.
No external HTTP calls are made.

Mode thresholds (config.py):
  distance <  WALK_MAX_KM   -> walk
  distance <  DRIVE_MAX_KM  -> drive
  otherwise                 -> fly

Travel time per mode = distance / speed + fixed overhead.
Flights add airport handling time (longer beyond LONG_HAUL_KM).
"""

from __future__ import annotations

import logging
import math
from typing import Iterable, Optional

import config

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Pure maths
# ---------------------------------------------------------------------------

_EARTH_RADIUS_KM = 6371.0


def haversine_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Great-circle distance between two points (Haversine formula) in km."""
    r = _EARTH_RADIUS_KM
    phi1, phi2 = math.radians(lat1), math.radians(lat2)
    d_phi = math.radians(lat2 - lat1)
    d_lam = math.radians(lon2 - lon1)
    a = (
        math.sin(d_phi / 2) ** 2
        + math.cos(phi1) * math.cos(phi2) * math.sin(d_lam / 2) ** 2
    )
    return 2 * r * math.asin(math.sqrt(min(1.0, a)))


def distance_matrix(coords: list[tuple[float, float]]) -> list[list[float]]:
    """Return a full n x n haversine distance matrix [km] over (lat, lon) pairs."""
    n = len(coords)
    return [
        [
            0.0 if i == j
            else haversine_km(coords[i][0], coords[i][1], coords[j][0], coords[j][1])
            for j in range(n)
        ]
        for i in range(n)
    ]


def _km_to_minutes(km: float, speed_kmh: float) -> float:
    """Straight-line km to minutes at a given speed."""
    return (km / speed_kmh) * 60.0


# ---------------------------------------------------------------------------
# DistanceTool
# ---------------------------------------------------------------------------


class DistanceTool:
    """
    Distance-thresholded transport-mode decisions and travel-time estimates.
    Speeds, overheads and thresholds are read from config.py at construction.
    """

    def __init__(
        self,
        walk_max_km: Optional[float] = None,
        drive_max_km: Optional[float] = None,
    ) -> None:
        self.walk_max_km: float = config.WALK_MAX_KM if walk_max_km is None else walk_max_km
        self.drive_max_km: float = config.DRIVE_MAX_KM if drive_max_km is None else drive_max_km
        self.speeds: dict[str, float] = {
            "walk":  config.WALK_SPEED_KMH,
            "drive": config.DRIVE_SPEED_KMH,
            "fly":   config.FLIGHT_SPEED_KMH,
        }
        self.overheads: dict[str, float] = {
            "walk":  config.WALK_OVERHEAD_MIN,
            "drive": config.DRIVE_OVERHEAD_MIN,
        }

    def calculate(self, lat1: float, lon1: float, lat2: float, lon2: float) -> float:
        """Return Haversine distance in km."""
        return haversine_km(lat1, lon1, lat2, lon2)

    def choose_mode(self, km: float, allowed: Optional[Iterable[str]] = None) -> str:
        """
        Pick walk / drive / fly for a straight-line distance.

        An excluded walk or fly degrades to drive; drive is always available
        as the ground fallback even when not listed.
        """
        if km < self.walk_max_km:
            mode = "walk"
        elif km < self.drive_max_km:
            mode = "drive"
        else:
            mode = "fly"
        if allowed is not None and mode not in set(allowed):
            return "drive"
        return mode

    def travel_time_minutes(self, km: float, mode: str) -> float:
        """Return travel time in minutes for *km* travelled by *mode*."""
        if km <= 0.0:
            return 0.0
        if mode == "fly":
            handling = (
                config.AIRPORT_HANDLING_LONG_HAUL_MIN
                if km > config.LONG_HAUL_KM
                else config.AIRPORT_HANDLING_MIN
            )
            return _km_to_minutes(km, self.speeds["fly"]) + handling
        if mode not in self.speeds:
            raise ValueError(f"unknown transport mode {mode!r}")
        return _km_to_minutes(km, self.speeds[mode]) + self.overheads[mode]
