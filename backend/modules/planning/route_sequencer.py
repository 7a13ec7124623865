"""
modules/planning/route_sequencer.py
------------------------------------
Stage 4: order the selected places into a route and decide transport per leg.

Sequencing:
  - Start at the fixed departure (or, without one, the first place selected).
  - Nearest-neighbour greedy: repeatedly go to the closest unvisited place
    (haversine; ties by place id).
  - End at the fixed destination, or return to the start when there is none.
  - Optional 2-opt refinement of the interior order (ROUTE_TWO_OPT).

Transport per segment (DistanceTool.choose_mode):
  walk / drive  -> one RouteLeg
  fly           -> drive to airport, fly, drive from airport (three RouteLegs
                   sharing segment_index). When no airport can be found on
                   either side, the segment degrades to a single drive leg
                   with a warning note.

Segments are independent once the order is fixed, so they can be computed on
a thread pool (LEG_WORKERS > 1); results are re-assembled in route order.
"""

from __future__ import annotations

import logging
import time as _time_mod
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Iterable, Optional

import config
from modules.observability.logger import StructuredLogger
from modules.tool_usage.airport_tool import AirportTool, describe_airport
from modules.tool_usage.distance_tool import DistanceTool, haversine_km
from schemas.trip import Place, RouteLeg, SelectedPlace, TRANSPORT_MODES

logger = logging.getLogger(__name__)


@dataclass
class RouteResult:
    stops: list[Place] = field(default_factory=list)        # start .. end, in order
    legs: list[RouteLeg] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    two_opt: dict = field(default_factory=dict)
    round_trip: bool = False

    @property
    def total_distance_km(self) -> float:
        return sum(leg.distance_km for leg in self.legs)

    @property
    def total_duration_minutes(self) -> float:
        return sum(leg.duration_minutes for leg in self.legs)

    def segment(self, index: int) -> list[RouteLeg]:
        """Legs travelling from stops[index] to stops[index + 1]."""
        return [leg for leg in self.legs if leg.segment_index == index]

    def transport_stats(self) -> dict:
        per_mode: dict[str, dict] = {
            m: {"legs": 0, "distance_km": 0.0, "duration_minutes": 0.0} for m in TRANSPORT_MODES
        }
        changes = 0
        prev: Optional[str] = None
        for leg in self.legs:
            stats = per_mode[leg.transport_mode]
            stats["legs"] += 1
            stats["distance_km"] += leg.distance_km
            stats["duration_minutes"] += leg.duration_minutes
            if prev is not None and leg.transport_mode != prev:
                changes += 1
            prev = leg.transport_mode
        dominant = max(
            TRANSPORT_MODES,
            key=lambda m: (per_mode[m]["distance_km"], -TRANSPORT_MODES.index(m)),
        ) if self.legs else None
        return {"per_mode": per_mode, "mode_changes": changes, "dominant_mode": dominant}


def _dist(a: Place, b: Place) -> float:
    return haversine_km(a.lat, a.lon, b.lat, b.lon)


def _path_length(path: list[Place]) -> float:
    return sum(_dist(path[i], path[i + 1]) for i in range(len(path) - 1))


class RouteSequencer:
    """Nearest-neighbour sequencer with distance-thresholded transport modes."""

    def __init__(
        self,
        distance_tool: Optional[DistanceTool] = None,
        airport_tool: Optional[AirportTool] = None,
        two_opt: bool = config.ROUTE_TWO_OPT,
        leg_workers: int = config.LEG_WORKERS,
        perf_logger: Optional[StructuredLogger] = None,
    ) -> None:
        self.distance_tool = distance_tool or DistanceTool()
        self.airport_tool = airport_tool or AirportTool()
        self.two_opt = two_opt
        self.leg_workers = max(1, leg_workers)
        self._perf_logger = perf_logger

    def sequence(
        self,
        selected: list[SelectedPlace],
        departure: Optional[Place] = None,
        destination: Optional[Place] = None,
        preferred_modes: Optional[Iterable[str]] = None,
        run_id: str = "default",
    ) -> RouteResult:
        _t0 = _time_mod.perf_counter()
        allowed = list(preferred_modes) if preferred_modes is not None else list(TRANSPORT_MODES)

        visit = [s.place for s in selected if not s.place.is_system]
        if departure is None:
            if not visit:
                return RouteResult()
            ordered_by_round = sorted(
                (s for s in selected if not s.place.is_system),
                key=lambda s: (s.selection_round, s.place_id),
            )
            departure = ordered_by_round[0].place
            visit = [p for p in visit if p.place_id != departure.place_id]

        round_trip = destination is None
        end = departure if round_trip else destination

        order = self._nearest_neighbour(departure, visit)
        path = [departure] + order + [end]

        two_opt_info: dict = {}
        if self.two_opt and len(order) >= 2:
            path, two_opt_info = self._two_opt(path)

        result = RouteResult(stops=path, two_opt=two_opt_info, round_trip=round_trip)
        segments = [(i, path[i], path[i + 1]) for i in range(len(path) - 1)]
        if self.leg_workers > 1 and len(segments) > 1:
            with ThreadPoolExecutor(max_workers=self.leg_workers) as pool:
                built = list(pool.map(lambda s: self._build_segment(*s, allowed), segments))
        else:
            built = [self._build_segment(*s, allowed) for s in segments]

        for legs, warning in built:
            result.legs.extend(legs)
            if warning:
                result.warnings.append(warning)

        if self._perf_logger is not None:
            self._perf_logger.log(run_id, "PERFORMANCE", {
                "component":   "route_sequencer",
                "duration_ms": round((_time_mod.perf_counter() - _t0) * 1000, 3),
                "stops":       len(path),
                "legs":        len(result.legs),
            })
        return result

    # ── ordering ──────────────────────────────────────────────────────────

    @staticmethod
    def _nearest_neighbour(start: Place, places: list[Place]) -> list[Place]:
        remaining = sorted(places, key=lambda p: p.place_id)
        order: list[Place] = []
        current = start
        while remaining:
            nxt = min(remaining, key=lambda p: (_dist(current, p), p.place_id))
            remaining.remove(nxt)
            order.append(nxt)
            current = nxt
        return order

    @staticmethod
    def _two_opt(path: list[Place]) -> tuple[list[Place], dict]:
        """Reverse interior sub-sequences while that shortens the path; endpoints stay fixed."""
        original = _path_length(path)
        best = list(path)
        swaps = 0
        improved = True
        while improved:
            improved = False
            for i in range(1, len(best) - 2):
                for j in range(i + 1, len(best) - 1):
                    delta = (
                        _dist(best[i - 1], best[j]) + _dist(best[i], best[j + 1])
                        - _dist(best[i - 1], best[i]) - _dist(best[j], best[j + 1])
                    )
                    if delta < -1e-9:
                        best[i:j + 1] = reversed(best[i:j + 1])
                        swaps += 1
                        improved = True
        return best, {
            "original_distance_km": original,
            "optimized_distance_km": _path_length(best),
            "swaps": swaps,
        }

    # ── legs ──────────────────────────────────────────────────────────────

    def _ground_leg(self, index: int, src: Place, dst: Place, km: float, mode: str,
                    note: Optional[str] = None) -> RouteLeg:
        return RouteLeg(
            from_id=src.place_id,
            to_id=dst.place_id,
            from_name=src.name,
            to_name=dst.name,
            transport_mode=mode,
            distance_km=km,
            duration_minutes=self.distance_tool.travel_time_minutes(km, mode),
            segment_index=index,
            note=note,
        )

    def _build_segment(
        self,
        index: int,
        src: Place,
        dst: Place,
        allowed: list[str],
    ) -> tuple[list[RouteLeg], Optional[str]]:
        km = _dist(src, dst)
        mode = self.distance_tool.choose_mode(km, allowed)
        if mode != "fly":
            return [self._ground_leg(index, src, dst, km, mode)], None

        out_lookup = self.airport_tool.find_nearest(src.lat, src.lon)
        in_lookup = self.airport_tool.find_nearest(dst.lat, dst.lon)
        if not out_lookup.found or not in_lookup.found:
            side = src.name if not out_lookup.found else dst.name
            warning = f"No airport found near {side}; {src.name} -> {dst.name} routed by car"
            logger.warning(warning)
            return [self._ground_leg(index, src, dst, km, "drive", note=warning)], warning

        out_ap, in_ap = out_lookup.airport, in_lookup.airport
        if out_ap.code == in_ap.code:
            warning = f"{src.name} and {dst.name} share airport {out_ap.code}; routed by car"
            return [self._ground_leg(index, src, dst, km, "drive", note=warning)], warning

        out_place = Place(place_id=f"airport:{out_ap.code}", name=out_ap.name,
                          lat=out_ap.lat, lon=out_ap.lon, category="airport")
        in_place = Place(place_id=f"airport:{in_ap.code}", name=in_ap.name,
                         lat=in_ap.lat, lon=in_ap.lon, category="airport")

        flight_km = _dist(out_place, in_place)
        legs = [
            self._ground_leg(index, src, out_place, _dist(src, out_place), "drive"),
            RouteLeg(
                from_id=out_place.place_id,
                to_id=in_place.place_id,
                from_name=out_ap.name,
                to_name=in_ap.name,
                transport_mode="fly",
                distance_km=flight_km,
                duration_minutes=self.distance_tool.travel_time_minutes(flight_km, "fly"),
                segment_index=index,
                airport_code=f"{out_ap.code}-{in_ap.code}",
                note=f"airports via {out_ap.source}/{in_ap.source}",
                airports=[describe_airport(out_ap), describe_airport(in_ap)],
            ),
            self._ground_leg(index, in_place, dst, _dist(in_place, dst), "drive"),
        ]
        return legs, None
