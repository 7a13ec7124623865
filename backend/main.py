"""
main.py
--------
FairTrip optimizer command-line entry point.

Runs the full pipeline once on a trip and prints the day-by-day schedule:
  collecting -> normalizing -> selecting -> routing -> complete

Run:
  python main.py                    # built-in Tokyo sample trip
  python main.py --trip trip.json   # trip file (same body as POST /v1/trips/{id}/optimize)
  python main.py --json             # also dump the full OptimizationResult

Notes:
  - Airport lookups use the built-in catalogue unless USE_STUB_AIRPORTS=false.
  - Results are cached in-process only; see RESULT_BACKEND in config.py.
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from datetime import date

import config
from modules.optimization.errors import OptimizationError
from modules.optimization.orchestrator import OptimizationOrchestrator
from modules.optimization.progress import InMemoryProgressSink
from schemas.trip import (
    ROLE_DEPARTURE,
    ROLE_DESTINATION,
    Member,
    OptimizationRequest,
    OptimizationSettings,
    Place,
    Preference,
)


# ═══════════════════════════════════════════════════════════════════════════
# Sample trip
# ═══════════════════════════════════════════════════════════════════════════

def sample_request() -> OptimizationRequest:
    """Three friends, a week in Japan, departing Tokyo Station and ending in Kyoto."""
    places = [
        Place("tokyo_station", "Tokyo Station", 35.6812, 139.7671, "station", ROLE_DEPARTURE),
        Place("kyoto_station", "Kyoto Station", 34.9858, 135.7588, "station", ROLE_DESTINATION),
        Place("senso_ji",      "Senso-ji",           35.7148, 139.7967, "temple"),
        Place("shibuya",       "Shibuya Crossing",   35.6595, 139.7005, "landmark"),
        Place("tsukiji",       "Tsukiji Outer Market", 35.6654, 139.7707, "food"),
        Place("teamlab",       "teamLab Planets",    35.6491, 139.7898, "museum"),
        Place("kamakura",      "Kamakura Daibutsu",  35.3167, 139.5358, "temple"),
        Place("hakone",        "Hakone Open-Air Museum", 35.2446, 139.0492, "museum"),
        Place("fushimi_inari", "Fushimi Inari Taisha", 34.9671, 135.7727, "shrine"),
    ]
    members = [
        Member("alice",   "Alice",   "#e4572e"),
        Member("bob",     "Bob",     "#29335c"),
        Member("charlie", "Charlie", "#f3a712"),
    ]
    ratings = {
        "alice":   {"senso_ji": 5, "shibuya": 4, "tsukiji": 5, "teamlab": 2, "hakone": 3},
        "bob":     {"senso_ji": 2, "shibuya": 5, "teamlab": 5, "kamakura": 3, "fushimi_inari": 4},
        "charlie": {"tsukiji": 3, "kamakura": 5, "hakone": 4, "fushimi_inari": 5},
    }
    durations = {"teamlab": 150, "hakone": 180, "fushimi_inari": 120, "tsukiji": 90}
    preferences = [
        Preference(member, pid, score, durations.get(pid, 0.0))
        for member, scores in ratings.items()
        for pid, score in scores.items()
    ]
    return OptimizationRequest(
        trip_id="sample-japan",
        places=places,
        preferences=preferences,
        members=members,
        settings=OptimizationSettings.from_config(max_places=6, start_date=date(2026, 4, 1)),
    )


def load_request(path: str) -> OptimizationRequest:
    """Read a trip file shaped like the optimize endpoint's request body (+ trip_id)."""
    with open(path, encoding="utf-8") as fh:
        body = json.load(fh)
    raw = body.get("settings") or {}
    start = raw.get("start_date")
    settings = OptimizationSettings.from_config(
        fairness_weight=raw.get("fairness_weight"),
        max_places=raw.get("max_places"),
        max_daily_distance_km=raw.get("max_daily_distance_km"),
        max_daily_minutes=raw.get("max_daily_minutes"),
        cluster_radius_km=raw.get("cluster_radius_km"),
        preferred_transport_modes=raw.get("preferred_transport_modes"),
        start_date=date.fromisoformat(start) if start else None,
    )
    return OptimizationRequest(
        trip_id=body.get("trip_id", "cli-trip"),
        places=[Place(**p) for p in body.get("places", [])],
        preferences=[Preference(**p) for p in body.get("preferences", [])],
        members=[Member(**m) for m in body.get("members", [])],
        settings=settings,
    )


# ═══════════════════════════════════════════════════════════════════════════
# Output
# ═══════════════════════════════════════════════════════════════════════════

def _print_result(result: dict) -> None:
    width = 72
    metrics = result["metrics"]
    print()
    print("═" * width)
    print(f"  FAIRTRIP  {result['trip_id']}  ({result['generation_info'].get('algorithm_version')})")
    print("═" * width)

    print("\n  Selected places:")
    for sel in result["selected_places"]:
        who = ", ".join(f"{m} {w:.2f}" for m, w in sel["contributors"].items()) or "system"
        print(f"    r{sel['selection_round']:<2} {sel['name'][:30].ljust(30)}  "
              f"score {sel['selection_score']:.3f}  [{who}]")

    for day in result["day_schedules"]:
        print()
        print(f"  Day {day['day_number']}  {day['date'] or ''}  "
              f"{day['total_minutes']:.0f} min, {day['total_distance_km']:.1f} km  ({day['compactness']})")
        meals = {m["after_place_id"]: m for m in day["meals"]}
        for stop in day["stops"]:
            for leg in stop["legs_in"]:
                print(f"      ↳ {leg['transport_mode']:<5} {leg['distance_km']:>7.1f} km "
                      f"{leg['duration_minutes']:>6.0f} min  {leg['from_name']} → {leg['to_name']}")
            name = stop["place"]["name"][:30].ljust(30)
            print(f"    {stop['arrival']} – {stop['departure']}   {name}  "
                  f"({stop['allocated_minutes']:.0f} min, {stop['priority']})")
            meal = meals.get(stop["place"]["place_id"])
            if meal:
                print(f"    {meal['start']}           {meal['kind'].ljust(30)}  "
                      f"({meal['duration_minutes']:.0f} min)")
        for warning in day["warnings"]:
            print(f"    [!] {warning}")

    print()
    print("═" * width)
    print(f"  Fairness score   : {metrics['fairness_score']:.3f}")
    print(f"  Total distance   : {metrics['total_distance_km']:.1f} km")
    print(f"  Efficiency       : {metrics['efficiency_score']:.2f}")
    print(f"  Feasible         : {metrics['feasible']}")
    for warning in result["warnings"]:
        print(f"  [!] {warning}")
    print("═" * width)
    print()


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Run the FairTrip optimizer on one trip.")
    parser.add_argument("--trip", help="Path to a JSON trip file (default: built-in sample).")
    parser.add_argument("--json", action="store_true", help="Print the full result as JSON.")
    parser.add_argument("--rating-max", type=float, default=config.RATING_MAX,
                        help="Upper bound of the rating scale used by the trip file.")
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")

    request = load_request(args.trip) if args.trip else sample_request()
    sink = InMemoryProgressSink()
    orchestrator = OptimizationOrchestrator(progress_sink=sink, rating_max=args.rating_max)
    try:
        result = orchestrator.optimize(request).to_dict()
    except OptimizationError as exc:
        print(f"[FairTrip] {exc}", file=sys.stderr)
        return 1

    for event in sink.events:
        print(f"  [{event.percent:>3}%] {event.stage:<11} {event.message}")
    _print_result(result)
    if args.json:
        print(json.dumps(result, indent=2))
    return 0


if __name__ == "__main__":
    sys.exit(main())
