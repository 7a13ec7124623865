"""
test_main.py
───────────────────────────────────────────────────────────────────────────────
Command-line entry point: the built-in sample trip, trip files, and the exit
code on rejected input.
───────────────────────────────────────────────────────────────────────────────
"""

from __future__ import annotations

import json

import pytest

import config
import main


@pytest.fixture(autouse=True)
def _logs_in_tmp(tmp_path, monkeypatch):
    monkeypatch.setattr(config, "LOGS_DIR", str(tmp_path / "logs"))


def test_sample_trip_has_fixed_endpoints():
    request = main.sample_request()
    assert request.departure.place_id == "tokyo_station"
    assert request.destination.place_id == "kyoto_station"
    assert len(request.candidates) == 7


def test_sample_run_prints_schedule(capsys):
    assert main.main([]) == 0
    out = capsys.readouterr().out
    assert "FAIRTRIP  sample-japan" in out
    assert "Day 1  2026-04-01" in out
    assert "complete" in out


def test_trip_file_round_trip(tmp_path, capsys):
    trip = {
        "trip_id": "file-trip",
        "places": [
            {"place_id": "tower", "name": "Tokyo Tower", "lat": 35.6586, "lon": 139.7454},
            {"place_id": "senso_ji", "name": "Senso-ji", "lat": 35.7148, "lon": 139.7967},
        ],
        "preferences": [
            {"member_id": "alice", "place_id": "tower", "raw_score": 8},
            {"member_id": "alice", "place_id": "senso_ji", "raw_score": 3},
        ],
        "members": [{"member_id": "alice"}],
        "settings": {"max_places": 2},
    }
    path = tmp_path / "trip.json"
    path.write_text(json.dumps(trip), encoding="utf-8")

    request = main.load_request(str(path))
    assert request.trip_id == "file-trip"
    assert request.settings.max_places == 2
    assert request.settings.fairness_weight == config.FAIRNESS_WEIGHT

    assert main.main(["--trip", str(path)]) == 1
    assert "ERROR_RATING_OUT_OF_RANGE" in capsys.readouterr().err

    assert main.main(["--trip", str(path), "--rating-max", "10", "--json"]) == 0
    assert '"trip_id": "file-trip"' in capsys.readouterr().out
