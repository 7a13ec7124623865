"""
test_validation.py
───────────────────────────────────────────────────────────────────────────────
Boundary guards: place coordinates, rating ranges, request-level consistency
and the failure record they produce.
───────────────────────────────────────────────────────────────────────────────
"""

from __future__ import annotations

import math

import pytest

from conftest import SENSO_JI, TOKYO_STATION, TOKYO_TOWER
from modules.optimization.errors import ValidationError
from modules.validation import (
    ValidationResult,
    require_valid_request,
    validate_place,
    validate_preference,
    validate_request,
    validate_settings,
)
from schemas.trip import (
    ROLE_DEPARTURE,
    Member,
    OptimizationRequest,
    OptimizationSettings,
    Place,
    Preference,
)


def _codes(failures) -> list[str]:
    return [f.code for f in failures]


# ─────────────────────────────────────────────────────────────────────────────
# Places
# ─────────────────────────────────────────────────────────────────────────────

def test_valid_place():
    assert validate_place(TOKYO_TOWER)


@pytest.mark.parametrize("lat,lon", [(91.0, 0.5), (-90.5, 10.0), (10.0, 181.0), (math.nan, 10.0)])
def test_bad_coordinates(lat, lon):
    result = validate_place(Place("x", "X", lat, lon))
    assert not result
    assert result.code == "ERROR_INVALID_COORDINATES"


def test_null_island_is_rejected():
    result = validate_place(Place("x", "X", 0.0, 0.0))
    assert result.code == "ERROR_INVALID_COORDINATES"
    assert "null island" in result.errors[0]


def test_missing_name_and_unknown_role():
    result = validate_place(Place("x", "", 35.0, 139.0, role="hotel"))
    assert result.code == "ERROR_PLACE_NAME_MISSING"
    assert len(result.errors) == 2


# ─────────────────────────────────────────────────────────────────────────────
# Preferences and settings
# ─────────────────────────────────────────────────────────────────────────────

def test_rating_bounds_are_inclusive():
    assert validate_preference(Preference("alice", "p", 1))
    assert validate_preference(Preference("alice", "p", 5))
    assert validate_preference(Preference("alice", "p", 5.5)).code == "ERROR_RATING_OUT_OF_RANGE"
    assert validate_preference(Preference("alice", "p", 7), rating_max=10)


def test_negative_duration():
    result = validate_preference(Preference("alice", "p", 3, requested_duration_minutes=-5))
    assert result.code == "ERROR_NEGATIVE_DURATION"


def test_settings_guards():
    assert validate_settings(OptimizationSettings.from_config())
    assert validate_settings(
        OptimizationSettings.from_config(fairness_weight=1.2)
    ).code == "ERROR_INVALID_FAIRNESS_WEIGHT"
    assert validate_settings(
        OptimizationSettings.from_config(max_places=0)
    ).code == "ERROR_INVALID_MAX_PLACES"
    assert validate_settings(
        OptimizationSettings.from_config(preferred_transport_modes=["walk", "boat"])
    ).code == "ERROR_UNKNOWN_TRANSPORT_MODE"


# ─────────────────────────────────────────────────────────────────────────────
# Requests
# ─────────────────────────────────────────────────────────────────────────────

def test_duplicate_place_ids():
    request = OptimizationRequest("t", places=[TOKYO_TOWER, TOKYO_TOWER])
    assert _codes(validate_request(request)) == ["ERROR_DUPLICATE_PLACE"]


def test_multiple_departures():
    second = Place("hotel", "Hotel", 35.68, 139.76, role=ROLE_DEPARTURE)
    failures = validate_request(OptimizationRequest("t", places=[TOKYO_STATION, second, SENSO_JI]))
    assert _codes(failures) == ["ERROR_MULTIPLE_FIXED_PLACES"]
    assert failures[0].ids == ["tokyo_station", "hotel"]


def test_unknown_member_and_place():
    request = OptimizationRequest(
        "t",
        places=[TOKYO_TOWER],
        preferences=[Preference("mallory", "tokyo_tower", 3), Preference("alice", "atlantis", 3)],
        members=[Member("alice")],
    )
    assert _codes(validate_request(request)) == ["ERROR_UNKNOWN_MEMBER", "ERROR_UNKNOWN_PLACE"]


def test_require_valid_request_raises_first_failure():
    request = OptimizationRequest(
        "t",
        places=[TOKYO_TOWER],
        preferences=[Preference("alice", "tokyo_tower", 0)],
        members=[Member("alice")],
    )
    with pytest.raises(ValidationError) as exc_info:
        require_valid_request(request)

    err = exc_info.value
    assert err.code == "ERROR_RATING_OUT_OF_RANGE"
    assert err.field == "raw_score"
    assert err.to_dict()["kind"] == "ValidationError"


def test_repeated_rating_of_same_place():
    request = OptimizationRequest(
        "t",
        places=[TOKYO_TOWER, SENSO_JI],
        preferences=[
            Preference("alice", "tokyo_tower", 4),
            Preference("alice", "senso_ji", 2),
            Preference("alice", "tokyo_tower", 5),
        ],
        members=[Member("alice")],
    )
    failures = validate_request(request)

    assert _codes(failures) == ["ERROR_DUPLICATE_PREFERENCE"]
    assert failures[0].ids == ["alice", "tokyo_tower"]
    with pytest.raises(ValidationError) as exc_info:
        require_valid_request(request)
    assert exc_info.value.field == "place_id"


def test_failure_record_fields():
    result = ValidationResult(valid=False, errors=["bad"], code="ERROR_X",
                              field_name="lat", ids=["p1"])
    assert not result
    assert result.field_name == "lat"
    assert result.ids == ["p1"]
    assert ValidationResult(valid=True).ids == []

    failed = validate_place(Place("p9", "", 35.0, 139.0))
    assert failed.field_name == "name"
    assert failed.ids == ["p9"]
