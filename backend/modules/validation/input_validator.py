"""
modules/validation/input_validator.py
--------------------------------------
Boundary guards applied to an optimization request before any stage runs.

  Place:
    ✓ Latitude in [-90, 90], longitude in [-180, 180]
    ✓ Coordinates are not both exactly 0.0 (likely missing)
    ✓ Non-empty id and name
    ✓ Role is departure | destination | candidate

  Preference:
    ✓ raw_score within [RATING_MIN, RATING_MAX] (never clamped)
    ✓ requested_duration_minutes >= 0
    ✓ member and place are known to the request
    ✓ at most one preference per (member, place) pair

  Settings:
    ✓ fairness_weight in [0, 1]
    ✓ max_places >= 1
    ✓ max_daily_minutes > 0, max_daily_distance_km > 0
    ✓ preferred_transport_modes is a subset of walk | drive | fly

Usage:
    from modules.validation import require_valid_request

    require_valid_request(request)   # raises ValidationError on the first bad record
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import Any, Optional

import config
from modules.optimization.errors import ValidationError
from schemas.trip import (
    PLACE_ROLES,
    ROLE_DEPARTURE,
    ROLE_DESTINATION,
    TRANSPORT_MODES,
    OptimizationRequest,
    OptimizationSettings,
    Place,
    Preference,
)

logger = logging.getLogger(__name__)


# ── Result dataclass ───────────────────────────────────────────────────────────

@dataclass
class ValidationResult:
    """
    Outcome of a single validation run.

    Attributes:
        valid:  True iff there are zero errors.
        errors: Human-readable list of failure reasons.
        record: The input record (for logging purposes).
        code:   ERROR_* code of the first failure, if any.
        field_name: Offending field of the first failure, if any.
        ids:    Offending place/member identifiers.
    """
    valid: bool
    errors: list[str] = field(default_factory=list)
    record: Any = field(default=None, repr=False)
    code: Optional[str] = None
    field_name: Optional[str] = None
    ids: list[str] = field(default_factory=list)

    def __bool__(self) -> bool:
        return self.valid


class _Collector:
    """Accumulates errors, remembering the code/field of the first one."""

    def __init__(self) -> None:
        self.errors: list[str] = []
        self.code: Optional[str] = None
        self.field_name: Optional[str] = None

    def add(self, code: str, field_name: str, message: str) -> None:
        if self.code is None:
            self.code, self.field_name = code, field_name
        self.errors.append(message)

    def result(self, record: Any, ids: list[str]) -> ValidationResult:
        return ValidationResult(
            valid=not self.errors,
            errors=self.errors,
            record=record,
            code=self.code,
            field_name=self.field_name,
            ids=ids if self.errors else [],
        )


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool) and math.isfinite(value)


# ── Place validation ───────────────────────────────────────────────────────────

def validate_place(place: Place) -> ValidationResult:
    c = _Collector()

    if not place.place_id or not str(place.place_id).strip():
        c.add("ERROR_PLACE_ID_MISSING", "place_id", "place_id must not be empty")

    if not place.name or not str(place.name).strip():
        c.add("ERROR_PLACE_NAME_MISSING", "name", "name must not be empty or NULL")

    if not _is_number(place.lat) or not _is_number(place.lon):
        c.add(
            "ERROR_INVALID_COORDINATES", "lat",
            f"lat/lon must be numeric (got lat={place.lat!r}, lon={place.lon!r})",
        )
    else:
        if not (-90.0 <= place.lat <= 90.0):
            c.add("ERROR_INVALID_COORDINATES", "lat",
                  f"lat={place.lat} is outside valid range [-90, 90]")
        if not (-180.0 <= place.lon <= 180.0):
            c.add("ERROR_INVALID_COORDINATES", "lon",
                  f"lon={place.lon} is outside valid range [-180, 180]")
        if place.lat == 0.0 and place.lon == 0.0:
            c.add(
                "ERROR_INVALID_COORDINATES", "lat",
                "lat=0.0 and lon=0.0: likely a missing/default value, "
                "the null island (0°N, 0°E) is not a valid place",
            )

    if place.role not in PLACE_ROLES:
        c.add("ERROR_UNKNOWN_ROLE", "role",
              f"role={place.role!r} must be one of {', '.join(PLACE_ROLES)}")

    return c.result(place, [place.place_id])


# ── Preference validation ──────────────────────────────────────────────────────

def validate_preference(
    pref: Preference,
    member_ids: Optional[set[str]] = None,
    place_ids: Optional[set[str]] = None,
    rating_min: float = config.RATING_MIN,
    rating_max: float = config.RATING_MAX,
) -> ValidationResult:
    c = _Collector()

    if not _is_number(pref.raw_score):
        c.add("ERROR_RATING_NOT_NUMERIC", "raw_score",
              f"raw_score={pref.raw_score!r} must be numeric")
    elif not (rating_min <= pref.raw_score <= rating_max):
        c.add(
            "ERROR_RATING_OUT_OF_RANGE", "raw_score",
            f"raw_score={pref.raw_score} is outside valid range [{rating_min:g}, {rating_max:g}]",
        )

    duration = pref.requested_duration_minutes
    if not _is_number(duration):
        c.add("ERROR_DURATION_NOT_NUMERIC", "requested_duration_minutes",
              f"requested_duration_minutes={duration!r} must be numeric")
    elif duration < 0:
        c.add("ERROR_NEGATIVE_DURATION", "requested_duration_minutes",
              f"requested_duration_minutes={duration} must be >= 0")

    if member_ids is not None and pref.member_id not in member_ids:
        c.add("ERROR_UNKNOWN_MEMBER", "member_id",
              f"member_id={pref.member_id!r} is not a member of this trip")
    if place_ids is not None and pref.place_id not in place_ids:
        c.add("ERROR_UNKNOWN_PLACE", "place_id",
              f"place_id={pref.place_id!r} is not a place of this trip")

    return c.result(pref, [pref.member_id, pref.place_id])


# ── Settings validation ────────────────────────────────────────────────────────

def validate_settings(settings: OptimizationSettings) -> ValidationResult:
    c = _Collector()

    fw = settings.fairness_weight
    if not _is_number(fw) or not (0.0 <= fw <= 1.0):
        c.add("ERROR_INVALID_FAIRNESS_WEIGHT", "fairness_weight",
              f"fairness_weight={fw!r} must be a number in [0, 1]")

    if not isinstance(settings.max_places, int) or isinstance(settings.max_places, bool) \
            or settings.max_places < 1:
        c.add("ERROR_INVALID_MAX_PLACES", "max_places",
              f"max_places={settings.max_places!r} must be an integer >= 1")

    for name in ("max_daily_minutes", "max_daily_distance_km", "cluster_radius_km"):
        value = getattr(settings, name)
        if not _is_number(value) or value <= 0:
            c.add("ERROR_INVALID_SETTING", name, f"{name}={value!r} must be > 0")

    modes = settings.preferred_transport_modes
    unknown = sorted(set(modes) - set(TRANSPORT_MODES))
    if unknown:
        c.add("ERROR_UNKNOWN_TRANSPORT_MODE", "preferred_transport_modes",
              f"unknown transport modes {unknown}; allowed: {', '.join(TRANSPORT_MODES)}")

    return c.result(settings, [])


# ── Request validation ─────────────────────────────────────────────────────────

def validate_request(
    request: OptimizationRequest,
    rating_min: float = config.RATING_MIN,
    rating_max: float = config.RATING_MAX,
) -> list[ValidationResult]:
    """Validate every record of a request; returns only the failures."""
    failures: list[ValidationResult] = []

    seen: set[str] = set()
    for place in request.places:
        result = validate_place(place)
        if not result:
            failures.append(result)
        if place.place_id in seen:
            failures.append(ValidationResult(
                valid=False,
                errors=[f"place_id={place.place_id!r} appears more than once"],
                record=place, code="ERROR_DUPLICATE_PLACE", field_name="place_id",
                ids=[place.place_id],
            ))
        seen.add(place.place_id)

    for role in (ROLE_DEPARTURE, ROLE_DESTINATION):
        fixed = [p.place_id for p in request.places if p.role == role]
        if len(fixed) > 1:
            failures.append(ValidationResult(
                valid=False,
                errors=[f"at most one {role} place is allowed (got {len(fixed)})"],
                code="ERROR_MULTIPLE_FIXED_PLACES", field_name="role", ids=fixed,
            ))

    member_ids = {m.member_id for m in request.members}
    rated: set[tuple[str, str]] = set()
    for pref in request.preferences:
        result = validate_preference(
            pref,
            member_ids=member_ids or None,
            place_ids=seen,
            rating_min=rating_min,
            rating_max=rating_max,
        )
        if not result:
            failures.append(result)
        pair = (pref.member_id, pref.place_id)
        if pair in rated:
            failures.append(ValidationResult(
                valid=False,
                errors=[f"member_id={pref.member_id!r} rated place_id={pref.place_id!r} more than once"],
                record=pref, code="ERROR_DUPLICATE_PREFERENCE", field_name="place_id",
                ids=list(pair),
            ))
        rated.add(pair)

    settings_result = validate_settings(request.settings)
    if not settings_result:
        failures.append(settings_result)

    return failures


def require_valid_request(
    request: OptimizationRequest,
    rating_min: float = config.RATING_MIN,
    rating_max: float = config.RATING_MAX,
) -> None:
    """Raise ValidationError for the first failing record of *request*."""
    failures = validate_request(request, rating_min=rating_min, rating_max=rating_max)
    if not failures:
        return
    first = failures[0]
    logger.info(
        "Rejected request %s: %d invalid record(s), first: %s",
        request.trip_id, len(failures), "; ".join(first.errors),
    )
    raise ValidationError(
        "; ".join(first.errors),
        code=first.code,
        field=first.field_name,
        ids=first.ids,
    )

