"""
modules/planning/preference_normalizer.py
------------------------------------------
Stage 1: per-member z-score normalization of raw wish ratings.

Each member rates on a personal scale (one member's "3" is another's "5").
Standardizing against the member's own mean / population std-dev removes
that bias so every member carries the same influence downstream.

  z = (raw - member_mean) / member_std

Fallback (member has one rating, or all ratings identical -> std = 0):
  z = (raw - panel_mean) / panel_std      reason: single_rating | identical_ratings
  z = 0                                   if the panel std is 0 as well

Quality check (surfaced, never fatal):
  |mean of per-member standardized means| <= NORMALIZATION_MEAN_TOLERANCE
  fallback members / all members          <= NORMALIZATION_MAX_FALLBACK_FRACTION
"""

from __future__ import annotations

import logging
import math
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Optional

import config
from modules.optimization.errors import ValidationError
from schemas.trip import MemberStatistics, Preference, StandardizedPreference

logger = logging.getLogger(__name__)

SINGLE_RATING = "single_rating"
IDENTICAL_RATINGS = "identical_ratings"


@dataclass
class NormalizationWarning:
    code: str
    message: str
    member_id: Optional[str] = None


@dataclass
class NormalizationQuality:
    is_valid: bool
    issues: list[str] = field(default_factory=list)
    mean_of_member_means: float = 0.0
    fallback_fraction: float = 0.0


@dataclass
class NormalizationResult:
    standardized_preferences: list[StandardizedPreference] = field(default_factory=list)
    member_statistics: dict[str, MemberStatistics] = field(default_factory=dict)
    warnings: list[NormalizationWarning] = field(default_factory=list)
    quality: NormalizationQuality = field(default_factory=lambda: NormalizationQuality(is_valid=True))

    def scores_for(self, place_id: str) -> dict[str, float]:
        """member_id -> standardized score for one place."""
        return {
            sp.member_id: sp.standardized_score
            for sp in self.standardized_preferences
            if sp.place_id == place_id
        }

    def interpretations(self) -> dict[str, dict[str, str]]:
        """member_id -> place_id -> qualitative level of the standardized score."""
        levels: dict[str, dict[str, str]] = {}
        for sp in sorted(self.standardized_preferences, key=lambda s: (s.member_id, s.place_id)):
            levels.setdefault(sp.member_id, {})[sp.place_id] = interpret_score(sp.standardized_score)
        return levels


# ── Statistics helpers ────────────────────────────────────────────────────────

def _mean(values: list[float]) -> float:
    return sum(values) / len(values) if values else 0.0


def _population_std(values: list[float], mean: float) -> float:
    if not values:
        return 0.0
    return math.sqrt(sum((v - mean) ** 2 for v in values) / len(values))


def interpret_score(score: float) -> str:
    """Qualitative level of a standardized score relative to the member's own average."""
    if score < -1.5:
        return "very_low"
    if score < -0.5:
        return "low"
    if score < 0.5:
        return "neutral"
    if score < 1.5:
        return "high"
    return "very_high"


# ── Normalizer ────────────────────────────────────────────────────────────────

class PreferenceNormalizer:
    """
    Converts raw Preferences into StandardizedPreferences.

    The rating scale defaults to config.RATING_MIN..RATING_MAX; scores outside
    it are rejected with ValidationError (never clamped).
    """

    def __init__(
        self,
        rating_min: float = config.RATING_MIN,
        rating_max: float = config.RATING_MAX,
        mean_tolerance: float = config.NORMALIZATION_MEAN_TOLERANCE,
        max_fallback_fraction: float = config.NORMALIZATION_MAX_FALLBACK_FRACTION,
    ) -> None:
        self.rating_min = rating_min
        self.rating_max = rating_max
        self.mean_tolerance = mean_tolerance
        self.max_fallback_fraction = max_fallback_fraction

    def normalize(self, preferences: list[Preference]) -> NormalizationResult:
        if not preferences:
            logger.warning("No preferences supplied; nothing to normalize")
            return NormalizationResult(warnings=[NormalizationWarning(
                code="NO_PREFERENCES",
                message="No preferences were supplied; normalization produced no scores.",
            )])

        self._check_inputs(preferences)

        by_member: "OrderedDict[str, list[Preference]]" = OrderedDict()
        for pref in sorted(preferences, key=lambda p: (p.member_id, p.place_id)):
            by_member.setdefault(pref.member_id, []).append(pref)

        all_scores = [float(p.raw_score) for prefs in by_member.values() for p in prefs]
        panel_mean = _mean(all_scores)
        panel_std = _population_std(all_scores, panel_mean)

        result = NormalizationResult()
        for member_id, prefs in by_member.items():
            raw = [float(p.raw_score) for p in prefs]
            mean = _mean(raw)
            std = _population_std(raw, mean)

            reason: Optional[str] = None
            if len(raw) == 1:
                reason = SINGLE_RATING
            elif std == 0.0:
                reason = IDENTICAL_RATINGS

            result.member_statistics[member_id] = MemberStatistics(
                member_id=member_id,
                rating_count=len(raw),
                mean=mean,
                std_dev=std,
                min_score=min(raw),
                max_score=max(raw),
                used_fallback=reason is not None,
                fallback_reason=reason,
            )

            if reason is not None:
                result.warnings.append(NormalizationWarning(
                    code=reason.upper(),
                    member_id=member_id,
                    message=(
                        f"Member {member_id} has a single rating; panel-wide statistics used."
                        if reason == SINGLE_RATING else
                        f"Member {member_id} gave the same rating ({mean:g}) to every place; "
                        f"panel-wide statistics used."
                    ),
                ))
                logger.info("Member %s falls back to panel statistics (%s)", member_id, reason)

            for pref in prefs:
                if reason is None:
                    z = (float(pref.raw_score) - mean) / std
                elif panel_std > 0.0:
                    z = (float(pref.raw_score) - panel_mean) / panel_std
                else:
                    z = 0.0
                result.standardized_preferences.append(StandardizedPreference(
                    member_id=member_id,
                    place_id=pref.place_id,
                    raw_score=float(pref.raw_score),
                    standardized_score=z,
                    requested_duration_minutes=float(pref.requested_duration_minutes),
                    is_favorite=pref.is_favorite,
                    fallback_reason=reason,
                ))

        result.quality = self.analyze_quality(result)
        for issue in result.quality.issues:
            result.warnings.append(NormalizationWarning(code="QUALITY", message=issue))
        return result

    def analyze_quality(self, result: NormalizationResult) -> NormalizationQuality:
        """Check mean-of-member-means and fallback share against configured limits."""
        stats = result.member_statistics
        if not stats:
            return NormalizationQuality(is_valid=True)

        member_means = []
        for member_id in stats:
            scores = [sp.standardized_score for sp in result.standardized_preferences
                      if sp.member_id == member_id]
            member_means.append(_mean(scores))
        mean_of_means = _mean(member_means)
        fallback_fraction = sum(1 for s in stats.values() if s.used_fallback) / len(stats)

        issues: list[str] = []
        if abs(mean_of_means) > self.mean_tolerance:
            issues.append(
                f"Mean of member means is {mean_of_means:.3f}, beyond tolerance {self.mean_tolerance:g}"
            )
        if fallback_fraction > self.max_fallback_fraction:
            issues.append(
                f"{fallback_fraction:.0%} of members used the fallback path "
                f"(limit {self.max_fallback_fraction:.0%})"
            )
        if issues:
            logger.warning("Normalization quality flagged: %s", "; ".join(issues))

        return NormalizationQuality(
            is_valid=not issues,
            issues=issues,
            mean_of_member_means=mean_of_means,
            fallback_fraction=fallback_fraction,
        )

    # ── internals ─────────────────────────────────────────────────────────

    def _check_inputs(self, preferences: list[Preference]) -> None:
        for pref in preferences:
            if not (self.rating_min <= pref.raw_score <= self.rating_max):
                raise ValidationError(
                    f"raw_score={pref.raw_score} is outside valid range "
                    f"[{self.rating_min:g}, {self.rating_max:g}]",
                    code="ERROR_RATING_OUT_OF_RANGE",
                    field="raw_score",
                    ids=[pref.member_id, pref.place_id],
                )
            if pref.requested_duration_minutes < 0:
                raise ValidationError(
                    f"requested_duration_minutes={pref.requested_duration_minutes} must be >= 0",
                    code="ERROR_NEGATIVE_DURATION",
                    field="requested_duration_minutes",
                    ids=[pref.member_id, pref.place_id],
                )


def normalize_preferences(
    preferences: list[Preference],
    rating_min: float = config.RATING_MIN,
    rating_max: float = config.RATING_MAX,
) -> NormalizationResult:
    """Convenience wrapper around PreferenceNormalizer with config defaults."""
    return PreferenceNormalizer(rating_min=rating_min, rating_max=rating_max).normalize(preferences)
