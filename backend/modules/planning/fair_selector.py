"""
modules/planning/fair_selector.py
----------------------------------
Stage 3: iterative fair selection of a bounded subset of candidate places.

Per candidate p:
  desirability(p)  = sum of standardized scores of every member who rated p
  wish(p)          = min-max normalized desirability over all candidates
                     (blended with the cluster's normalized desirability by
                      CLUSTER_AFFINITY_WEIGHT when clusters are supplied)
  contributors(p)  = members with a positive standardized score for p,
                     weighted proportionally (weights sum to 1); if nobody is
                     positive, the single top scorer (ties: member id) with weight 1

Per member m:
  owned(m)         = number of candidates m contributes to
  ratio(m)         = sum of m's weights over selected places / owned(m)

Each round, for every unselected candidate:
  impact(p)   = sum_m w_m * (1 + avg_ratio - ratio(m)) / 2     in [0, 1]
  combined(p) = (1 - fairness_weight) * wish(p) + fairness_weight * impact(p)

The highest combined score wins (ties: lexical place id). Rounds continue
until max_places is reached or no eligible candidate remains.

System places (departure / destination) never compete: they are always
included with round 0 and do not count toward max_places.

Group fairness score = exp(-variance(ratio(m))) over members with owned(m) > 0.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import Optional

import config
from modules.optimization.errors import InsufficientDataError
from modules.planning.geo_clustering import ClusteringResult
from modules.planning.preference_normalizer import NormalizationResult
from schemas.trip import Member, Place, SelectedPlace

logger = logging.getLogger(__name__)

_DUPLICATE_COORD_DP = 4


@dataclass
class SelectionResult:
    selected: list[SelectedPlace] = field(default_factory=list)
    member_fairness: dict[str, float] = field(default_factory=dict)   # member_id -> ratio
    fairness_score: float = 1.0
    satisfaction: dict[str, dict] = field(default_factory=dict)
    analysis: dict = field(default_factory=dict)
    merged_duplicates: dict[str, str] = field(default_factory=dict)   # dropped id -> kept id

    @property
    def candidates(self) -> list[SelectedPlace]:
        """Selected places that competed (system places excluded)."""
        return [s for s in self.selected if not s.place.is_system]


# ── Duplicate merge ────────────────────────────────────────────────────────────

def merge_duplicate_places(places: list[Place]) -> tuple[list[Place], dict[str, str]]:
    """
    Collapse places sharing a name and coordinates rounded to 4 dp.

    The lexically smallest place id is kept. Returns the surviving places and
    a map of dropped id -> kept id.
    """
    kept: dict[tuple, Place] = {}
    aliases: dict[str, str] = {}
    for place in sorted(places, key=lambda p: p.place_id):
        key = (
            place.name.strip().lower(),
            round(place.lat, _DUPLICATE_COORD_DP),
            round(place.lon, _DUPLICATE_COORD_DP),
        )
        if key in kept:
            aliases[place.place_id] = kept[key].place_id
            continue
        kept[key] = place
    if aliases:
        logger.info("Merged %d duplicate place(s): %s", len(aliases), aliases)
    return list(kept.values()), aliases


# ── Selector ───────────────────────────────────────────────────────────────────

class FairSelector:
    """Greedy fairness-aware selector."""

    def __init__(
        self,
        max_places: int = config.MAX_PLACES,
        fairness_weight: float = config.FAIRNESS_WEIGHT,
        cluster_affinity_weight: float = config.CLUSTER_AFFINITY_WEIGHT,
        min_fairness_score: float = config.MIN_FAIRNESS_SCORE,
    ) -> None:
        self.max_places = max_places
        self.fairness_weight = fairness_weight
        self.cluster_affinity_weight = cluster_affinity_weight
        self.min_fairness_score = min_fairness_score

    def select(
        self,
        places: list[Place],
        normalization: NormalizationResult,
        members: Optional[list[Member]] = None,
        clustering: Optional[ClusteringResult] = None,
    ) -> SelectionResult:
        system = sorted((p for p in places if p.is_system), key=lambda p: (p.role, p.place_id))
        candidates, aliases = merge_duplicate_places([p for p in places if not p.is_system])
        if not candidates:
            raise InsufficientDataError(
                "no candidate places to select from",
                code="ERROR_NO_CANDIDATES",
                field="places",
            )

        scores = self._scores_by_place(normalization, aliases)
        contributors = {p.place_id: self._contributors(scores.get(p.place_id, {})) for p in candidates}
        wish = self._wish_scores(candidates, scores, clustering)

        member_ids = sorted(
            {m.member_id for m in (members or [])}
            | {sp.member_id for sp in normalization.standardized_preferences}
        )
        owned = {m: 0 for m in member_ids}
        for weights in contributors.values():
            for m in weights:
                owned[m] = owned.get(m, 0) + 1
        credited = {m: 0.0 for m in owned}

        selected: list[SelectedPlace] = [
            SelectedPlace(place=p, selection_round=0, selection_score=0.0) for p in system
        ]
        remaining = {p.place_id: p for p in candidates}
        round_no = 0

        while remaining and round_no < self.max_places:
            ratios = self._ratios(owned, credited)
            avg_ratio = sum(ratios.values()) / len(ratios) if ratios else 0.0

            ranked: list[tuple[float, str, float]] = []
            for pid in sorted(remaining):
                impact = self._fairness_impact(contributors[pid], ratios, avg_ratio)
                combined = (1 - self.fairness_weight) * wish[pid] + self.fairness_weight * impact
                ranked.append((combined, pid, impact))
            ranked.sort(key=lambda r: (-r[0], r[1]))

            eligible = [r for r in ranked if r[2] >= self.min_fairness_score]
            if not eligible:
                if round_no > 0:
                    break
                # never return an empty selection when a candidate exists
                logger.warning("No candidate meets min fairness %.2f; selecting best anyway",
                               self.min_fairness_score)
                eligible = ranked[:1]

            combined, pid, impact = eligible[0]
            round_no += 1
            place = remaining.pop(pid)
            cluster = clustering.cluster_of(pid) if clustering else None
            selected.append(SelectedPlace(
                place=place,
                selection_round=round_no,
                selection_score=combined,
                contributors=dict(contributors[pid]),
                wish_score=wish[pid],
                fairness_impact=impact,
                cluster_id=cluster.cluster_id if cluster else None,
            ))
            for m, w in contributors[pid].items():
                credited[m] = credited.get(m, 0.0) + w

        ratios = self._ratios(owned, credited)
        result = SelectionResult(
            selected=selected,
            member_fairness=ratios,
            fairness_score=group_fairness_score(list(ratios.values())),
            merged_duplicates=aliases,
        )
        result.satisfaction = self._satisfaction(result, scores, owned)
        result.analysis = fairness_analysis(ratios, result.fairness_score)
        logger.info("Selected %d of %d candidates (fairness %.3f)",
                    len(result.candidates), len(candidates), result.fairness_score)
        return result

    # ── internals ─────────────────────────────────────────────────────────

    @staticmethod
    def _scores_by_place(
        normalization: NormalizationResult,
        aliases: dict[str, str],
    ) -> dict[str, dict[str, float]]:
        """place_id -> member_id -> standardized score (max over merged duplicates)."""
        scores: dict[str, dict[str, float]] = {}
        for sp in normalization.standardized_preferences:
            pid = aliases.get(sp.place_id, sp.place_id)
            per_member = scores.setdefault(pid, {})
            prev = per_member.get(sp.member_id)
            if prev is None or sp.standardized_score > prev:
                per_member[sp.member_id] = sp.standardized_score
        return scores

    @staticmethod
    def _contributors(member_scores: dict[str, float]) -> dict[str, float]:
        positive = {m: s for m, s in member_scores.items() if s > 0}
        if positive:
            total = sum(positive.values())
            return {m: positive[m] / total for m in sorted(positive)}
        if not member_scores:
            return {}
        top = min(member_scores, key=lambda m: (-member_scores[m], m))
        return {top: 1.0}

    def _wish_scores(
        self,
        candidates: list[Place],
        scores: dict[str, dict[str, float]],
        clustering: Optional[ClusteringResult],
    ) -> dict[str, float]:
        desirability = {p.place_id: sum(scores.get(p.place_id, {}).values()) for p in candidates}
        wish = _min_max(desirability)

        if clustering and clustering.clusters and self.cluster_affinity_weight > 0:
            cluster_norm = _min_max({c.cluster_id: c.total_desirability for c in clustering.clusters})
            for pid in wish:
                cluster = clustering.cluster_of(pid)
                if cluster is None:
                    continue
                wish[pid] = (
                    (1 - self.cluster_affinity_weight) * wish[pid]
                    + self.cluster_affinity_weight * cluster_norm[cluster.cluster_id]
                )
        return wish

    @staticmethod
    def _ratios(owned: dict[str, int], credited: dict[str, float]) -> dict[str, float]:
        return {m: credited.get(m, 0.0) / n for m, n in sorted(owned.items()) if n > 0}

    @staticmethod
    def _fairness_impact(
        weights: dict[str, float],
        ratios: dict[str, float],
        avg_ratio: float,
    ) -> float:
        if not weights:
            return 0.5
        return sum(
            w * (1.0 + avg_ratio - ratios.get(m, 0.0)) / 2.0
            for m, w in weights.items()
        )

    @staticmethod
    def _satisfaction(
        result: SelectionResult,
        scores: dict[str, dict[str, float]],
        owned: dict[str, int],
    ) -> dict[str, dict]:
        chosen = [s.place_id for s in result.candidates]
        out: dict[str, dict] = {}
        for m in sorted(owned):
            rated = [scores[pid][m] for pid in chosen if m in scores.get(pid, {})]
            contributed = sum(1 for s in result.candidates if m in s.contributors)
            out[m] = {
                "places_contributed":    contributed,
                "places_owned":          owned[m],
                "representation_ratio":  result.member_fairness.get(m, 0.0),
                "average_selected_score": sum(rated) / len(rated) if rated else 0.0,
            }
        return out


# ── Metrics ────────────────────────────────────────────────────────────────────

def _min_max(values: dict[str, float]) -> dict[str, float]:
    if not values:
        return {}
    lo, hi = min(values.values()), max(values.values())
    if hi - lo <= 1e-12:
        return {k: 1.0 for k in values}
    return {k: (v - lo) / (hi - lo) for k, v in values.items()}


def group_fairness_score(ratios: list[float]) -> float:
    """exp(-variance) of per-member representation ratios; 1.0 is perfectly even."""
    if not ratios:
        return 1.0
    mean = sum(ratios) / len(ratios)
    variance = sum((r - mean) ** 2 for r in ratios) / len(ratios)
    return math.exp(-variance)


def fairness_analysis(ratios: dict[str, float], fairness_score: float) -> dict:
    """Balance flag, disparity level and human-readable recommendations."""
    if not ratios:
        return {"balanced": True, "disparity": "none", "spread": 0.0, "recommendations": []}

    spread = max(ratios.values()) - min(ratios.values())
    if spread < 0.2:
        disparity = "low"
    elif spread < 0.4:
        disparity = "medium"
    else:
        disparity = "high"

    recommendations: list[str] = []
    if disparity != "low":
        under = sorted(m for m, r in ratios.items() if r == min(ratios.values()))
        recommendations.append(
            f"Members {', '.join(under)} are under-represented; "
            f"consider raising fairness_weight or max_places."
        )
    if fairness_score < 0.9:
        recommendations.append("Group fairness is below 0.9; review member wishlists for overlap.")

    return {
        "balanced":        disparity == "low",
        "disparity":       disparity,
        "spread":          spread,
        "recommendations": recommendations,
    }
