"""
modules/planning/geo_clustering.py
-----------------------------------
Stage 2: group candidate places into spatial clusters.

Greedy single-link agglomeration over haversine distances:
  1. Every place starts as its own cluster.
  2. Repeatedly merge the two clusters with the smallest linkage distance
     (closest pair of member places) while that distance <= radius.
     Ties: distance, then the clusters' smallest place ids (lexical).
  3. Recompute the centroid (arithmetic mean of member coordinates) after
     every merge.

Stopping when no pair of clusters has two places within the radius is what
makes the result radius-consistent: places in different clusters are always
farther apart than the radius. validate_clusters() re-checks this post-hoc and
raises ComputationError on violation.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

import config
from modules.optimization.errors import ComputationError
from modules.planning.preference_normalizer import NormalizationResult
from modules.tool_usage.distance_tool import distance_matrix, haversine_km
from schemas.trip import Cluster, Place

logger = logging.getLogger(__name__)


@dataclass
class ClusterAnalysis:
    total_clusters: int = 0
    isolated_destinations: list[str] = field(default_factory=list)
    average_cluster_size: float = 0.0
    largest_cluster_size: int = 0
    # "cluster_a|cluster_b" -> centroid distance in km
    centroid_distances_km: dict[str, float] = field(default_factory=dict)


@dataclass
class ClusteringResult:
    clusters: list[Cluster] = field(default_factory=list)
    analysis: ClusterAnalysis = field(default_factory=ClusterAnalysis)

    def cluster_of(self, place_id: str) -> Cluster | None:
        for c in self.clusters:
            if place_id in c.place_ids:
                return c
        return None


def _centroid(places: list[Place]) -> tuple[float, float]:
    return (
        sum(p.lat for p in places) / len(places),
        sum(p.lon for p in places) / len(places),
    )


class GeoClusterer:
    """Deterministic single-link clusterer; one instance per radius."""

    def __init__(self, max_cluster_radius_km: float = config.CLUSTER_RADIUS_KM) -> None:
        self.radius_km = max_cluster_radius_km

    def cluster(
        self,
        places: list[Place],
        normalization: NormalizationResult,
    ) -> ClusteringResult:
        if not places:
            return ClusteringResult()

        ordered = sorted(places, key=lambda p: p.place_id)
        n = len(ordered)
        dist = distance_matrix([(p.lat, p.lon) for p in ordered])

        # each group is a sorted list of indices into `ordered`
        groups: list[list[int]] = [[i] for i in range(n)]

        while True:
            best: tuple[float, str, str, int, int] | None = None
            for gi in range(len(groups)):
                for gj in range(gi + 1, len(groups)):
                    link = min(dist[a][b] for a in groups[gi] for b in groups[gj])
                    if link > self.radius_km:
                        continue
                    key = (
                        link,
                        ordered[groups[gi][0]].place_id,
                        ordered[groups[gj][0]].place_id,
                        gi,
                        gj,
                    )
                    if best is None or key < best:
                        best = key
            if best is None:
                break
            _, _, _, gi, gj = best
            merged = sorted(groups[gi] + groups[gj])
            groups = [g for k, g in enumerate(groups) if k not in (gi, gj)]
            groups.append(merged)
            groups.sort(key=lambda g: ordered[g[0]].place_id)

        clusters = [
            self._build_cluster(f"cluster_{k + 1}", [ordered[i] for i in g], normalization)
            for k, g in enumerate(groups)
        ]
        result = ClusteringResult(clusters=clusters, analysis=self._analyze(clusters))
        validate_clusters(result.clusters, places, self.radius_km)
        logger.info("Clustered %d places into %d clusters (radius %.1f km)",
                    n, len(clusters), self.radius_km)
        return result

    # ── internals ─────────────────────────────────────────────────────────

    def _build_cluster(
        self,
        cluster_id: str,
        members: list[Place],
        normalization: NormalizationResult,
    ) -> Cluster:
        lat, lon = _centroid(members)
        ids = [p.place_id for p in members]
        id_set = set(ids)

        desirability = 0.0
        per_member: dict[str, float] = {}
        durations: list[float] = []
        for sp in normalization.standardized_preferences:
            if sp.place_id not in id_set:
                continue
            desirability += sp.standardized_score
            per_member[sp.member_id] = per_member.get(sp.member_id, 0.0) + sp.standardized_score
            if sp.requested_duration_minutes > 0:
                durations.append(sp.requested_duration_minutes)

        return Cluster(
            cluster_id=cluster_id,
            place_ids=ids,
            centroid_lat=lat,
            centroid_lon=lon,
            total_desirability=desirability,
            average_stay_minutes=(
                sum(durations) / len(durations) if durations else config.DEFAULT_STAY_MIN
            ),
            member_preferences=dict(sorted(per_member.items())),
        )

    def _analyze(self, clusters: list[Cluster]) -> ClusterAnalysis:
        matrix = distance_matrix([(c.centroid_lat, c.centroid_lon) for c in clusters])
        distances: dict[str, float] = {}
        for i, a in enumerate(clusters):
            for j in range(i + 1, len(clusters)):
                distances[f"{a.cluster_id}|{clusters[j].cluster_id}"] = round(matrix[i][j], 3)
        sizes = [c.size for c in clusters]
        return ClusterAnalysis(
            total_clusters=len(clusters),
            isolated_destinations=[c.place_ids[0] for c in clusters if c.size == 1],
            average_cluster_size=sum(sizes) / len(sizes) if sizes else 0.0,
            largest_cluster_size=max(sizes) if sizes else 0,
            centroid_distances_km=distances,
        )


# ── Self-check ─────────────────────────────────────────────────────────────────

def validate_clusters(clusters: list[Cluster], places: list[Place], radius_km: float) -> None:
    """
    Post-hoc consistency check of a clustering run.

    Raises ComputationError when a cluster is empty, a place is assigned twice
    or not at all, a centroid is out of range, or two places in different
    clusters lie within the radius of each other.
    """
    by_id = {p.place_id: p for p in places}
    owner: dict[str, str] = {}

    for c in clusters:
        if not c.place_ids:
            raise ComputationError(f"{c.cluster_id} is empty",
                                   code="ERROR_EMPTY_CLUSTER", ids=[c.cluster_id])
        if not (-90.0 <= c.centroid_lat <= 90.0 and -180.0 <= c.centroid_lon <= 180.0):
            raise ComputationError(f"{c.cluster_id} centroid is out of range",
                                   code="ERROR_CLUSTER_CENTROID", ids=[c.cluster_id])
        for pid in c.place_ids:
            if pid in owner:
                raise ComputationError(
                    f"place {pid} assigned to both {owner[pid]} and {c.cluster_id}",
                    code="ERROR_DUPLICATE_ASSIGNMENT", ids=[pid, owner[pid], c.cluster_id],
                )
            owner[pid] = c.cluster_id

    missing = sorted(set(by_id) - set(owner))
    if missing:
        raise ComputationError(f"places not assigned to any cluster: {missing}",
                               code="ERROR_UNASSIGNED_PLACE", ids=missing)

    ids = sorted(owner)
    for i, a in enumerate(ids):
        for b in ids[i + 1:]:
            if owner[a] == owner[b]:
                continue
            pa, pb = by_id[a], by_id[b]
            d = haversine_km(pa.lat, pa.lon, pb.lat, pb.lon)
            if d <= radius_km:
                raise ComputationError(
                    f"places {a} and {b} are {d:.2f} km apart but in different clusters",
                    code="ERROR_CLUSTER_RADIUS_VIOLATION",
                    ids=[a, b],
                    context={"distance_km": d, "radius_km": radius_km,
                             "clusters": [owner[a], owner[b]]},
                )
