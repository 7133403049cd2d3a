from __future__ import annotations

import logging
from typing import Sequence

import numpy as np

from liked_sorter.models import FEATURE_NAMES, AudioFeatures, Cluster, ClusterResult, Track
from liked_sorter.numeric import clamp, mean, squared_distance, zscore

logger = logging.getLogger(__name__)

MIN_TRACKS = 10
MIN_K = 2
MAX_K = 10
TRACKS_PER_CLUSTER = 5
MAX_ITERATIONS = 25
SAMPLE_SIZE = 8

# Typical ranges mapped onto [0, 1]: 60-200 BPM and -60-0 dB.
_TEMPO_FLOOR = 60.0
_TEMPO_SPAN = 140.0
_LOUDNESS_FLOOR = -60.0
_LOUDNESS_SPAN = 60.0


def vectorize(features: AudioFeatures) -> list[float]:
    return [
        features.danceability,
        features.energy,
        features.valence,
        features.acousticness,
        features.instrumentalness,
        features.speechiness,
        features.liveness,
        clamp((features.tempo - _TEMPO_FLOOR) / _TEMPO_SPAN, 0.0, 1.0),
        clamp((features.loudness - _LOUDNESS_FLOOR) / _LOUDNESS_SPAN, 0.0, 1.0),
    ]


def resolve_k(requested: int, eligible_count: int) -> int:
    upper = min(MAX_K, max(MIN_K, eligible_count // TRACKS_PER_CLUSTER))
    return max(MIN_K, min(upper, requested))


def kmeans(vectors: np.ndarray, k: int, max_iterations: int = MAX_ITERATIONS) -> list[int]:
    """Partition the rows of ``vectors`` into ``k`` groups.

    Centroids are seeded from the first ``k`` rows (wrapping around when
    there are fewer rows than ``k``) so repeated runs over the same input
    produce the same assignment. Empty clusters keep their last centroid.
    """

    data = np.asarray(vectors, dtype=float)
    count = data.shape[0]
    centroids = np.array([data[i % count] for i in range(k)], dtype=float)
    assignments: list[int] = [-1] * count

    for iteration in range(max_iterations):
        changed = False
        for row_index in range(count):
            best = 0
            best_distance = squared_distance(data[row_index], centroids[0])
            for cluster_index in range(1, k):
                distance = squared_distance(data[row_index], centroids[cluster_index])
                # Strict comparison: ties stay with the lowest centroid index.
                if distance < best_distance:
                    best, best_distance = cluster_index, distance
            if best != assignments[row_index]:
                assignments[row_index] = best
                changed = True

        if not changed:
            logger.debug("k-means converged after %d iterations (k=%d, n=%d)", iteration, k, count)
            break

        for cluster_index in range(k):
            member_rows = [i for i, a in enumerate(assignments) if a == cluster_index]
            if member_rows:
                centroids[cluster_index] = data[member_rows].mean(axis=0)

    return assignments


def feature_averages(tracks: Sequence[Track]) -> dict[str, float | None]:
    with_audio = [t.audio for t in tracks if t.audio is not None]
    return {name: mean([getattr(a, name) for a in with_audio]) for name in FEATURE_NAMES}


def _samples(tracks: Sequence[Track]) -> list[Track]:
    ranked = sorted(tracks, key=lambda t: t.popularity or 0, reverse=True)
    return ranked[:SAMPLE_SIZE]


def cluster_tracks(tracks: Sequence[Track], k: int) -> ClusterResult:
    eligible = [t for t in tracks if t.audio is not None]
    if len(eligible) < MIN_TRACKS:
        return ClusterResult(
            performed=False,
            effective_k=0,
            clusters=[],
            note=f"Need at least {MIN_TRACKS} tracks with audio features to cluster (got {len(eligible)}).",
        )

    matrix = np.array([vectorize(t.audio) for t in eligible], dtype=float)
    standardized, _, _ = zscore(matrix)
    effective_k = resolve_k(k, len(eligible))
    assignments = kmeans(standardized, effective_k)

    clusters: list[Cluster] = []
    for cluster_index in range(effective_k):
        members = [t for t, a in zip(eligible, assignments) if a == cluster_index]
        if not members:
            continue
        clusters.append(
            Cluster(
                cluster_id=cluster_index,
                members=members,
                averages=feature_averages(members),
                samples=_samples(members),
            )
        )

    # sorted() is stable, so equal-sized clusters keep their index order.
    clusters = sorted(clusters, key=lambda c: c.size, reverse=True)
    logger.info(
        "Clustered %d of %d tracks into %d groups (requested k=%d)",
        len(eligible),
        len(tracks),
        len(clusters),
        k,
    )
    return ClusterResult(performed=True, effective_k=effective_k, clusters=clusters)
