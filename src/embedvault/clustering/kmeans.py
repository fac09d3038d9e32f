"""
K-means over cosine distance
============================

Pure numpy: distance is ``1 - cosine_similarity``, centroids are arithmetic
means of their members, seeding is k-means++ and k is picked with the elbow
of the WCSS curve.
"""

from __future__ import annotations

import math
from typing import List, Optional, Sequence

import numpy as np

from embedvault.models import KMeansResult
from embedvault.similarity import as_vector, normalize_rows, similarity_matrix

# Lloyd passes per candidate k when estimating the elbow.
ELBOW_ITERATIONS = 5


def _matrix(embeddings: Sequence) -> np.ndarray:
    return np.stack([as_vector(e) for e in embeddings]).astype(np.float64)


def _distances(points: np.ndarray, centroids: np.ndarray) -> np.ndarray:
    return 1.0 - similarity_matrix(points, centroids)


def kmeans_plus_plus(points: np.ndarray, k: int, rng: np.random.Generator) -> np.ndarray:
    """
    k-means++ seeding: the first centroid is a uniformly random point, each
    further one is drawn with probability proportional to the squared
    distance to its closest already-chosen centroid.
    """
    n = len(points)
    centroids = [points[int(rng.integers(n))].copy()]
    for _ in range(1, k):
        nearest = _distances(points, np.stack(centroids)).min(axis=1)
        weights = np.clip(nearest, 0.0, None) ** 2
        total = float(weights.sum())
        if total <= 0.0:
            idx = int(rng.integers(n))
        else:
            idx = int(np.searchsorted(np.cumsum(weights), rng.random() * total))
            idx = min(idx, n - 1)
        centroids.append(points[idx].copy())
    return np.stack(centroids)


def perform_kmeans(
    embeddings: Sequence,
    k: int,
    *,
    max_iterations: int = 10,
    convergence_threshold: float = 0.01,
    rng: Optional[np.random.Generator] = None,
) -> KMeansResult:
    """
    Lloyd's algorithm.

    Stops once the fraction of points that changed cluster drops below
    ``convergence_threshold`` (``converged=True``) or after
    ``max_iterations`` passes. A cluster that loses all its points keeps its
    previous centroid.
    """
    if len(embeddings) == 0:
        return KMeansResult(centroids=[], assignments=[], wcss=0.0, converged=True, iterations=0)

    points = _matrix(embeddings)
    n = len(points)

    k = max(1, min(k, n))
    rng = rng or np.random.default_rng()
    centroids = kmeans_plus_plus(points, k, rng)
    assignments = np.zeros(n, dtype=int)
    converged = False
    iterations = 0

    for iteration in range(max(1, max_iterations)):
        iterations = iteration + 1
        new_assignments = _distances(points, centroids).argmin(axis=1)
        changed = int((new_assignments != assignments).sum())
        assignments = new_assignments
        if changed / n < convergence_threshold:
            converged = True
            break

        for c in range(k):
            members = points[assignments == c]
            if len(members):
                centroids[c] = members.mean(axis=0)

    dist = 1.0 - np.sum(normalize_rows(points) * normalize_rows(centroids[assignments]), axis=1)
    wcss = float(np.sum(dist**2))

    return KMeansResult(
        centroids=[c.astype(np.float32) for c in centroids],
        assignments=[int(a) for a in assignments],
        wcss=wcss,
        converged=converged,
        iterations=iterations,
    )


def calculate_optimal_k(
    embeddings: Sequence,
    *,
    max_clusters: int = 50,
    convergence_threshold: float = 0.01,
    rng: Optional[np.random.Generator] = None,
) -> int:
    """
    Elbow method over ``k = 1..min(floor(sqrt(n / 2)), max_clusters)``.

    The elbow is the ``k`` with the largest second difference of WCSS; the
    result is never below ``min(3, max_k)``.
    """
    max_k = min(int(math.floor(math.sqrt(len(embeddings) / 2))), max_clusters)
    if max_k <= 1:
        return 1

    rng = rng or np.random.default_rng()
    wcss: List[float] = [
        perform_kmeans(
            embeddings,
            k,
            max_iterations=ELBOW_ITERATIONS,
            convergence_threshold=convergence_threshold,
            rng=rng,
        ).wcss
        for k in range(1, max_k + 1)
    ]

    optimal_k = 1
    best = 0.0
    for i in range(1, len(wcss) - 1):
        score = (wcss[i - 1] - wcss[i]) - (wcss[i] - wcss[i + 1])
        if score > best:
            best = score
            optimal_k = i + 1

    return max(optimal_k, min(3, max_k))


__all__ = ["kmeans_plus_plus", "perform_kmeans", "calculate_optimal_k", "ELBOW_ITERATIONS"]
