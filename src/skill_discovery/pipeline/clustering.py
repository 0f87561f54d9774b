"""Density-based clustering of prompt embeddings with automatic epsilon selection."""

from __future__ import annotations

from collections.abc import Callable, Sequence
from dataclasses import dataclass

import numpy as np
from sklearn.cluster import DBSCAN
from sklearn.metrics.pairwise import cosine_distances

NOISE_LABEL = -1

# Fallback radius when the k-distance curve has no discernible knee.
DEFAULT_EPSILON = 0.3
# Perpendicular distance (x normalized to [0, 1], y in distance units) under
# which the k-distance curve counts as a straight line.
KNEE_FLATNESS_THRESHOLD = 0.01
# k-distances at or below this are treated as identical points.
ZERO_DISTANCE_TOLERANCE = 1e-9

DistanceFunction = Callable[[np.ndarray, np.ndarray], float]


class ClusteringError(ValueError):
    """Raised when clustering inputs are invalid."""


@dataclass(frozen=True, slots=True)
class EpsilonBounds:
    """Inclusive range the tuned epsilon is clamped to."""

    min: float = 0.05
    max: float = 0.5

    def __post_init__(self) -> None:
        if self.min <= 0 or self.max <= 0:
            raise ClusteringError(
                f"Epsilon bounds must be positive, got min={self.min}, max={self.max}."
            )
        if self.min > self.max:
            raise ClusteringError(
                f"Epsilon bounds min cannot exceed max: {self.min} > {self.max}."
            )

    def clamp(self, value: float) -> float:
        return float(min(self.max, max(self.min, value)))


@dataclass(frozen=True, slots=True)
class DensityClusteringResult:
    """Flat point-to-cluster assignment from one clustering run."""

    labels: np.ndarray
    core_mask: np.ndarray
    epsilon: float
    min_pts: int

    @property
    def cluster_count(self) -> int:
        return len({int(label) for label in self.labels.tolist() if int(label) != NOISE_LABEL})

    @property
    def noise_count(self) -> int:
        return int(np.count_nonzero(self.labels == NOISE_LABEL))

    def members(self) -> dict[int, list[int]]:
        """Map each cluster id to its point indexes, in point order."""

        grouped: dict[int, list[int]] = {}
        for index, label in enumerate(self.labels.tolist()):
            if int(label) == NOISE_LABEL:
                continue
            grouped.setdefault(int(label), []).append(index)
        return dict(sorted(grouped.items()))


def cosine_distance(a: np.ndarray, b: np.ndarray) -> float:
    """Return `1 - cosine similarity`; a zero vector is at distance 1 from everything."""

    left = np.asarray(a, dtype=float)
    right = np.asarray(b, dtype=float)
    norm = float(np.linalg.norm(left) * np.linalg.norm(right))
    if norm == 0.0:
        return 1.0
    similarity = float(np.dot(left, right)) / norm
    return float(min(2.0, max(0.0, 1.0 - similarity)))


def _as_points(points: np.ndarray | Sequence[Sequence[float]]) -> np.ndarray:
    array = np.asarray(points, dtype=float)
    if array.size == 0:
        return array.reshape(0, 0)
    if array.ndim == 1:
        array = array.reshape(-1, 1)
    if array.ndim != 2:
        raise ClusteringError(f"Points must be 2D, got ndim={array.ndim}.")
    return array


def _validate_min_pts(min_pts: int) -> None:
    if min_pts <= 0:
        raise ClusteringError(f"min_pts must be positive, got {min_pts}.")


def _require_distance(distance: DistanceFunction | None) -> DistanceFunction:
    if distance is None:
        raise ClusteringError("A distance function is required for clustering.")
    return distance


def pairwise_distances(
    points: np.ndarray,
    distance: DistanceFunction = cosine_distance,
) -> np.ndarray:
    """Compute the symmetric distance matrix with a zero diagonal."""

    distance = _require_distance(distance)
    array = _as_points(points)
    count = array.shape[0]
    if count == 0:
        return np.zeros((0, 0), dtype=float)

    if distance is cosine_distance:
        matrix = np.clip(cosine_distances(array), 0.0, 2.0)
    else:
        matrix = np.zeros((count, count), dtype=float)
        for i in range(count):
            for j in range(i + 1, count):
                value = float(distance(array[i], array[j]))
                matrix[i, j] = value
                matrix[j, i] = value
    np.fill_diagonal(matrix, 0.0)
    return matrix


def k_distances(matrix: np.ndarray, k: int) -> np.ndarray:
    """Distance from each point to its k-th nearest other point.

    When fewer than k other points exist, the farthest available one is used.
    """

    _validate_min_pts(k)
    count = matrix.shape[0]
    if count <= 1:
        return np.zeros(count, dtype=float)

    neighbor_rank = min(k, count - 1)
    values = np.empty(count, dtype=float)
    for index in range(count):
        others = np.delete(matrix[index], index)
        values[index] = np.partition(others, neighbor_rank - 1)[neighbor_rank - 1]
    return values


def find_knee(curve: np.ndarray) -> tuple[int, float]:
    """Locate the knee of an ascending curve by maximum perpendicular distance.

    The x axis is normalized to [0, 1] and the chord joins the first and last
    points. Returns the index of the interior point farthest from the chord and
    that distance; curves with fewer than three points have no interior and
    return `(0, 0.0)`.
    """

    count = curve.shape[0]
    if count < 3:
        return 0, 0.0

    xs = np.linspace(0.0, 1.0, count)
    x1, y1 = 0.0, float(curve[0])
    x2, y2 = 1.0, float(curve[-1])
    dx = x2 - x1
    dy = y2 - y1
    chord_length = float(np.hypot(dx, dy))
    distances = np.abs(dy * xs - dx * curve + x2 * y1 - y2 * x1) / chord_length

    interior = distances[1:-1]
    knee_index = int(np.argmax(interior)) + 1
    return knee_index, float(distances[knee_index])


def tune_epsilon(
    points: np.ndarray | Sequence[Sequence[float]],
    min_pts: int,
    distance: DistanceFunction = cosine_distance,
    *,
    bounds: EpsilonBounds | None = None,
) -> float:
    """Select the DBSCAN radius from the knee of the sorted k-distance curve.

    The result is always inside `bounds`. A single point yields `bounds.min`,
    two points yield their distance, identical points yield `bounds.min`, and
    a curve without a knee yields DEFAULT_EPSILON.
    """

    _validate_min_pts(min_pts)
    distance = _require_distance(distance)
    resolved_bounds = bounds or EpsilonBounds()
    array = _as_points(points)
    count = array.shape[0]

    if count <= 1:
        return resolved_bounds.min
    if count == 2:
        return resolved_bounds.clamp(float(distance(array[0], array[1])))

    matrix = pairwise_distances(array, distance)
    curve = np.sort(k_distances(matrix, min_pts))
    if float(curve[-1]) <= ZERO_DISTANCE_TOLERANCE:
        return resolved_bounds.min

    knee_index, knee_distance = find_knee(curve)
    if knee_distance < KNEE_FLATNESS_THRESHOLD:
        return resolved_bounds.clamp(DEFAULT_EPSILON)
    return resolved_bounds.clamp(float(curve[knee_index]))


def dbscan(
    points: np.ndarray | Sequence[Sequence[float]],
    epsilon: float,
    min_pts: int,
    distance: DistanceFunction = cosine_distance,
) -> DensityClusteringResult:
    """Partition points into dense clusters plus noise.

    A point with at least `min_pts` points (itself included) within `epsilon`
    is a core point. Cluster ids are assigned in order of the lowest-index
    core point of each cluster, so results are reproducible for a fixed
    point order.
    """

    _validate_min_pts(min_pts)
    if epsilon <= 0:
        raise ClusteringError(f"epsilon must be positive, got {epsilon}.")

    array = _as_points(points)
    count = array.shape[0]
    if count == 0:
        return DensityClusteringResult(
            labels=np.zeros(0, dtype=int),
            core_mask=np.zeros(0, dtype=bool),
            epsilon=float(epsilon),
            min_pts=min_pts,
        )

    matrix = pairwise_distances(array, distance)
    model = DBSCAN(eps=float(epsilon), min_samples=min_pts, metric="precomputed")
    labels = model.fit_predict(matrix).astype(int)
    core_mask = np.zeros(count, dtype=bool)
    core_mask[model.core_sample_indices_] = True
    return DensityClusteringResult(
        labels=labels,
        core_mask=core_mask,
        epsilon=float(epsilon),
        min_pts=min_pts,
    )


def cluster_points(
    points: np.ndarray | Sequence[Sequence[float]],
    min_pts: int,
    distance: DistanceFunction = cosine_distance,
    *,
    bounds: EpsilonBounds | None = None,
) -> DensityClusteringResult:
    """Tune epsilon for the point set, then run DBSCAN with it."""

    epsilon = tune_epsilon(points, min_pts, distance, bounds=bounds)
    return dbscan(points, epsilon, min_pts, distance)
