from collections import deque
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple, Union
import math
import numbers
import time

import numpy as np
from pydantic import BaseModel, Field, ValidationError, field_validator

from .distance import Metric, Point, euclidean_distance, resolve_metric
from .errors import ClusteringTimeoutError, InputValidationError
from ..utils.logging_setup import get_logger

logger = get_logger('dbscan_clustering')

# Label values; cluster ids are positive integers starting at 1
UNASSIGNED = 0
NOISE = -1


class NeighborCache:
    """
    Tri-state neighbour cache keyed by unordered index pairs.

    A pair is either unknown (never compared), within eps, or not within eps.
    Recording a pair stores the answer for both directions, so the distance
    between two points is computed at most once per run.
    """

    def __init__(self):
        self._pairs: Dict[Tuple[int, int], bool] = {}

    @staticmethod
    def _key(i: int, j: int) -> Tuple[int, int]:
        return (i, j) if i < j else (j, i)

    def status(self, i: int, j: int) -> Optional[bool]:
        """
        True / False when the pair has been compared, None when unknown.
        A point is always its own neighbour.
        """
        if i == j:
            return True
        return self._pairs.get(self._key(i, j))

    def record(self, i: int, j: int, within: bool) -> None:
        if i == j:
            return
        self._pairs[self._key(i, j)] = within

    @property
    def computed_pairs(self) -> int:
        return len(self._pairs)


@dataclass
class PointRecord:
    """Per-point metadata of a DBSCAN run."""
    index: int
    raw: Any
    visited: bool = False
    label: int = UNASSIGNED
    cache: Optional[NeighborCache] = field(
        default=None, repr=False, compare=False)

    def neighbor_status(self, other_index: int) -> Optional[bool]:
        if self.cache is None:
            return True if other_index == self.index else None
        return self.cache.status(self.index, other_index)

    @property
    def is_noise(self) -> bool:
        return self.label == NOISE

    @property
    def cluster_id(self) -> Optional[int]:
        return self.label if self.label > 0 else None


@dataclass
class ClusteringSummary:
    n_clusters: int
    n_noise: int
    cluster_sizes: Dict[int, int]


class DBSCANParameters(BaseModel):
    """Validated DBSCAN parameters"""
    eps: float = Field(gt=0, allow_inf_nan=False)
    min_pts: int = Field(ge=1)

    @field_validator('eps', 'min_pts', mode='before')
    @classmethod
    def reject_text_and_bool(cls, value):
        # lax mode would otherwise coerce "1.5" or True
        if isinstance(value, (str, bytes, bool)):
            raise ValueError(f"must be a number, got {value!r}")
        return value


def validate_inputs(points: Sequence[Point],
                    eps: float,
                    min_pts: int) -> DBSCANParameters:
    """
    Checks parameters and point schema before a run.

    Every point must be a mapping with the same dimension names as the first
    one, and every value a finite real number. An empty sequence is valid.

    Raises:
        InputValidationError: describing the first violation found
    """
    try:
        params = DBSCANParameters(eps=eps, min_pts=min_pts)
    except ValidationError as e:
        logger.error(f"Invalid DBSCAN parameters: eps={eps!r}, min_pts={min_pts!r}")
        raise InputValidationError(f"Invalid DBSCAN parameters: {str(e)}")

    if len(points) == 0:
        return params

    first = points[0]
    if not isinstance(first, Mapping):
        raise InputValidationError(
            f"Point 0 must be a mapping of dimension name to value, got {type(first).__name__}")
    dimensions = set(first.keys())
    if not dimensions:
        raise InputValidationError("Point 0 has no dimensions")

    for i, point in enumerate(points):
        if not isinstance(point, Mapping):
            raise InputValidationError(
                f"Point {i} must be a mapping of dimension name to value, got {type(point).__name__}")
        if set(point.keys()) != dimensions:
            raise InputValidationError(
                f"Point {i} has dimensions {sorted(map(str, point.keys()))}, "
                f"expected {sorted(map(str, dimensions))}")
        for name, value in point.items():
            if isinstance(value, bool) or not isinstance(value, numbers.Real):
                raise InputValidationError(
                    f"Point {i} dimension '{name}' is not numeric: {value!r}")
            if not math.isfinite(value):
                raise InputValidationError(
                    f"Point {i} dimension '{name}' is not finite: {value!r}")

    return params


def _deadline_from(budget: Optional[float]) -> Optional[float]:
    if budget is None:
        return None
    return time.monotonic() + budget


def _check_deadline(expires_at: Optional[float]) -> None:
    if expires_at is not None and time.monotonic() > expires_at:
        raise ClusteringTimeoutError("DBSCAN run exceeded its time budget")


def region_query(table: List[PointRecord],
                 cache: NeighborCache,
                 index: int,
                 eps: float,
                 metric: Metric = euclidean_distance) -> List[int]:
    """
    Indices of all points strictly closer than eps to table[index],
    including index itself, in ascending order.
    """
    target = table[index]
    neighbors = []
    for other in table:
        known = cache.status(index, other.index)
        if known is False:
            continue
        if known:
            neighbors.append(other.index)
            continue

        within = metric(target.raw, other.raw) < eps
        cache.record(index, other.index, within)
        if within:
            neighbors.append(other.index)
    return neighbors


def expand_cluster(table: List[PointRecord],
                   cache: NeighborCache,
                   cluster_id: int,
                   seeds: Sequence[int],
                   eps: float,
                   min_pts: int,
                   metric: Metric = euclidean_distance,
                   expires_at: Optional[float] = None) -> int:
    """
    Labels every point density-reachable from a core point's neighbourhood.

    Works on an explicit FIFO frontier; an index enters the frontier at most
    once. Points previously labelled noise are taken in as border points.
    Returns the number of points labelled with cluster_id.
    """
    frontier = deque(seeds)
    enqueued = set(seeds)
    labelled = 0

    while frontier:
        _check_deadline(expires_at)
        idx = frontier.popleft()
        record = table[idx]

        if record.label in (UNASSIGNED, NOISE):
            record.label = cluster_id
            labelled += 1

        if record.visited:
            continue
        record.visited = True

        neighbors = region_query(table, cache, idx, eps, metric)
        if len(neighbors) >= min_pts:
            for n in neighbors:
                if n not in enqueued:
                    enqueued.add(n)
                    frontier.append(n)

    return labelled


def run_dbscan(points: Sequence[Point],
               eps: float,
               min_pts: int,
               metric: Union[str, Metric] = 'euclidean',
               deadline: Optional[float] = None,
               validate: bool = True) -> List[PointRecord]:
    """
    Density-based clustering of `points`.

    Args:
        points: sequence of mappings sharing the same numeric dimensions.
        eps: neighbourhood radius (strict: distance < eps).
        min_pts: minimum neighbourhood size, the point itself included,
            for a point to be a core point.
        metric: registered metric name or a distance callable.
        deadline: optional time budget in seconds.
        validate: check inputs before running.

    Returns:
        One PointRecord per input point, in input order. Labels are NOISE or
        cluster ids numbered from 1 in discovery order.

    Raises:
        InputValidationError: malformed points or parameters
        ClusteringTimeoutError: the deadline was exceeded
    """
    points = list(points)
    if validate:
        params = validate_inputs(points, eps, min_pts)
        eps, min_pts = params.eps, params.min_pts
    distance = resolve_metric(metric)
    expires_at = _deadline_from(deadline)

    cache = NeighborCache()
    table = [PointRecord(index=i, raw=p, cache=cache)
             for i, p in enumerate(points)]

    logger.info(f"Running DBSCAN on {len(table)} points (eps={eps}, min_pts={min_pts})")
    start_time = time.time()

    cluster_id = 0
    for record in table:
        if record.visited:
            continue
        _check_deadline(expires_at)

        record.visited = True
        neighbors = region_query(table, cache, record.index, eps, distance)

        if len(neighbors) < min_pts:
            # may still become a border point of a later cluster
            record.label = NOISE
        else:
            cluster_id += 1
            size = expand_cluster(table, cache, cluster_id, neighbors,
                                  eps, min_pts, distance, expires_at)
            logger.debug(f"Cluster {cluster_id} seeded at point {record.index} ({size} points)")

    summary = summarize_labels(table)
    logger.info(
        f"DBSCAN complete in {time.time() - start_time:.3f}s: "
        f"{summary.n_clusters} clusters, {summary.n_noise} noise points, "
        f"{cache.computed_pairs} distances computed")
    return table


def summarize_labels(records: Sequence[PointRecord]) -> ClusteringSummary:
    sizes: Dict[int, int] = {}
    n_noise = 0
    for record in records:
        if record.label == NOISE:
            n_noise += 1
        elif record.label > 0:
            sizes[record.label] = sizes.get(record.label, 0) + 1
    return ClusteringSummary(n_clusters=len(sizes), n_noise=n_noise,
                             cluster_sizes=dict(sorted(sizes.items())))


def labels_array(records: Sequence[PointRecord]) -> np.ndarray:
    return np.array([r.label for r in records], dtype=int)


def to_point_mappings(dataset: Any,
                      columns: Optional[Sequence[str]] = None) -> List[Point]:
    """
    Converts a DataFrame, numpy array, list of sequences or list of mappings
    into a list of mappings of dimension name to value.

    DataFrames use `columns`, else 'latitude'/'longitude' when present, else
    every numeric column. Arrays get dimension names x0, x1, ... unless
    `columns` is given.
    """
    if hasattr(dataset, 'iloc'):  # pandas DataFrame
        if columns is None:
            if {'latitude', 'longitude'} <= set(dataset.columns):
                columns = ['latitude', 'longitude']
            else:
                columns = list(dataset.select_dtypes(include='number').columns)
        return dataset[list(columns)].to_dict('records')

    items = list(dataset)
    if not items:
        return []
    if all(isinstance(p, Mapping) for p in items):
        return items

    points_array = np.asarray(items, dtype=float)
    if points_array.ndim == 1:
        points_array = points_array.reshape(-1, 1)
    if columns is None:
        columns = [f"x{d}" for d in range(points_array.shape[1])]
    elif len(columns) != points_array.shape[1]:
        raise InputValidationError(
            f"Got {len(columns)} column names for {points_array.shape[1]} dimensions")
    return [dict(zip(columns, row)) for row in points_array.tolist()]


def dbscan_clustering(dataset: Any,
                      eps: float = 0.3,
                      min_samples: int = 5,
                      metric: Union[str, Metric] = 'euclidean',
                      deadline: Optional[float] = None,
                      columns: Optional[Sequence[str]] = None
                      ) -> Tuple[List[List[List[float]]], int, np.ndarray]:
    """
    Performs DBSCAN clustering on the dataset.

    Args:
        dataset: pandas DataFrame, numpy array, list of coordinates or list of mappings.
        eps: The maximum distance (exclusive) between two points for one to be in the neighborhood of the other.
        min_samples: The number of points in a neighborhood, the point itself included, for it to be a core point.
        metric: 'euclidean', 'haversine' (km, needs latitude/longitude) or a callable.
        deadline: Optional time budget in seconds.
        columns: Dimension names to use (DataFrame columns or names for array columns).

    Returns:
        clusters: A list of clusters, where each cluster is a list of points. Noise points are excluded.
        n_clusters: The number of clusters found (excluding noise).
        labels: Array of cluster labels (ids from 1, -1 is noise).
    """
    points = to_point_mappings(dataset, columns)

    # Handle empty dataset
    if not points:
        return [], 0, np.array([])

    records = run_dbscan(points, eps, min_samples, metric=metric, deadline=deadline)
    labels = labels_array(records)
    n_clusters = int(labels.max()) if np.any(labels > 0) else 0

    clusters = []
    for cluster_id in range(1, n_clusters + 1):
        members = np.flatnonzero(labels == cluster_id)
        clusters.append([[float(v) for v in points[i].values()] for i in members])

    return clusters, n_clusters, labels


if __name__ == "__main__":
    # Example usage for testing
    np.random.seed(42)
    sample_points = np.vstack([
        np.random.normal(loc=[0, 0], scale=0.2, size=(50, 2)),
        np.random.normal(loc=[3, 3], scale=0.2, size=(50, 2)),
        np.random.uniform(-5, 8, size=(10, 2)),
    ])

    clusters, n_clusters, labels = dbscan_clustering(
        sample_points, eps=0.5, min_samples=4)
    print(f"DBSCAN complete. Found {n_clusters} clusters.")
    for i, c in enumerate(clusters, 1):
        print(f"Cluster {i}: {len(c)} points")
    print(f"Noise: {int(np.sum(labels == NOISE))} points")
