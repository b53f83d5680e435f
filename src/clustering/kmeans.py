# service de clustering par centroïdes (k-means, initialisation k-means++)
# l'état de l'algorithme appartient à l'appelant, qui peut avancer pas à pas
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

import numpy as np
try:
    from sklearn.metrics import silhouette_score
except ImportError:
    silhouette_score = None

from .dbscan_clustering import to_point_mappings
from .distance import Metric, Point, resolve_metric
from .errors import ClusteringError, InputValidationError
from ..utils.logging_setup import get_logger

logger = get_logger('kmeans')


class KMeansState:
    """
    Caller-owned k-means state.

    Call initialize() with the data, then step() as many times as needed
    (for instance to visualise each iteration), or run() to iterate until
    convergence or the iteration limit.
    """

    def __init__(self, metric: Union[str, Metric] = 'euclidean'):
        self._distance = resolve_metric(metric)
        self._rng: Optional[np.random.Generator] = None
        self.data: List[Point] = []
        self.dimensions: List[str] = []
        self.means: List[Dict[str, float]] = []
        self.clusters: List[List[int]] = []
        self.means_changed = False
        self.round = 0
        self.iteration_limit = 100

    def initialize(self,
                   data: Sequence[Point],
                   n_means: int = 3,
                   use_kmeans_pp: bool = True,
                   iteration_limit: int = 100,
                   random_state: Any = None) -> 'KMeansState':
        """
        Stores the data and places the starting means.

        Raises:
            InputValidationError: empty data or n_means outside 1..len(data)
        """
        data = list(data)
        if not data:
            raise InputValidationError("k-means needs at least one point")
        if n_means < 1 or n_means > len(data):
            raise InputValidationError(
                f"n_means must be between 1 and {len(data)}, got {n_means}")
        if iteration_limit < 1:
            raise InputValidationError(
                f"iteration_limit must be positive, got {iteration_limit}")

        self._rng = np.random.default_rng(random_state)
        self.data = data
        self.dimensions = list(data[0].keys())
        self.clusters = []
        self.round = 0
        self.iteration_limit = iteration_limit
        # not converged until a step has been made
        self.means_changed = True

        if use_kmeans_pp:
            self.means = self._init_means_pp(n_means)
        else:
            self.means = self._init_means(n_means)
        return self

    def _init_means(self, n_means: int) -> List[Dict[str, float]]:
        # random distinct points; fast but can converge slowly
        chosen = self._rng.choice(len(self.data), size=n_means, replace=False)
        return [dict(self.data[i]) for i in chosen]

    def _init_means_pp(self, n_means: int) -> List[Dict[str, float]]:
        # k-means++: each new mean is drawn with probability proportional to
        # the squared distance to the nearest mean already chosen
        first = int(self._rng.integers(0, len(self.data)))
        means = [dict(self.data[first])]

        while len(means) < n_means:
            weights = np.array([
                min(self._distance(point, mean) for mean in means) ** 2
                for point in self.data
            ])
            total = weights.sum()
            if total == 0:
                idx = int(self._rng.integers(0, len(self.data)))
            else:
                idx = int(self._rng.choice(len(self.data), p=weights / total))
            means.append(dict(self.data[idx]))
        return means

    def _assign_clusters(self) -> List[List[int]]:
        clusters: List[List[int]] = [[] for _ in self.means]
        for index, point in enumerate(self.data):
            distances = [self._distance(point, mean) for mean in self.means]
            clusters[int(np.argmin(distances))].append(index)
        return clusters

    def _update_means(self) -> List[Dict[str, float]]:
        new_means = []
        for old_mean, cluster in zip(self.means, self.clusters):
            if not cluster:
                # empty cluster keeps its mean
                new_means.append(dict(old_mean))
                continue
            values = np.array([[self.data[i][d] for d in self.dimensions]
                               for i in cluster], dtype=float)
            centroid = values.mean(axis=0)
            new_means.append(dict(zip(self.dimensions, centroid.tolist())))

        self.means_changed = any(
            new_mean[d] != old_mean[d]
            for new_mean, old_mean in zip(new_means, self.means)
            for d in self.dimensions
        )
        return new_means

    def step(self) -> None:
        """Assigns every point to its nearest mean, then moves the means."""
        if self._rng is None:
            raise ClusteringError("KMeansState.initialize() must be called before step()")
        self.clusters = self._assign_clusters()
        self.means = self._update_means()
        self.round += 1

    def is_converged(self) -> bool:
        return self.round > 0 and not self.means_changed

    def run(self) -> 'KMeansState':
        while not self.is_converged() and self.round < self.iteration_limit:
            self.step()
        if not self.is_converged():
            logger.warning(
                f"k-means stopped at iteration limit ({self.iteration_limit}) before converging")
        return self

    def get_data(self) -> List[Dict[str, float]]:
        return [dict(d) for d in self.data]

    def get_clusters(self) -> List[List[int]]:
        return [list(c) for c in self.clusters]

    def get_means(self) -> List[Dict[str, float]]:
        return [dict(m) for m in self.means]

    def get_round(self) -> int:
        return self.round

    def labels(self) -> np.ndarray:
        labels = np.full(len(self.data), -1, dtype=int)
        for cluster_index, cluster in enumerate(self.clusters):
            labels[cluster] = cluster_index
        return labels

    def inertia(self) -> float:
        """Sum of squared distances of points to their mean."""
        return float(sum(
            self._distance(self.data[i], mean) ** 2
            for mean, cluster in zip(self.means, self.clusters)
            for i in cluster
        ))


def _fit_best(points: List[Point],
              k: int,
              n_init: int = 10,
              random_state: Optional[int] = 42) -> KMeansState:
    """Runs k-means n_init times and keeps the lowest inertia."""
    seeds = np.random.SeedSequence(random_state).spawn(n_init)
    best = None
    for seed in seeds:
        state = KMeansState().initialize(
            points, n_means=k, random_state=seed)
        state.run()
        if best is None or state.inertia() < best.inertia():
            best = state
    return best


def _as_array(points: List[Point]) -> np.ndarray:
    dimensions = list(points[0].keys())
    return np.array([[p[d] for d in dimensions] for p in points], dtype=float)


def find_optimal_k_elbow(
    dataset: Any,
    k_range: range = range(
        2,
        11),
    random_state: Optional[int] = 42) -> int:
    """
        Trouve le k optimal en utilisant la méthode du coude (Elbow method)
    """
    points = to_point_mappings(dataset)
    inertias = []
    k_values = list(k_range)

    for k in k_values:
        inertias.append(_fit_best(points, k, random_state=random_state).inertia())

    # Calcul du coude en utilisant la méthode de la dérivée seconde
    if len(inertias) >= 3:
        differences = np.diff(inertias)
        second_differences = np.diff(differences)
        elbow_index = np.argmax(np.abs(second_differences)) + 1
        return k_values[elbow_index]

    return k_values[0]


def find_optimal_k_silhouette(
    dataset: Any,
    k_range: range = range(
        2,
        11),
    random_state: Optional[int] = 42) -> int:
    """
        Trouve le k optimal en utilisant le score de silhouette
    """
    if silhouette_score is None:
        raise ImportError("scikit-learn is required for the silhouette score.")

    points = to_point_mappings(dataset)
    points_array = _as_array(points)
    silhouette_scores = []
    k_values = list(k_range)

    for k in k_values:
        labels = _fit_best(points, k, random_state=random_state).labels()
        if len(np.unique(labels)) < 2:
            silhouette_scores.append(-1.0)
            continue
        silhouette_scores.append(silhouette_score(points_array, labels))

    # Le k optimal est celui qui maximise le score de silhouette
    optimal_index = np.argmax(silhouette_scores)
    return k_values[optimal_index]


def kmeans_clustering(dataset: Any, k: Optional[int] = None,
                      method: str = "elbow",
                      random_state: Optional[int] = 42) -> Tuple[List, int, np.ndarray]:
    """
        Fonction principale de clustering avec k-means
        peut trouver le k optimal avec la méthode du coude ou du score de silhouette si k n'est pas fourni
    """
    points = to_point_mappings(dataset)
    if not points:
        return [], 0, np.array([])

    # trouver k optimal si nécessaire
    if k is None:
        k_range = range(2, min(11, len(points)))
        if len(k_range) == 0:
            k = 1
        elif method == 'elbow':
            k = find_optimal_k_elbow(points, k_range=k_range, random_state=random_state)
        elif method == 'silhouette':
            k = find_optimal_k_silhouette(points, k_range=k_range, random_state=random_state)
        else:
            raise InputValidationError(f"Unknown k selection method: {method}")

    state = _fit_best(points, k, random_state=random_state)
    labels = state.labels()
    logger.info(f"k-means complete with k={k} after {state.get_round()} iterations")

    # Organisation des points par cluster
    points_array = _as_array(points)
    clusters: List[List[List[float]]] = [[] for _ in range(k)]
    for i, label in enumerate(labels):
        clusters[label].append(points_array[i].tolist())

    return clusters, k, labels
