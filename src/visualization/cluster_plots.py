from typing import Any, List, Optional, Sequence
import numpy as np
try:
    import matplotlib.pyplot as plt
except ImportError:
    plt = None
from scipy.spatial import ConvexHull
from scipy.spatial import QhullError
try:
    from sklearn.neighbors import NearestNeighbors
except ImportError:
    NearestNeighbors = None

from ..clustering.dbscan_clustering import NOISE, PointRecord, to_point_mappings
from ..utils.logging_setup import get_logger

logger = get_logger('cluster_plots')


def _as_array(dataset: Any) -> np.ndarray:
    points = to_point_mappings(dataset)
    if not points:
        return np.empty((0, 0))
    dimensions = list(points[0].keys())
    return np.array([[p[d] for d in dimensions] for p in points], dtype=float)


def k_distance_curve(dataset: Any, k: int) -> np.ndarray:
    """
    Sorted distances of every point to its k-th nearest neighbour.

    The point itself counts as the first neighbour (distance 0), so with
    k = min_pts the curve shows the smallest eps making each point a core
    point (up to the strict inequality). Returns an empty array when there
    are fewer than k points.
    """
    if NearestNeighbors is None:
        raise ImportError("scikit-learn is required for the k-distance curve.")

    points = _as_array(dataset)
    if len(points) < k:
        logger.warning(
            f"Not enough points ({len(points)}) to compute {k}-nearest neighbors.")
        return np.array([])

    neighbors = NearestNeighbors(n_neighbors=k).fit(points)
    distances, _ = neighbors.kneighbors(points)

    # column k-1 is the k-th neighbour since the point itself is column 0
    return np.sort(distances[:, k - 1], axis=0)


def suggest_eps(dataset: Any, k: int) -> Optional[float]:
    """
    eps at the knee of the k-distance curve (largest second difference),
    or None when the curve is too short.
    """
    return _knee(k_distance_curve(dataset, k))


def _knee(curve: np.ndarray) -> Optional[float]:
    if len(curve) < 3:
        return None
    second_differences = np.diff(curve, n=2)
    return float(curve[int(np.argmax(second_differences)) + 1])


def plot_k_distance(dataset: Any, k: int, show: bool = True):
    """
    k-distance graph stacked over its slope and curvature, with the
    suggested eps drawn as a horizontal line on the top panel.
    """
    if plt is None:
        raise ImportError("matplotlib is required for plotting.")

    sorted_distances = k_distance_curve(dataset, k)
    if len(sorted_distances) == 0:
        return None

    slope = np.gradient(sorted_distances)
    panels = [
        (sorted_distances, f"K-Distance Graph (k={k})", f"eps (distance to neighbour {k})", None),
        (slope, "Slope", "d eps / d rank", 'tab:orange'),
        (np.gradient(slope), "Curvature", "d2 eps / d rank2", 'tab:green'),
    ]

    fig, axes = plt.subplots(len(panels), 1, figsize=(10, 12), sharex=True)
    for ax, (series, panel_title, ylabel, color) in zip(axes, panels):
        ax.plot(series, color=color)
        ax.set_title(panel_title)
        ax.set_ylabel(ylabel)
        ax.grid(True)

    knee = _knee(sorted_distances)
    if knee is not None:
        axes[0].axhline(knee, linestyle=':', color='tab:red', label=f'suggested eps = {knee:.3g}')
        axes[0].legend()
    axes[-1].set_xlabel("Points ranked by k-distance")

    plt.tight_layout()
    if show:
        plt.show()
    return fig


def plot_clusters(records: Sequence[PointRecord],
                  dimensions: Optional[List[str]] = None,
                  title: str = 'DBSCAN clusters',
                  show: bool = True):
    """
    Scatter plot of a DBSCAN result: noise in grey, one colour per cluster,
    dashed convex hull around clusters with at least 3 distinct points.

    Args:
        records: output of run_dbscan
        dimensions: the two dimension names to plot (x, y); defaults to the
            first two dimensions of the points
    """
    if plt is None:
        raise ImportError("matplotlib is required for plotting.")

    fig, ax = plt.subplots(figsize=(8, 6))
    if not records:
        ax.set_title(title)
        return fig

    if dimensions is None:
        dimensions = list(records[0].raw.keys())[:2]
    if len(dimensions) != 2:
        raise ValueError(f"Need exactly two dimensions to plot, got {dimensions}")
    x_dim, y_dim = dimensions

    points = np.array([[r.raw[x_dim], r.raw[y_dim]] for r in records], dtype=float)
    labels = np.array([r.label for r in records])

    noise_mask = labels == NOISE
    if np.any(noise_mask):
        ax.scatter(points[noise_mask, 0], points[noise_mask, 1],
                   c='lightgray', s=10, label='Noise')

    for cluster_id in sorted(set(labels[labels > 0].tolist())):
        cluster_points = points[labels == cluster_id]
        ax.scatter(cluster_points[:, 0], cluster_points[:, 1],
                   s=15, label=f'Cluster {cluster_id}')

        unique_points = np.unique(cluster_points, axis=0)
        if len(unique_points) >= 3:
            try:
                # QJ: joggle inputs, robust against collinear points
                hull = ConvexHull(unique_points, qhull_options='QJ')
                hull_indices = np.append(hull.vertices, hull.vertices[0])
                ax.plot(unique_points[hull_indices, 0],
                        unique_points[hull_indices, 1], '--', alpha=0.5)
            except QhullError as e:
                logger.debug(f"Could not compute hull for cluster {cluster_id}: {e}")

    ax.set_title(title)
    ax.set_xlabel(x_dim)
    ax.set_ylabel(y_dim)
    handles, _ = ax.get_legend_handles_labels()
    if handles:
        ax.legend()
    ax.grid(True)

    plt.tight_layout()
    if show:
        plt.show()
    return fig
