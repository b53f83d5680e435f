import time

import numpy as np
import pytest

from src.clustering.dbscan_clustering import run_dbscan, to_point_mappings


def generate_random_points(n_points, seed=0):
    """Random points in a 100 x 100 square"""
    rng = np.random.default_rng(seed)
    return to_point_mappings(rng.uniform(0, 100, size=(n_points, 2)))


@pytest.mark.benchmark
def test_dbscan_performance_medium_dataset():
    """
    The brute-force scan stays reasonable for a few hundred points
    """
    points = generate_random_points(500)

    start_time = time.time()
    records = run_dbscan(points, eps=5.0, min_pts=4)
    execution_time = time.time() - start_time

    print(f"\nExecution time for {len(points)} points: {execution_time:.4f} seconds")

    assert len(records) == 500
    assert records[0].cache.computed_pairs == 500 * 499 // 2
    # wide margin for slow CI machines
    assert execution_time < 20.0, f"DBSCAN is too slow: {execution_time}s"
