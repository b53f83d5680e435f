import unittest

import numpy as np
from sklearn.datasets import make_blobs

from src.clustering.dbscan_clustering import labels_array, run_dbscan, to_point_mappings
from src.clustering.errors import InputValidationError
from src.clustering.parameter_sweep import parameter_sweep, sweep_generator


class TestParameterSweep(unittest.TestCase):
    def setUp(self):
        self.X, _ = make_blobs(n_samples=120, centers=[[0, 0], [5, 5], [10, 0]],
                               cluster_std=0.5, random_state=42)
        self.grid = [(0.2, 5), (0.5, 5), (1.0, 5), (0.5, 10)]

    def test_results_follow_grid_order(self):
        results = parameter_sweep(self.X, self.grid, max_workers=1)
        self.assertEqual([(r.eps, r.min_pts) for r in results], self.grid)

    def test_sequential_matches_direct_runs(self):
        points = to_point_mappings(self.X)
        results = parameter_sweep(self.X, self.grid, max_workers=1)
        for result in results:
            direct = labels_array(run_dbscan(points, result.eps, result.min_pts))
            np.testing.assert_array_equal(result.labels, direct)
            self.assertEqual(result.n_clusters, int(direct.max()) if direct.max() > 0 else 0)
            self.assertEqual(result.n_noise, int(np.sum(direct == -1)))
            self.assertGreaterEqual(result.duration, 0.0)

    def test_parallel_matches_sequential(self):
        sequential = parameter_sweep(self.X, self.grid, max_workers=1)
        parallel = parameter_sweep(self.X, self.grid, max_workers=2)
        for seq, par in zip(sequential, parallel):
            self.assertEqual((seq.eps, seq.min_pts), (par.eps, par.min_pts))
            self.assertEqual(seq.n_clusters, par.n_clusters)
            np.testing.assert_array_equal(seq.labels, par.labels)

    def test_noise_shrinks_with_eps(self):
        results = parameter_sweep(self.X, [(0.1, 5), (0.3, 5), (0.9, 5)], max_workers=1)
        noise = [r.n_noise for r in results]
        self.assertEqual(noise, sorted(noise, reverse=True))

    def test_invalid_configuration_fails_before_running(self):
        with self.assertRaises(InputValidationError):
            parameter_sweep(self.X, [(0.5, 5), (-1.0, 5)], max_workers=1)

    def test_fractional_min_pts_is_rejected(self):
        with self.assertRaises(InputValidationError):
            parameter_sweep([[0, 0], [0, 1]], [(1.5, 2.9)], max_workers=1)

    def test_string_parameters_are_rejected(self):
        with self.assertRaises(InputValidationError):
            parameter_sweep(self.X, [("0.5", 5)], max_workers=1)

    def test_integral_float_min_pts_is_accepted(self):
        results = parameter_sweep([[0, 0], [0, 1]], [(1.5, 2.0)], max_workers=1)
        self.assertEqual(results[0].min_pts, 2)
        self.assertIsInstance(results[0].min_pts, int)
        self.assertEqual(results[0].n_clusters, 1)

    def test_empty_grid(self):
        self.assertEqual(parameter_sweep(self.X, [], max_workers=1), [])
        self.assertEqual(list(sweep_generator(self.X, [])), [])


if __name__ == '__main__':
    unittest.main()
