import numpy as np
import pandas as pd
import pytest

from src.clustering.errors import ClusteringError, InputValidationError
from src.clustering.kmeans import (
    KMeansState,
    find_optimal_k_elbow,
    kmeans_clustering,
)


class TestClustering:
    @pytest.fixture
    def sample_data(self):
        rng = np.random.default_rng(7)
        # Create 3 distinct clusters
        c1 = rng.normal(loc=[0, 0], scale=0.1, size=(10, 2))
        c2 = rng.normal(loc=[5, 5], scale=0.1, size=(10, 2))
        c3 = rng.normal(loc=[10, 0], scale=0.1, size=(10, 2))
        return np.vstack([c1, c2, c3])

    def test_kmeans_clustering_fixed_k(self, sample_data):
        clusters, k, labels = kmeans_clustering(sample_data, k=3)
        assert k == 3
        assert len(clusters) == 3
        assert len(labels) == 30
        # each blob ends up in its own cluster
        assert sorted(len(c) for c in clusters) == [10, 10, 10]
        assert len(set(labels[:10])) == 1
        assert len(set(labels[10:20])) == 1
        assert len(set(labels[20:])) == 1

    def test_kmeans_clustering_elbow(self, sample_data):
        # Elbow should find 3
        clusters, k, labels = kmeans_clustering(
            sample_data, k=None, method='elbow')
        assert k == 3
        assert len(clusters) == 3

    def test_kmeans_clustering_silhouette(self, sample_data):
        # Silhouette should find 3
        clusters, k, labels = kmeans_clustering(
            sample_data, k=None, method='silhouette')
        assert k == 3
        assert len(clusters) == 3

    def test_kmeans_unknown_method(self, sample_data):
        with pytest.raises(InputValidationError):
            kmeans_clustering(sample_data, k=None, method='gap')

    def test_kmeans_dataframe(self, sample_data):
        df = pd.DataFrame(sample_data, columns=['latitude', 'longitude'])
        clusters, k, labels = kmeans_clustering(df, k=3)
        assert k == 3
        assert len(labels) == 30

    def test_kmeans_empty(self):
        clusters, k, labels = kmeans_clustering(np.array([]))
        assert k == 0
        assert clusters == []

    def test_find_optimal_k_elbow_small_data(self):
        # Not enough data for elbow
        data = np.array([[0, 0], [1, 1]])
        k = find_optimal_k_elbow(data, k_range=range(2, 3))
        assert k == 2


class TestKMeansState:
    @pytest.fixture
    def points(self):
        return [{'x': 0.0, 'y': 0.0}, {'x': 0.0, 'y': 1.0},
                {'x': 1000.0, 'y': 0.0}, {'x': 1000.0, 'y': 1.0}]

    def test_step_requires_initialize(self):
        with pytest.raises(ClusteringError):
            KMeansState().step()

    def test_initialize_validation(self, points):
        with pytest.raises(InputValidationError):
            KMeansState().initialize([], n_means=1)
        with pytest.raises(InputValidationError):
            KMeansState().initialize(points, n_means=5)
        with pytest.raises(InputValidationError):
            KMeansState().initialize(points, n_means=0)

    def test_not_converged_before_first_step(self, points):
        state = KMeansState().initialize(points, n_means=2, random_state=0)
        assert not state.is_converged()
        assert state.get_round() == 0
        assert len(state.get_means()) == 2

    def test_run_converges(self, points):
        state = KMeansState().initialize(points, n_means=2, random_state=0).run()
        assert state.is_converged()
        clusters = sorted(sorted(c) for c in state.get_clusters())
        assert clusters == [[0, 1], [2, 3]]
        means = sorted((m['x'], m['y']) for m in state.get_means())
        assert means == [(0.0, 0.5), (1000.0, 0.5)]
        assert state.inertia() == pytest.approx(1.0)

    def test_step_by_step(self, points):
        state = KMeansState().initialize(points, n_means=2, random_state=3)
        state.step()
        assert state.get_round() == 1
        rounds = 1
        while not state.is_converged():
            state.step()
            rounds += 1
        assert state.get_round() == rounds
        # a converged state stays put
        means = state.get_means()
        state.step()
        assert state.get_means() == means
        assert state.is_converged()

    def test_random_init(self, points):
        state = KMeansState().initialize(points, n_means=2, use_kmeans_pp=False,
                                         random_state=1).run()
        assert state.is_converged()
        assert sum(len(c) for c in state.get_clusters()) == 4

    def test_deterministic_with_seed(self, points):
        a = KMeansState().initialize(points, n_means=2, random_state=11).run()
        b = KMeansState().initialize(points, n_means=2, random_state=11).run()
        assert a.get_means() == b.get_means()
        np.testing.assert_array_equal(a.labels(), b.labels())

    def test_empty_cluster_keeps_mean(self, points):
        state = KMeansState().initialize(points, n_means=2, random_state=0)
        state.means = [{'x': 500.0, 'y': 0.5}, {'x': -1000.0, 'y': -1000.0}]
        state.step()
        assert state.get_clusters()[1] == []
        assert state.get_means()[1] == {'x': -1000.0, 'y': -1000.0}
        assert state.get_means()[0] == {'x': 500.0, 'y': 0.5}

    def test_identical_points(self):
        points = [{'x': 1.0}] * 4
        state = KMeansState().initialize(points, n_means=2, random_state=0).run()
        assert state.is_converged()
        assert state.inertia() == 0.0

    def test_iteration_limit(self, points):
        state = KMeansState().initialize(points, n_means=2, iteration_limit=1,
                                         random_state=0)
        state.run()
        assert state.get_round() == 1

    def test_accessors_return_copies(self, points):
        state = KMeansState().initialize(points, n_means=2, random_state=0).run()
        state.get_means()[0]['x'] = -1.0
        state.get_data()[0]['x'] = -1.0
        state.get_clusters()[0].append(99)
        assert all(m['x'] != -1.0 for m in state.get_means())
        assert points[0]['x'] == 0.0
        assert 99 not in state.get_clusters()[0]
