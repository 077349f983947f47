"""Tests for k-means clustering over normalized metrics."""
import numpy as np
import pytest

from projects.intelligence.algorithms.clustering import (
    CLUSTER_FEATURES,
    describe_clusters,
    kmeans,
    label_cluster,
    min_max_normalize,
)


@pytest.fixture
def metric_matrix():
    rng = np.random.default_rng(7)
    low = rng.uniform(0, 10, size=(30, len(CLUSTER_FEATURES)))
    high = rng.uniform(90, 100, size=(30, len(CLUSTER_FEATURES)))
    return np.vstack([low, high])


class TestMinMaxNormalize:

    def test_columns_scaled_to_unit_interval(self, metric_matrix):
        normalized, mins, maxs = min_max_normalize(metric_matrix)
        assert normalized.min() == pytest.approx(0.0)
        assert normalized.max() == pytest.approx(1.0)
        assert mins.shape == (len(CLUSTER_FEATURES),)
        assert (maxs >= mins).all()

    def test_constant_column_becomes_zero(self):
        matrix = np.array([[5.0, 1.0], [5.0, 2.0], [5.0, 3.0]])
        normalized, _, _ = min_max_normalize(matrix)
        assert (normalized[:, 0] == 0).all()
        assert normalized[:, 1].tolist() == [0.0, 0.5, 1.0]


class TestKMeans:

    def test_centroids_stay_within_normalized_range(self, metric_matrix):
        normalized, _, _ = min_max_normalize(metric_matrix)
        result = kmeans(normalized, k=4, seed=3)

        assert result.centroids.shape == (4, len(CLUSTER_FEATURES))
        assert (result.centroids >= 0).all()
        assert (result.centroids <= 1).all()
        assert sum(result.cluster_sizes) == len(metric_matrix)

    def test_same_seed_is_reproducible(self, metric_matrix):
        normalized, _, _ = min_max_normalize(metric_matrix)
        first = kmeans(normalized, k=4, seed=42)
        second = kmeans(normalized, k=4, seed=42)

        np.testing.assert_array_equal(first.centroids, second.centroids)
        np.testing.assert_array_equal(first.assignments, second.assignments)
        assert first.seed == 42

    def test_separated_groups_never_share_a_cluster(self, metric_matrix):
        normalized, _, _ = min_max_normalize(metric_matrix)
        result = kmeans(normalized, k=2, seed=1)

        low_clusters = set(result.assignments[:30].tolist())
        high_clusters = set(result.assignments[30:].tolist())
        assert low_clusters.isdisjoint(high_clusters)
        assert result.converged

    def test_fewer_samples_than_clusters_raises(self):
        with pytest.raises(ValueError):
            kmeans(np.zeros((3, 2)), k=4)


class TestLabels:

    def test_label_by_mean_centroid_value(self):
        assert label_cluster(np.array([0.9, 0.8])) == "high performers"
        assert label_cluster(np.array([0.6, 0.6])) == "above average"
        assert label_cluster(np.array([0.4, 0.4])) == "below average"
        assert label_cluster(np.array([0.1, 0.2])) == "low performers"

    def test_describe_clusters_is_one_based(self):
        labels = describe_clusters(np.array([[0.9], [0.1]]))
        assert labels == ["Cluster 1: high performers", "Cluster 2: low performers"]
