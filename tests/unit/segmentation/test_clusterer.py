from __future__ import annotations

import logging

import numpy as np
import pytest

from shoplens.common.errors import DegenerateInputError, InvalidParameterError
from shoplens.segmentation.clusterer import (
    ClusterConfig,
    Clusterer,
    assign_clusters,
    normalize_features,
    update_centroids,
)

TWO_GROUPS = np.array(
    [
        [0, 0, 0, 0],
        [0, 0, 0, 0],
        [100, 50, 5000, 12],
        [120, 55, 5200, 12],
    ],
    dtype=float,
)


def test_normalize_is_population_zscore():
    X = np.array([[1.0, 5.0], [3.0, 5.0]])
    Z, means, stds = normalize_features(X)

    assert means.tolist() == [2.0, 5.0]
    assert stds.tolist() == [1.0, 0.0]
    assert Z[:, 0].tolist() == [-1.0, 1.0]
    # constant column -> exactly 0
    assert Z[:, 1].tolist() == [0.0, 0.0]


def test_assign_ties_go_to_lowest_centroid():
    Z = np.array([[0.0, 0.0]])
    centroids = np.array([[1.0, 0.0], [-1.0, 0.0]])
    assert assign_clusters(Z, centroids).tolist() == [0]


def test_empty_centroid_keeps_position():
    Z = np.array([[0.0], [1.0]])
    centroids = np.array([[0.5], [9.0]])
    out = update_centroids(Z, np.array([0, 0]), centroids)
    assert out.tolist() == [[0.5], [9.0]]


@pytest.mark.parametrize("seed", range(6))
def test_two_obvious_groups_are_separated(seed: int):
    res = Clusterer(ClusterConfig(n_clusters=2, random_state=seed)).fit(TWO_GROUPS)
    labels = res.labels.tolist()

    assert res.converged
    assert labels[0] == labels[1]
    assert labels[2] == labels[3]
    assert labels[0] != labels[2]


@pytest.mark.parametrize("seed", [0, 1, 42])
def test_labels_in_range_and_fixed_point(seed: int):
    rng = np.random.default_rng(seed)
    X = np.abs(rng.normal(size=(40, 4))) * [10, 3, 500, 6]
    k = 4

    res = Clusterer(ClusterConfig(n_clusters=k, random_state=seed)).fit(X)

    assert res.converged
    assert res.labels.shape == (40,)
    assert set(res.labels.tolist()) <= set(range(k))
    assert sum(res.sizes) == 40
    # re-running Assign with the final centroids changes nothing
    Z, _, _ = normalize_features(X)
    assert np.array_equal(assign_clusters(Z, res.centroids), res.labels)


def test_same_seed_same_labels():
    X = np.arange(40, dtype=float).reshape(10, 4) ** 1.5
    a = Clusterer(ClusterConfig(n_clusters=3, random_state=5)).fit(X)
    b = Clusterer(ClusterConfig(n_clusters=3, random_state=5)).fit(X)
    assert np.array_equal(a.labels, b.labels)


def test_all_identical_rows_single_effective_cluster():
    X = np.ones((5, 4))
    res = Clusterer(ClusterConfig(n_clusters=3)).fit(X)
    assert res.converged
    assert set(res.labels.tolist()) == {0}


def test_k_equals_n_each_row_its_own_cluster():
    res = Clusterer(ClusterConfig(n_clusters=4)).fit(TWO_GROUPS[[0, 2, 3]].tolist() + [[50, 20, 100, 3]])
    assert sorted(res.labels.tolist()) == [0, 1, 2, 3]


def test_iteration_cap_logs_warning(caplog):
    with caplog.at_level(logging.WARNING, logger="shoplens.segmentation.clusterer"):
        res = Clusterer(ClusterConfig(n_clusters=2, max_iter=1)).fit(TWO_GROUPS)

    assert not res.converged
    assert res.n_iter == 1
    assert set(res.labels.tolist()) <= {0, 1}
    assert any(r.levelno == logging.WARNING and "did not converge" in r.getMessage() for r in caplog.records)


@pytest.mark.parametrize("k", [0, -1, 5])
def test_invalid_k_rejected(k: int):
    with pytest.raises(InvalidParameterError):
        Clusterer().fit(TWO_GROUPS, n_clusters=k)


def test_empty_input_is_degenerate():
    with pytest.raises(DegenerateInputError):
        Clusterer().fit(np.zeros((0, 4)))


def test_invalid_max_iter_rejected():
    with pytest.raises(InvalidParameterError):
        Clusterer(ClusterConfig(max_iter=0))
