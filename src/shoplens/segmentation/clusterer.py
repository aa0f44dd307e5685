# src/shoplens/segmentation/clusterer.py
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional, Tuple

import numpy as np
from sklearn.preprocessing import StandardScaler

from shoplens.common.errors import DegenerateInputError, InvalidParameterError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ClusterConfig:
    n_clusters: int = 4
    # Guard against non-termination; a cap-out is a best-effort result, not an error.
    max_iter: int = 100
    random_state: Optional[int] = 42


@dataclass(frozen=True, eq=False)
class ClusterResult:
    labels: np.ndarray  # int labels in [0, k), one per input row
    centroids: np.ndarray  # (k, n_features), in normalized space
    n_iter: int
    converged: bool
    feature_means: np.ndarray
    feature_stds: np.ndarray

    @property
    def sizes(self) -> Tuple[int, ...]:
        k = self.centroids.shape[0]
        return tuple(int(c) for c in np.bincount(self.labels, minlength=k))


def normalize_features(X: np.ndarray) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    """
    Column-wise z-score with population std.
    Constant columns become exactly 0.
    Returns (Z, means, stds).
    """
    scaler = StandardScaler(with_mean=True, with_std=True)
    Z = scaler.fit_transform(X)
    stds = np.sqrt(scaler.var_)
    Z[:, stds == 0] = 0.0
    return Z, scaler.mean_.copy(), stds


def assign_clusters(Z: np.ndarray, centroids: np.ndarray) -> np.ndarray:
    """Nearest centroid by squared Euclidean distance; ties go to the lowest index."""
    d2 = ((Z[:, None, :] - centroids[None, :, :]) ** 2).sum(axis=2)
    return np.argmin(d2, axis=1).astype(np.int64)


def update_centroids(Z: np.ndarray, labels: np.ndarray, centroids: np.ndarray) -> np.ndarray:
    """Mean of assigned rows; a centroid with no rows keeps its previous position."""
    out = centroids.copy()
    for j in range(centroids.shape[0]):
        mask = labels == j
        if mask.any():
            out[j] = Z[mask].mean(axis=0)
    return out


class Clusterer:
    """
    k-means over normalized customer features:
    normalize -> random init from rows -> (assign, update)* until a full
    assignment pass changes no label, or max_iter passes.
    """

    def __init__(self, cfg: Optional[ClusterConfig] = None) -> None:
        self.cfg = cfg or ClusterConfig()
        if self.cfg.max_iter <= 0:
            raise InvalidParameterError(f"max_iter must be > 0, got {self.cfg.max_iter}")

    def fit(self, features: np.ndarray, n_clusters: Optional[int] = None) -> ClusterResult:
        k = self.cfg.n_clusters if n_clusters is None else n_clusters
        X = np.asarray(features, dtype=np.float64)

        if k <= 0:
            raise InvalidParameterError(f"Number of clusters must be > 0, got {k}")
        if X.ndim != 2 or X.shape[0] == 0:
            raise DegenerateInputError("Cannot cluster an empty customer set")
        n = X.shape[0]
        if k > n:
            raise InvalidParameterError(f"Number of clusters ({k}) exceeds number of customers ({n})")

        Z, means, stds = normalize_features(X)

        rng = np.random.default_rng(self.cfg.random_state)
        centroids = Z[rng.choice(n, size=k, replace=False)].copy()

        labels = np.full(n, -1, dtype=np.int64)
        converged = False
        n_iter = 0
        for n_iter in range(1, self.cfg.max_iter + 1):
            new_labels = assign_clusters(Z, centroids)
            changed = bool((new_labels != labels).any())
            labels = new_labels
            if not changed:
                converged = True
                break
            centroids = update_centroids(Z, labels, centroids)

        if not converged:
            logger.warning(
                "k-means did not converge within %d iterations (k=%d, n=%d); using last assignment",
                self.cfg.max_iter,
                k,
                n,
            )

        return ClusterResult(
            labels=labels,
            centroids=centroids,
            n_iter=n_iter,
            converged=converged,
            feature_means=means,
            feature_stds=stds,
        )
