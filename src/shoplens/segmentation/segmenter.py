# src/shoplens/segmentation/segmenter.py
from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional

import numpy as np
import pandas as pd

from shoplens.common.errors import DegenerateInputError
from shoplens.common.time import utc_now
from shoplens.data.schemas import FEATURES
from shoplens.data.store import RecordStore
from shoplens.features.customer_features import FeatureAggregator, rows_to_frame
from shoplens.segmentation.clusterer import ClusterConfig, Clusterer, ClusterResult

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SegmentationConfig:
    cluster: ClusterConfig = ClusterConfig()
    report_path: Path = Path("reports/segmentation.json")

    # True: let the store compute the features (e.g. in SQL);
    # False: pull raw events and aggregate them with pandas.
    aggregate_in_store: bool = True
    write_labels: bool = True


@dataclass(frozen=True, eq=False)
class SegmentationRun:
    labels: Mapping[str, int]
    features: pd.DataFrame
    result: ClusterResult

    def summary(self) -> Dict[str, Any]:
        k = int(self.result.centroids.shape[0])
        return {
            "strategy": "zscore_kmeans",
            "n_customers": len(self.labels),
            "k": k,
            "iterations": int(self.result.n_iter),
            "converged": bool(self.result.converged),
            "segment_sizes": {str(i): n for i, n in enumerate(self.result.sizes)},
            "feature_means": dict(zip(FEATURES.feature_columns, map(float, self.result.feature_means))),
            "feature_stds": dict(zip(FEATURES.feature_columns, map(float, self.result.feature_stds))),
            "timestamp": utc_now().isoformat(timespec="seconds"),
        }


class Segmenter:
    """
    One full segmentation run: aggregate features -> cluster -> write labels.
    The returned mapping replaces any previous assignment wholesale.
    """

    def __init__(
        self,
        store: RecordStore,
        cfg: Optional[SegmentationConfig] = None,
        aggregator: Optional[FeatureAggregator] = None,
    ) -> None:
        self.store = store
        self.cfg = cfg or SegmentationConfig()
        self.aggregator = aggregator or FeatureAggregator()
        self.clusterer = Clusterer(self.cfg.cluster)

    def run(self, n_clusters: Optional[int] = None) -> SegmentationRun:
        # DataUnavailableError from the store is fatal: no partial clustering
        if self.cfg.aggregate_in_store:
            rows = self.store.aggregate_customer_behavior()
        else:
            rows = self.aggregator.aggregate(self.store)

        if not rows:
            raise DegenerateInputError("No customers to segment")

        features = rows_to_frame(rows)
        X = features[list(FEATURES.feature_columns)].to_numpy(dtype=np.float64)
        result = self.clusterer.fit(X, n_clusters)

        labels = {cid: int(lbl) for cid, lbl in zip(features[FEATURES.CUSTOMER_ID], result.labels)}

        if self.cfg.write_labels:
            for customer_id, label in labels.items():
                self.store.write_segment_label(customer_id, label)

        run = SegmentationRun(labels=MappingProxyType(labels), features=features, result=result)
        logger.info(
            "Segmented %d customers into %d segments (iterations=%d, converged=%s, sizes=%s)",
            len(labels),
            result.centroids.shape[0],
            result.n_iter,
            result.converged,
            list(result.sizes),
        )
        return run
