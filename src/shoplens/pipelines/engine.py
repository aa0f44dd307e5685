# src/shoplens/pipelines/engine.py
from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import List, Mapping, Optional

from shoplens.data.schemas import Product
from shoplens.data.store import RecordStore
from shoplens.graph.similarity_index import SimilarityConfig, SimilarityIndex
from shoplens.models.recommender import RecommendationResult, RecommendationStrategy, RecommenderConfig
from shoplens.segmentation.segmenter import SegmentationConfig, SegmentationRun, Segmenter


@dataclass(frozen=True)
class EngineConfig:
    similarity: SimilarityConfig = SimilarityConfig()
    segmentation: SegmentationConfig = SegmentationConfig()
    recommender: RecommenderConfig = RecommenderConfig()


class RecommendationEngine:
    """
    Thin orchestration over a RecordStore: keeps the similarity index and the
    latest segment mapping as read-only snapshots for concurrent queries.
    Index rebuilds and segmentation runs are serialized against each other.
    """

    def __init__(self, store: RecordStore, cfg: Optional[EngineConfig] = None) -> None:
        self.store = store
        self.cfg = cfg or EngineConfig()
        self.index = SimilarityIndex(self.cfg.similarity)
        self._segments: Optional[Mapping[str, int]] = None
        self._write_lock = threading.Lock()

    @property
    def segments(self) -> Optional[Mapping[str, int]]:
        return self._segments

    def refresh_index(self) -> int:
        with self._write_lock:
            snap = self.index.rebuild(self.store.list_products())
        return len(snap)

    def add_product(self, product: Product) -> None:
        """Store the product and re-vectorize the catalog."""
        self.store.add_product(product)  # type: ignore[attr-defined]
        self.refresh_index()

    def get_product(self, product_id: str) -> Product:
        return self.store.get_product(product_id)

    def similar_products(self, product_id: str, top_n: int = 5) -> List[str]:
        return self.index.nearest_neighbors(product_id, top_n)

    def run_segmentation(self, n_clusters: Optional[int] = None) -> SegmentationRun:
        with self._write_lock:
            run = Segmenter(self.store, self.cfg.segmentation).run(n_clusters)
            self._segments = run.labels
        return run

    def recommend(self, customer_id: str, top_n: Optional[int] = None) -> RecommendationResult:
        strategy = RecommendationStrategy(
            self.store,
            self.index.pinned(),
            self.cfg.recommender,
            segments=self._segments,
        )
        return strategy.recommend(customer_id, top_n)

    def get_recommendations(self, customer_id: str, top_n: Optional[int] = None) -> List[str]:
        return list(self.recommend(customer_id, top_n).product_ids)
