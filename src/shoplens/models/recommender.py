# src/shoplens/models/recommender.py
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Mapping, Optional, Protocol, Sequence, Tuple

from shoplens.common.errors import InvalidParameterError, NotFoundError
from shoplens.data.store import RecordStore
from shoplens.graph.similarity_index import SimilarityIndex

logger = logging.getLogger(__name__)

PERSONALIZED = "personalized"
SEGMENT = "segment"
GLOBAL = "global"
NONE = "none"


class NeighborIndex(Protocol):
    def nearest_neighbors(self, product_id: str, top_n: int) -> List[str]: ...


@dataclass(frozen=True)
class RecommenderConfig:
    top_n: int = 5
    # how many of the customer's latest interactions seed the personalized tier
    recent_interactions: int = 3


@dataclass(frozen=True)
class RecommendationResult:
    product_ids: Tuple[str, ...]
    strategy: str

    def __len__(self) -> int:
        return len(self.product_ids)


def round_robin_merge(ranked_lists: Sequence[Sequence[str]], limit: int) -> List[str]:
    """
    Interleave ranked lists (1st of each, then 2nd of each, ...),
    dropping duplicates, until `limit` ids are collected.
    """
    out: List[str] = []
    seen = set()
    depth = max((len(r) for r in ranked_lists), default=0)
    for pos in range(depth):
        for ranked in ranked_lists:
            if len(out) >= limit:
                return out
            if pos < len(ranked) and ranked[pos] not in seen:
                seen.add(ranked[pos])
                out.append(ranked[pos])
    return out[:limit]


class RecommendationStrategy:
    """
    Three-tier fallback, first non-empty tier wins:

      1. personalized:  neighbours of the customer's most recent products
      2. segment:       most purchased products within the customer's segment
      3. global:        catalog ordered by popularity_score

    Pure query: nothing is written to the store or the index.
    """

    def __init__(
        self,
        store: RecordStore,
        index: NeighborIndex,
        cfg: Optional[RecommenderConfig] = None,
        segments: Optional[Mapping[str, int]] = None,
    ) -> None:
        self.store = store
        self.index = index
        self.cfg = cfg or RecommenderConfig()
        # Read-only snapshot from the last segmentation run; None -> ask the store.
        self.segments = segments

        if self.cfg.top_n < 0:
            raise InvalidParameterError(f"top_n must be >= 0, got {self.cfg.top_n}")
        if self.cfg.recent_interactions <= 0:
            raise InvalidParameterError(
                f"recent_interactions must be > 0, got {self.cfg.recent_interactions}"
            )

    def get_recommendations(self, customer_id: str, top_n: Optional[int] = None) -> List[str]:
        return list(self.recommend(customer_id, top_n).product_ids)

    def recommend(self, customer_id: str, top_n: Optional[int] = None) -> RecommendationResult:
        n = self.cfg.top_n if top_n is None else top_n
        if n < 0:
            raise InvalidParameterError(f"top_n must be >= 0, got {n}")
        if n == 0:
            return RecommendationResult((), NONE)

        if self.store.has_customer(customer_id):
            for strategy, fn in ((PERSONALIZED, self.personalized), (SEGMENT, self.segment_popularity)):
                recs = fn(customer_id, n)
                if recs:
                    logger.debug("customer=%s served by %s tier (%d items)", customer_id, strategy, len(recs))
                    return RecommendationResult(tuple(recs), strategy)
        else:
            logger.debug("customer=%s unknown to the store; using global popularity", customer_id)

        recs = self.global_popularity(n)
        logger.debug("customer=%s served by %s tier (%d items)", customer_id, GLOBAL, len(recs))
        return RecommendationResult(tuple(recs), GLOBAL)

    # ------------------------------------------------------------------
    # tiers
    # ------------------------------------------------------------------
    def personalized(self, customer_id: str, top_n: int) -> List[str]:
        recent = self.store.list_customer_interactions(customer_id, limit=self.cfg.recent_interactions)

        sources: List[str] = []
        for event in recent:
            if event.product_id not in sources:
                sources.append(event.product_id)

        # one snapshot for every lookup of this query
        index = self.index.pinned() if isinstance(self.index, SimilarityIndex) else self.index

        neighbor_lists: List[List[str]] = []
        for product_id in sources:
            try:
                neighbor_lists.append(index.nearest_neighbors(product_id, top_n))
            except NotFoundError:
                logger.debug("recent product %s is not in the similarity index; skipped", product_id)

        return round_robin_merge(neighbor_lists, top_n)

    def segment_popularity(self, customer_id: str, top_n: int) -> List[str]:
        if self.segments is not None:
            label = self.segments.get(customer_id)
        else:
            label = self.store.get_segment_label(customer_id)
        if label is None:
            return []

        counts = self.store.list_purchases_by_segment(label)
        ranked = sorted(counts, key=lambda pc: -pc[1])
        return [product_id for product_id, _ in ranked[:top_n]]

    def global_popularity(self, top_n: int) -> List[str]:
        products = self.store.list_products()
        ranked = sorted(products, key=lambda p: -p.popularity_score)
        return [p.product_id for p in ranked[:top_n]]
