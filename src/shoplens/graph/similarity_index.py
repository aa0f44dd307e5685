# src/shoplens/graph/similarity_index.py
from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Tuple

import numpy as np

from shoplens.common.errors import InvalidParameterError, NotFoundError
from shoplens.data.schemas import Product
from shoplens.features.vectorizer import Vectorizer, VectorizerConfig

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SimilarityConfig:
    vectorizer: VectorizerConfig = VectorizerConfig()


def cosine_similarity(a: np.ndarray, b: np.ndarray) -> float:
    """dot(a, b) / (|a| * |b|); 0.0 when either vector has zero norm."""
    na = float(np.linalg.norm(a))
    nb = float(np.linalg.norm(b))
    if na == 0.0 or nb == 0.0:
        return 0.0
    return float(np.dot(a, b) / (na * nb))


@dataclass(frozen=True, eq=False)
class IndexSnapshot:
    """
    Immutable view of one catalog build. Queries hold a reference to a
    snapshot for their whole duration; rebuilds swap in a new one.
    """
    product_ids: Tuple[str, ...] = ()
    matrix: np.ndarray = field(default_factory=lambda: np.zeros((0, 0)))
    norms: np.ndarray = field(default_factory=lambda: np.zeros(0))
    positions: Dict[str, int] = field(default_factory=dict)
    version: int = 0

    def __len__(self) -> int:
        return len(self.product_ids)


class SimilarityIndex:
    """
    One vector per product (from name + description + tags) and
    nearest-neighbour queries by cosine similarity.

    The index does not detect catalog changes; callers rebuild it.
    """

    def __init__(self, cfg: Optional[SimilarityConfig] = None, vectorizer: Optional[Vectorizer] = None) -> None:
        self.cfg = cfg or SimilarityConfig()
        self.vectorizer = vectorizer or Vectorizer(self.cfg.vectorizer)
        self._snapshot = IndexSnapshot(matrix=np.zeros((0, self.vectorizer.dim)))
        self._write_lock = threading.Lock()

    @property
    def snapshot(self) -> IndexSnapshot:
        return self._snapshot

    @property
    def product_ids(self) -> Tuple[str, ...]:
        return self._snapshot.product_ids

    def __len__(self) -> int:
        return len(self._snapshot)

    def __contains__(self, product_id: object) -> bool:
        return product_id in self._snapshot.positions

    def rebuild(self, products: Iterable[Product]) -> IndexSnapshot:
        """Vectorize the catalog and atomically replace the current snapshot."""
        with self._write_lock:
            ids: List[str] = []
            texts: List[str] = []
            positions: Dict[str, int] = {}
            for p in products:
                if p.product_id in positions:
                    # later duplicates replace the text but keep the first position
                    texts[positions[p.product_id]] = p.text()
                    continue
                positions[p.product_id] = len(ids)
                ids.append(p.product_id)
                texts.append(p.text())

            matrix = self.vectorizer.vectorize_many(texts)
            matrix.setflags(write=False)
            norms = np.linalg.norm(matrix, axis=1) if len(ids) else np.zeros(0)
            norms.setflags(write=False)

            snap = IndexSnapshot(
                product_ids=tuple(ids),
                matrix=matrix,
                norms=norms,
                positions=positions,
                version=self._snapshot.version + 1,
            )
            self._snapshot = snap

        n_zero = int((norms == 0).sum())
        if n_zero:
            logger.debug("Index v%d has %d zero-norm vectors (similarity 0 to everything)", snap.version, n_zero)
        logger.debug("Rebuilt similarity index v%d with %d products", snap.version, len(ids))
        return snap

    def pinned(self) -> "SnapshotView":
        """Read-only view bound to the current snapshot; later rebuilds do not affect it."""
        return SnapshotView(self._snapshot)

    def vector(self, product_id: str) -> np.ndarray:
        return self.pinned().vector(product_id)

    def similarity(self, a: str, b: str) -> float:
        return self.pinned().similarity(a, b)

    def similarities(self, product_id: str) -> np.ndarray:
        """Cosine similarity of product_id against every indexed product, in catalog order."""
        return _similarities(self._snapshot, product_id)

    def nearest_neighbors(self, product_id: str, top_n: int) -> List[str]:
        return self.pinned().nearest_neighbors(product_id, top_n)


class SnapshotView:
    """
    Queries against one fixed IndexSnapshot. A recommendation query takes a
    single view so all of its neighbour lookups see the same catalog build.
    """

    def __init__(self, snapshot: IndexSnapshot) -> None:
        self.snapshot = snapshot

    def __len__(self) -> int:
        return len(self.snapshot)

    def __contains__(self, product_id: object) -> bool:
        return product_id in self.snapshot.positions

    def vector(self, product_id: str) -> np.ndarray:
        snap = self.snapshot
        try:
            return snap.matrix[snap.positions[product_id]].copy()
        except KeyError:
            raise NotFoundError(f"Product not in similarity index: {product_id}") from None

    def similarity(self, a: str, b: str) -> float:
        return cosine_similarity(self.vector(a), self.vector(b))

    def nearest_neighbors(self, product_id: str, top_n: int) -> List[str]:
        """
        Up to top_n other products ordered by descending cosine similarity.
        Ties keep catalog insertion order; the query product is never returned.
        """
        if top_n < 0:
            raise InvalidParameterError(f"top_n must be >= 0, got {top_n}")

        snap = self.snapshot
        sims = _similarities(snap, product_id)
        idx = snap.positions[product_id]

        order = np.argsort(-sims, kind="stable")
        out: List[str] = []
        for j in order:
            if len(out) >= top_n:
                break
            if j == idx:
                continue
            out.append(snap.product_ids[j])
        return out


def _similarities(snap: IndexSnapshot, product_id: str) -> np.ndarray:
    if product_id not in snap.positions:
        raise NotFoundError(f"Product not in similarity index: {product_id}")

    idx = snap.positions[product_id]
    q = snap.matrix[idx]
    qn = snap.norms[idx]
    if qn == 0.0:
        return np.zeros(len(snap), dtype=np.float64)

    dots = snap.matrix @ q
    denom = snap.norms * qn
    sims = np.zeros(len(snap), dtype=np.float64)
    np.divide(dots, denom, out=sims, where=denom > 0)
    return sims
