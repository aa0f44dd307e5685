from __future__ import annotations

from typing import Dict, Iterable

import numpy as np
import pytest

from shoplens.common.errors import InvalidParameterError, NotFoundError
from shoplens.data.schemas import Product
from shoplens.graph.similarity_index import SimilarityIndex, cosine_similarity


class FixedVectorizer:
    """Maps a product name (first word of its text) to a hand-written vector."""

    def __init__(self, table: Dict[str, Iterable[float]]) -> None:
        self.table = {k: np.asarray(v, dtype=float) for k, v in table.items()}
        self.dim = len(next(iter(self.table.values())))

    def vectorize_many(self, texts):
        return np.vstack([self.table[t.split()[0]] for t in texts]) if texts else np.zeros((0, self.dim))


def _p(pid: str, name: str | None = None) -> Product:
    return Product(product_id=pid, name=name or pid)


def test_cosine_similarity_is_symmetric():
    rng = np.random.default_rng(7)
    for _ in range(20):
        a, b = rng.normal(size=16), rng.normal(size=16)
        assert cosine_similarity(a, b) == pytest.approx(cosine_similarity(b, a))


def test_index_similarity_is_symmetric_and_uses_pinned_build(catalog):
    index = SimilarityIndex()
    index.rebuild(catalog)
    view = index.pinned()

    for a in ("P1001", "P1002", "P1003"):
        for b in ("P1004", "P1005"):
            assert index.similarity(a, b) == pytest.approx(index.similarity(b, a))
    assert index.similarity("P1001", "P1004") > index.similarity("P1001", "P1002")
    assert index.similarity("P1001", "P1001") == pytest.approx(1.0)

    index.rebuild(catalog[:1])
    with pytest.raises(NotFoundError):
        index.similarity("P1001", "P1004")
    assert view.similarity("P1001", "P1004") > 0.5


def test_cosine_similarity_zero_vector_is_zero_not_nan():
    z = np.zeros(4)
    assert cosine_similarity(z, np.ones(4)) == 0.0
    assert cosine_similarity(z, z) == 0.0


def test_nearest_neighbors_orders_by_similarity_and_excludes_self():
    vec = FixedVectorizer({"A": [1, 0], "B": [0.9, 0.1], "C": [0, 1], "D": [0.5, 0.5]})
    idx = SimilarityIndex(vectorizer=vec)
    idx.rebuild([_p("A"), _p("B"), _p("C"), _p("D")])

    assert idx.nearest_neighbors("A", 3) == ["B", "D", "C"]
    assert idx.nearest_neighbors("A", 1) == ["B"]
    assert "A" not in idx.nearest_neighbors("A", 10)


def test_ties_keep_catalog_insertion_order():
    vec = FixedVectorizer({"Q": [1, 0], "X": [0, 1], "Y": [0, 1], "Z": [0, 1]})
    idx = SimilarityIndex(vectorizer=vec)
    idx.rebuild([_p("Z"), _p("Q"), _p("X"), _p("Y")])

    assert idx.nearest_neighbors("Q", 3) == ["Z", "X", "Y"]


def test_zero_norm_vector_scores_zero_everywhere():
    vec = FixedVectorizer({"ZERO": [0, 0], "A": [1, 0], "B": [-1, 0]})
    idx = SimilarityIndex(vectorizer=vec)
    idx.rebuild([_p("Z0", "ZERO"), _p("A"), _p("B")])

    sims = idx.similarities("A")
    assert not np.isnan(sims).any()
    assert sims[0] == 0.0

    # everything ties at 0 for the zero vector -> catalog order
    assert idx.nearest_neighbors("Z0", 5) == ["A", "B"]
    # zero beats a negative similarity
    assert idx.nearest_neighbors("A", 2) == ["Z0", "B"]


@pytest.mark.parametrize("top_n", [0, 1, 2, 5, 50])
def test_output_length_bounded(top_n: int, catalog):
    idx = SimilarityIndex()
    idx.rebuild(catalog)

    for p in catalog:
        out = idx.nearest_neighbors(p.product_id, top_n)
        assert len(out) <= min(top_n, len(catalog) - 1)
        assert len(out) == len(set(out))
        assert p.product_id not in out


def test_unknown_product_raises_not_found(catalog):
    idx = SimilarityIndex()
    idx.rebuild(catalog)
    with pytest.raises(NotFoundError):
        idx.nearest_neighbors("NOPE", 3)
    with pytest.raises(NotFoundError):
        idx.vector("NOPE")


def test_empty_index_raises_not_found():
    idx = SimilarityIndex()
    assert len(idx) == 0
    with pytest.raises(NotFoundError):
        idx.nearest_neighbors("P1", 1)


def test_negative_top_n_rejected(catalog):
    idx = SimilarityIndex()
    idx.rebuild(catalog)
    with pytest.raises(InvalidParameterError):
        idx.nearest_neighbors("P1001", -1)


def test_single_product_catalog_has_no_neighbors():
    idx = SimilarityIndex()
    idx.rebuild([_p("ONLY")])
    assert idx.nearest_neighbors("ONLY", 5) == []


def test_rebuild_twice_is_bit_identical(catalog):
    idx = SimilarityIndex()
    first = idx.rebuild(catalog)
    second = idx.rebuild(catalog)

    assert first.product_ids == second.product_ids
    assert np.array_equal(first.matrix, second.matrix)
    assert second.version == first.version + 1


def test_rebuild_swaps_snapshot_without_touching_old_one(catalog):
    idx = SimilarityIndex()
    old = idx.rebuild(catalog)
    idx.rebuild(catalog[:2])

    # a reader still holding the old snapshot sees the full catalog
    assert len(old) == len(catalog)
    assert len(idx) == 2
    assert "P1003" not in idx
    assert not old.matrix.flags.writeable


def test_vector_dimension_constant(catalog):
    idx = SimilarityIndex()
    idx.rebuild(catalog)
    assert {idx.vector(p.product_id).shape for p in catalog} == {(128,)}
