# src/shoplens/features/vectorizer.py
from __future__ import annotations

import hashlib
from dataclasses import dataclass
from typing import Iterable, Literal

import numpy as np
from sklearn.feature_extraction.text import HashingVectorizer

from shoplens.common.errors import InvalidParameterError

VectorizeMethod = Literal["tokens", "modulo"]


@dataclass(frozen=True)
class VectorizerConfig:
    dim: int = 128
    # "tokens": hashed bag-of-words (shared vocabulary -> similar vectors)
    # "modulo": one text hash spread over the coordinates as (h mod (i+1)) / 100
    method: VectorizeMethod = "tokens"
    # tokens method only; modulo hashes the raw text
    lowercase: bool = True


def stable_text_hash(text: str) -> int:
    """
    64-bit hash of the text that is stable across processes
    (Python's builtin hash() is salted per interpreter).
    """
    h = hashlib.sha256(text.encode("utf-8")).hexdigest()
    return int(h[:16], 16)


class Vectorizer:
    """
    Deterministic text -> fixed-length vector mapping.

    The same text always yields the same vector, for both methods and across
    processes, so similarity rankings are repeatable.
    """

    def __init__(self, cfg: VectorizerConfig | None = None) -> None:
        self.cfg = cfg or VectorizerConfig()
        if self.cfg.dim <= 0:
            raise InvalidParameterError(f"Vector dimension must be > 0, got {self.cfg.dim}")
        if self.cfg.method not in ("tokens", "modulo"):
            raise InvalidParameterError(f"Unknown vectorize method: {self.cfg.method!r}")

        self._hasher = HashingVectorizer(
            n_features=self.cfg.dim,
            alternate_sign=False,
            norm=None,
            lowercase=self.cfg.lowercase,
        )

    @property
    def dim(self) -> int:
        return self.cfg.dim

    def vectorize(self, text: str) -> np.ndarray:
        if self.cfg.method == "modulo":
            return self._modulo_vector(text)
        return self._hasher.transform([text]).toarray()[0].astype(np.float64)

    def vectorize_many(self, texts: Iterable[str]) -> np.ndarray:
        texts = list(texts)
        if not texts:
            return np.zeros((0, self.cfg.dim), dtype=np.float64)
        if self.cfg.method == "modulo":
            return np.vstack([self._modulo_vector(t) for t in texts])
        return self._hasher.transform(texts).toarray().astype(np.float64)

    def _modulo_vector(self, text: str) -> np.ndarray:
        h = stable_text_hash(text)
        # python ints: h may not fit in int64
        return np.array([(h % (i + 1)) / 100.0 for i in range(self.cfg.dim)], dtype=np.float64)
