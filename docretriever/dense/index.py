"""Exact vector index for dense retrieval."""
from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Collection, Dict, Iterable, List, Optional, Sequence, Tuple

from ..concurrency import DEADLINE_CHECK_INTERVAL, Deadline, ReadWriteLock
from ..errors import DimensionMismatch, InvalidArgument
from ..models import SimilarityMetric, Vector, ensure_vector
from ..utils import dot_product, l2_norm, rank_scores

LOGGER = logging.getLogger(__name__)

VectorHit = Tuple[str, float]


def validate_k(k: object, name: str = "k") -> int:
    if isinstance(k, bool) or not isinstance(k, int):
        raise InvalidArgument(f"{name} must be a positive integer, got {k!r}")
    if k <= 0:
        raise InvalidArgument(f"{name} must be a positive integer, got {k}")
    return k


class BaseVectorIndex(ABC):
    """Common bookkeeping for vector indexes keyed by document id.

    Every vector shares the index dimension and similarity metric; vectors
    are stored together with their L2 norm so cosine scoring does not
    recompute it per query.
    """

    def __init__(self, dimension: int, metric: SimilarityMetric | str = SimilarityMetric.COSINE) -> None:
        if isinstance(dimension, bool) or not isinstance(dimension, int) or dimension <= 0:
            raise InvalidArgument("dimension must be a positive integer")
        self.dimension = dimension
        self.metric = SimilarityMetric.parse(metric)
        self._vectors: Dict[str, Vector] = {}
        self._norms: Dict[str, float] = {}
        self._lock = ReadWriteLock()

    def __len__(self) -> int:
        with self._lock.read():
            return len(self._vectors)

    def __contains__(self, doc_id: object) -> bool:
        with self._lock.read():
            return doc_id in self._vectors

    def document_ids(self) -> List[str]:
        with self._lock.read():
            return sorted(self._vectors)

    def get_vector(self, doc_id: str) -> Optional[Vector]:
        with self._lock.read():
            vector = self._vectors.get(doc_id)
            return list(vector) if vector is not None else None

    def check_dimension(self, vector: Sequence[float], context: str = "vector") -> None:
        if len(vector) != self.dimension:
            raise DimensionMismatch(self.dimension, len(vector), context=context)

    def similarity(self, query: Vector, query_norm: float, doc_id: str) -> float:
        raw = dot_product(query, self._vectors[doc_id])
        if self.metric is SimilarityMetric.DOT_PRODUCT:
            return raw
        denom = query_norm * self._norms[doc_id]
        if denom == 0:
            return 0.0
        return raw / denom

    def add(self, doc_id: str, vector: Iterable[float]) -> None:
        """Insert or replace the vector stored for ``doc_id``."""

        values = ensure_vector(vector)
        self.check_dimension(values)
        with self._lock.write():
            self._store_locked(doc_id, values)

    def add_many(self, items: Iterable[Tuple[str, Iterable[float]]]) -> None:
        prepared = [(doc_id, ensure_vector(vector)) for doc_id, vector in items]
        for _, values in prepared:
            self.check_dimension(values)
        with self._lock.write():
            for doc_id, values in prepared:
                self._store_locked(doc_id, values)
        LOGGER.debug("Indexed %d vectors (dim=%d)", len(prepared), self.dimension)

    def remove(self, doc_id: str) -> bool:
        with self._lock.write():
            if doc_id not in self._vectors:
                return False
            self._discard_locked(doc_id)
            return True

    def documents_deleted(self, doc_ids: Sequence[str]) -> None:
        with self._lock.write():
            for doc_id in doc_ids:
                if doc_id in self._vectors:
                    self._discard_locked(doc_id)

    def search(
        self,
        query_vector: Iterable[float],
        k: int,
        metric: SimilarityMetric | str | None = None,
        *,
        doc_ids: Optional[Collection[str]] = None,
        deadline: Optional[Deadline] = None,
    ) -> List[VectorHit]:
        """Return up to ``k`` ``(doc_id, similarity)`` pairs, best first, ties by id.

        ``doc_ids`` optionally restricts the candidates considered.
        """

        validate_k(k)
        if metric is not None and SimilarityMetric.parse(metric) is not self.metric:
            raise InvalidArgument(
                f"index uses {self.metric.value} similarity; cannot search with {SimilarityMetric.parse(metric).value}"
            )
        query = ensure_vector(query_vector)
        self.check_dimension(query, context="query vector")
        allowed = None if doc_ids is None else set(doc_ids)
        with self._lock.read():
            if not self._vectors:
                return []
            return self._search_locked(query, l2_norm(query), k, allowed, deadline)

    def _store_locked(self, doc_id: str, vector: Vector) -> None:
        self._vectors[doc_id] = vector
        self._norms[doc_id] = l2_norm(vector)

    def _discard_locked(self, doc_id: str) -> None:
        del self._vectors[doc_id]
        del self._norms[doc_id]

    @abstractmethod
    def _search_locked(
        self,
        query: Vector,
        query_norm: float,
        k: int,
        allowed: Optional[set],
        deadline: Optional[Deadline],
    ) -> List[VectorHit]:
        """Search while holding the read lock."""


class VectorIndex(BaseVectorIndex):
    """Exact nearest-neighbour index: every stored vector is scored per query."""

    def _search_locked(
        self,
        query: Vector,
        query_norm: float,
        k: int,
        allowed: Optional[set],
        deadline: Optional[Deadline],
    ) -> List[VectorHit]:
        scored: List[VectorHit] = []
        for position, doc_id in enumerate(self._vectors, start=1):
            if deadline is not None and position % DEADLINE_CHECK_INTERVAL == 0:
                deadline.check("vector search")
            if allowed is not None and doc_id not in allowed:
                continue
            scored.append((doc_id, self.similarity(query, query_norm, doc_id)))
        if deadline is not None:
            deadline.check("vector search")
        return rank_scores(scored, k)


__all__ = ["BaseVectorIndex", "VectorHit", "VectorIndex", "validate_k"]
