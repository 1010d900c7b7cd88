"""Navigable small-world graph index for approximate dense retrieval."""
from __future__ import annotations

import heapq
from typing import Dict, List, Optional, Set, Tuple

from ..concurrency import DEADLINE_CHECK_INTERVAL, Deadline
from ..errors import InvalidArgument
from ..models import SimilarityMetric, Vector
from ..utils import rank_scores
from .index import BaseVectorIndex, VectorHit


class HnswVectorIndex(BaseVectorIndex):
    """A single-layer HNSW-style proximity graph.

    Each inserted point links to its ``m`` most similar existing points and
    the search walks the graph greedily from an entry point with a beam of
    ``ef_search`` nodes. Results follow the same ordering contract as
    :class:`~docretriever.dense.index.VectorIndex`; they are exact whenever
    the beam covers the collection and the graph is complete
    (``ef_search >= len(index)`` and ``m >= len(index) - 1``).

    Candidate restrictions (``doc_ids``) are applied to the visited set, so a
    restrictive filter can reduce recall further.
    """

    def __init__(
        self,
        dimension: int,
        metric: SimilarityMetric | str = SimilarityMetric.COSINE,
        m: int = 16,
        ef_search: int = 32,
    ) -> None:
        super().__init__(dimension, metric)
        if m <= 0:
            raise InvalidArgument("m must be positive")
        if ef_search <= 0:
            raise InvalidArgument("ef_search must be positive")
        self.m = m
        self.ef_search = max(ef_search, m)
        self._graph: Dict[str, Set[str]] = {}
        self._entrypoint: Optional[str] = None

    def neighbors(self, doc_id: str) -> Set[str]:
        with self._lock.read():
            return set(self._graph.get(doc_id, ()))

    def _pair_similarity(self, a: str, b: str) -> float:
        return self.similarity(self._vectors[a], self._norms[a], b)

    def _store_locked(self, doc_id: str, vector: Vector) -> None:
        if doc_id in self._vectors:
            self._discard_locked(doc_id)
        super()._store_locked(doc_id, vector)
        self._graph[doc_id] = set()
        if self._entrypoint is None:
            self._entrypoint = doc_id
            return
        for neighbor_id in self._select_neighbors(doc_id):
            self._graph[doc_id].add(neighbor_id)
            self._graph[neighbor_id].add(doc_id)
            self._trim(neighbor_id)
        self._trim(doc_id)

    def _discard_locked(self, doc_id: str) -> None:
        former = self._graph.pop(doc_id, set())
        # Trimming leaves some links one-directional, so scan every node.
        for node_id, neighbors in self._graph.items():
            if doc_id in neighbors:
                neighbors.discard(doc_id)
                former.add(node_id)
        super()._discard_locked(doc_id)
        # Reconnect the hole left behind so the graph stays navigable.
        for neighbor_id in former:
            for other_id in former:
                if other_id != neighbor_id:
                    self._graph[neighbor_id].add(other_id)
            self._trim(neighbor_id)
        if self._entrypoint == doc_id:
            self._entrypoint = min(self._vectors) if self._vectors else None

    def _select_neighbors(self, doc_id: str) -> List[str]:
        scored = [
            (other_id, self._pair_similarity(doc_id, other_id))
            for other_id in self._vectors
            if other_id != doc_id
        ]
        return [point for point, _ in rank_scores(scored, self.m)]

    def _trim(self, doc_id: str) -> None:
        neighbors = self._graph.get(doc_id)
        if not neighbors or len(neighbors) <= self.m:
            return
        scored = [(neighbor, self._pair_similarity(doc_id, neighbor)) for neighbor in neighbors]
        self._graph[doc_id] = {neighbor for neighbor, _ in rank_scores(scored, self.m)}

    def _search_locked(
        self,
        query: Vector,
        query_norm: float,
        k: int,
        allowed: Optional[set],
        deadline: Optional[Deadline],
    ) -> List[VectorHit]:
        entrypoint = self._entrypoint
        assert entrypoint is not None
        beam = max(self.ef_search, k)
        seen: Set[str] = {entrypoint}
        entry_score = self.similarity(query, query_norm, entrypoint)
        candidate_heap: List[Tuple[float, str]] = [(-entry_score, entrypoint)]
        best: List[VectorHit] = [(entrypoint, entry_score)]
        expanded = 0
        while candidate_heap and expanded < beam:
            _, current = heapq.heappop(candidate_heap)
            expanded += 1
            if deadline is not None and expanded % DEADLINE_CHECK_INTERVAL == 0:
                deadline.check("vector search")
            for neighbor in sorted(self._graph.get(current, ())):
                if neighbor in seen:
                    continue
                seen.add(neighbor)
                neighbor_score = self.similarity(query, query_norm, neighbor)
                heapq.heappush(candidate_heap, (-neighbor_score, neighbor))
                best.append((neighbor, neighbor_score))
        if deadline is not None:
            deadline.check("vector search")
        if allowed is not None:
            best = [hit for hit in best if hit[0] in allowed]
        return rank_scores(best, k)


__all__ = ["HnswVectorIndex"]
