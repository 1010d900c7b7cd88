"""Utility helpers for vector operations, ranking and caches."""
from __future__ import annotations

import heapq
import math
import threading
from collections import OrderedDict
from typing import Iterable, List, Mapping, Optional, Tuple

from .errors import DimensionMismatch, InvalidArgument
from .models import Vector


def dot_product(a: Vector, b: Vector) -> float:
    if len(a) != len(b):
        raise DimensionMismatch(len(a), len(b))
    return sum(x * y for x, y in zip(a, b))


def l2_norm(vector: Vector) -> float:
    return math.sqrt(sum(x * x for x in vector))


def _ranking_key(item: Tuple[str, float]) -> Tuple[float, str]:
    return (-item[1], item[0])


def rank_scores(scores: Iterable[Tuple[str, float]], k: Optional[int] = None) -> List[Tuple[str, float]]:
    """Order ``(doc_id, score)`` pairs by descending score, ties by ascending id.

    When ``k`` is given only the best ``k`` pairs are returned.
    """

    if isinstance(scores, Mapping):
        items = list(scores.items())
    else:
        items = list(scores)
    if k is None or k >= len(items):
        return sorted(items, key=_ranking_key)
    return heapq.nsmallest(k, items, key=_ranking_key)


def sigmoid(value: float, scale: float = 8.0) -> float:
    """Squash ``value`` into (0, 1); ``scale`` stretches the useful range."""

    scaled = value / scale
    if scaled >= 0:
        return 1.0 / (1.0 + math.exp(-scaled))
    exp = math.exp(scaled)
    return exp / (1.0 + exp)


class QueryVectorCache:
    """Thread-safe LRU map from query text to its embedding.

    Vectors are stored as tuples and handed out as fresh lists, so callers
    may mutate what they receive. ``hits`` and ``misses`` count lookups.
    """

    def __init__(self, maxsize: int) -> None:
        if maxsize <= 0:
            raise InvalidArgument("query cache size must be positive")
        self.maxsize = maxsize
        self.hits = 0
        self.misses = 0
        self._entries: "OrderedDict[str, Tuple[float, ...]]" = OrderedDict()
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def lookup(self, query: str) -> Optional[Vector]:
        with self._lock:
            vector = self._entries.get(query)
            if vector is None:
                self.misses += 1
                return None
            self._entries.move_to_end(query)
            self.hits += 1
            return list(vector)

    def store(self, query: str, vector: Vector) -> None:
        with self._lock:
            self._entries[query] = tuple(vector)
            self._entries.move_to_end(query)
            while len(self._entries) > self.maxsize:
                self._entries.popitem(last=False)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
