"""Common dataclasses and enums used across the retrieval core."""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Iterable, List, Mapping, Optional

from .errors import InvalidArgument


Vector = List[float]


class Strategy(str, Enum):
    """Retrieval strategies selectable on the facade."""

    SPARSE_TFIDF = "sparse_tfidf"
    SPARSE_BM25 = "sparse_bm25"
    DENSE = "dense"

    @property
    def is_sparse(self) -> bool:
        return self is not Strategy.DENSE

    @classmethod
    def parse(cls, value: "Strategy | str") -> "Strategy":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError as exc:
            choices = ", ".join(member.value for member in cls)
            raise InvalidArgument(f"Unknown strategy {value!r}; expected one of: {choices}") from exc


class SimilarityMetric(str, Enum):
    """Similarity functions supported by the vector indexes."""

    DOT_PRODUCT = "dot_product"
    COSINE = "cosine"

    @classmethod
    def parse(cls, value: "SimilarityMetric | str") -> "SimilarityMetric":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError as exc:
            choices = ", ".join(member.value for member in cls)
            raise InvalidArgument(f"Unknown similarity metric {value!r}; expected one of: {choices}") from exc


@dataclass(frozen=True, slots=True)
class Document:
    """Container for a retrievable document.

    ``metadata`` values are strings, numbers, dates (or ISO-8601 strings) or
    lists of those. ``embedding`` is an optional precomputed vector used by
    the dense path instead of calling the encoder.
    """

    doc_id: str
    content: str
    metadata: Mapping[str, Any] = field(default_factory=dict)
    embedding: Optional[Vector] = None


@dataclass(frozen=True, slots=True)
class Posting:
    """A single posting list entry."""

    doc_id: str
    term_frequency: int


@dataclass(slots=True)
class ScoredResult:
    """Query-scoped result entry produced by the retriever facade."""

    doc_id: str
    score: float
    rank: int
    document: Optional[Document] = None

    @property
    def content(self) -> str:
        return self.document.content if self.document is not None else ""


def ensure_vector(vector: Iterable[float]) -> Vector:
    """Normalize an iterable of floats to a list."""

    return [float(x) for x in vector]


__all__ = [
    "Document",
    "Posting",
    "ScoredResult",
    "SimilarityMetric",
    "Strategy",
    "Vector",
    "ensure_vector",
]
