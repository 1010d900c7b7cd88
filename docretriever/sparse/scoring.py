"""TF-IDF and BM25 scoring over an :class:`InvertedIndex`."""

from __future__ import annotations

import logging
import math
from collections import Counter
from dataclasses import dataclass
from typing import ClassVar, Collection, Dict, Optional, Sequence, Union

from ..concurrency import DEADLINE_CHECK_INTERVAL, Deadline
from ..errors import IndexCorruption, InvalidArgument
from ..models import Strategy
from .index import IndexView, InvertedIndex

LOGGER = logging.getLogger(__name__)


class _PostingScorer:
    """Shared candidate loop: only documents found in a query term's postings are scored."""

    kind: ClassVar[Strategy]

    def idf(self, document_count: int, document_frequency: int) -> float:
        raise NotImplementedError

    def term_score(self, tf: int, idf: float, doc_length: int, avg_doc_length: float) -> float:
        raise NotImplementedError

    def score(
        self,
        index: InvertedIndex,
        query_tokens: Sequence[str],
        doc_ids: Optional[Collection[str]] = None,
        *,
        deadline: Optional[Deadline] = None,
    ) -> Dict[str, float]:
        """Return ``doc_id -> score`` for every candidate sharing a term with the query.

        ``doc_ids`` optionally restricts the candidates. A repeated query
        token contributes once per occurrence.
        """

        query_counts = Counter(query_tokens)
        if not query_counts:
            return {}
        allowed = None if doc_ids is None else set(doc_ids)
        with index.reading() as view:
            return self._score_view(view, query_counts, allowed, deadline)

    def _score_view(
        self,
        view: IndexView,
        query_counts: Counter,
        allowed: Optional[set],
        deadline: Optional[Deadline],
    ) -> Dict[str, float]:
        document_count = view.document_count
        if document_count == 0:
            return {}
        avg_doc_length = view.avg_document_length
        scores: Dict[str, float] = {}
        visited = 0
        for term in sorted(query_counts):
            document_frequency = view.document_frequency(term)
            if document_frequency == 0:
                continue
            postings = view.term_frequencies(term)
            if len(postings) != document_frequency:
                raise IndexCorruption(
                    f"df({term!r})={document_frequency} but it has {len(postings)} postings"
                )
            idf = self.idf(document_count, document_frequency)
            multiplicity = query_counts[term]
            for doc_id, tf in postings.items():
                if allowed is not None and doc_id not in allowed:
                    continue
                visited += 1
                if deadline is not None and visited % DEADLINE_CHECK_INTERVAL == 0:
                    deadline.check("sparse scoring")
                contribution = self.term_score(tf, idf, view.document_length(doc_id), avg_doc_length)
                scores[doc_id] = scores.get(doc_id, 0.0) + multiplicity * contribution
        if deadline is not None:
            deadline.check("sparse scoring")
        LOGGER.debug("%s scored %d candidates from %d postings", self.kind.value, len(scores), visited)
        return scores


@dataclass(frozen=True)
class TfIdfScorer(_PostingScorer):
    """Log-dampened TF-IDF: ``Σ (1 + ln tf) · ln(N / df)``.

    A term found in every document has idf 0, so in a one-document collection
    every score is 0 and the retriever returns no results.
    """

    kind: ClassVar[Strategy] = Strategy.SPARSE_TFIDF

    def idf(self, document_count: int, document_frequency: int) -> float:
        return math.log(document_count / document_frequency)

    def term_score(self, tf: int, idf: float, doc_length: int, avg_doc_length: float) -> float:
        if tf <= 0:
            return 0.0
        return (1.0 + math.log(tf)) * idf


@dataclass(frozen=True)
class Bm25Scorer(_PostingScorer):
    """Okapi BM25 with tf saturation (``k1``) and length normalisation (``b``)."""

    k1: float = 1.2
    b: float = 0.75

    kind: ClassVar[Strategy] = Strategy.SPARSE_BM25

    def __post_init__(self) -> None:
        if self.k1 < 0:
            raise InvalidArgument("bm25_k1 must be non-negative")
        if not 0.0 <= self.b <= 1.0:
            raise InvalidArgument("bm25_b must be within [0, 1]")

    def idf(self, document_count: int, document_frequency: int) -> float:
        return math.log(1.0 + (document_count - document_frequency + 0.5) / (document_frequency + 0.5))

    def term_score(self, tf: int, idf: float, doc_length: int, avg_doc_length: float) -> float:
        if tf <= 0:
            return 0.0
        relative_length = doc_length / avg_doc_length if avg_doc_length > 0 else 0.0
        norm = self.k1 * (1.0 - self.b + self.b * relative_length)
        return idf * (tf * (self.k1 + 1.0)) / (tf + norm)


SparseScorer = Union[TfIdfScorer, Bm25Scorer]


def scorer_for(strategy: Strategy, *, k1: float = 1.2, b: float = 0.75) -> SparseScorer:
    """Return the scorer variant implementing a sparse ``strategy``."""

    if strategy is Strategy.SPARSE_TFIDF:
        return TfIdfScorer()
    if strategy is Strategy.SPARSE_BM25:
        return Bm25Scorer(k1=k1, b=b)
    raise InvalidArgument(f"{strategy.value} is not a sparse strategy")


def score(
    index: InvertedIndex,
    query_tokens: Sequence[str],
    doc_ids: Optional[Collection[str]] = None,
    *,
    scorer: Optional[SparseScorer] = None,
    deadline: Optional[Deadline] = None,
) -> Dict[str, float]:
    """Score with ``scorer`` (BM25 with default constants when omitted)."""

    return (scorer or Bm25Scorer()).score(index, query_tokens, doc_ids, deadline=deadline)


__all__ = ["Bm25Scorer", "SparseScorer", "TfIdfScorer", "score", "scorer_for"]
