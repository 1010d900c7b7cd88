"""Inverted index and term statistics for sparse retrieval."""

from __future__ import annotations

import logging
from collections import Counter
from contextlib import contextmanager
from typing import Dict, Iterable, Iterator, List, Mapping, Sequence, Tuple

from ..concurrency import ReadWriteLock
from ..errors import IndexCorruption
from ..models import Document, Posting
from ..tokenizer import Tokenizer
from ..tracing import start_span

LOGGER = logging.getLogger(__name__)

_TermCounts = Tuple[str, Counter]


class IndexView:
    """Read-only view of an :class:`InvertedIndex` valid while its read lock is held."""

    __slots__ = ("_index",)

    def __init__(self, index: "InvertedIndex") -> None:
        self._index = index

    @property
    def tokenizer(self) -> Tokenizer:
        return self._index.tokenizer

    @property
    def document_count(self) -> int:
        return len(self._index._doc_lengths)

    @property
    def avg_document_length(self) -> float:
        count = len(self._index._doc_lengths)
        if count == 0:
            return 0.0
        return self._index._total_length / count

    def document_frequency(self, term: str) -> int:
        return self._index._document_frequency.get(term, 0)

    def document_length(self, doc_id: str) -> int:
        try:
            return self._index._doc_lengths[doc_id]
        except KeyError:
            raise IndexCorruption(f"posting references unindexed document {doc_id!r}") from None

    def term_frequencies(self, term: str) -> Mapping[str, int]:
        """Return the raw ``doc_id -> tf`` mapping for ``term`` (do not mutate)."""

        return self._index._postings.get(term, {})

    def postings(self, term: str) -> List[Posting]:
        entries = self._index._postings.get(term, {})
        return [Posting(doc_id, entries[doc_id]) for doc_id in sorted(entries)]


class InvertedIndex:
    """Term → postings mapping with document-frequency and length statistics.

    Mutations run under the exclusive side of a :class:`ReadWriteLock` and
    update postings, document frequencies and lengths together, so readers
    holding the shared side never observe a half-applied update. Documents are
    tokenised before the lock is taken.
    """

    def __init__(self, tokenizer: Tokenizer | None = None) -> None:
        self.tokenizer = tokenizer or Tokenizer()
        self._postings: Dict[str, Dict[str, int]] = {}
        self._document_frequency: Dict[str, int] = {}
        self._doc_terms: Dict[str, Counter] = {}
        self._doc_lengths: Dict[str, int] = {}
        self._total_length = 0
        self._lock = ReadWriteLock()

    @classmethod
    def build(cls, documents: Iterable[Document], tokenizer: Tokenizer | None = None) -> "InvertedIndex":
        index = cls(tokenizer)
        with start_span("docretriever.index.build") as span:
            index.update(added=documents)
            span.set_attribute("index.document_count", len(index))
            span.set_attribute("index.term_count", index.term_count)
        LOGGER.info(
            "Built inverted index: %d documents, %d terms",
            len(index),
            index.term_count,
        )
        return index

    def __len__(self) -> int:
        with self._lock.read():
            return len(self._doc_lengths)

    def __contains__(self, doc_id: object) -> bool:
        with self._lock.read():
            return doc_id in self._doc_lengths

    @property
    def term_count(self) -> int:
        with self._lock.read():
            return len(self._postings)

    def document_ids(self) -> List[str]:
        with self._lock.read():
            return sorted(self._doc_lengths)

    @contextmanager
    def reading(self) -> Iterator[IndexView]:
        """Hold the shared lock and yield a consistent view of the index."""

        with self._lock.read():
            yield IndexView(self)

    # ------------------------------------------------------------------
    # Mutation
    # ------------------------------------------------------------------
    def add(self, document: Document) -> None:
        self.update(added=(document,))

    def remove(self, doc_id: str) -> bool:
        """Remove ``doc_id``; returns ``False`` when it was not indexed."""

        with self._lock.write():
            return self._remove_locked(doc_id)

    def update(self, added: Iterable[Document] = (), removed: Iterable[str] = ()) -> "InvertedIndex":
        """Atomically remove ``removed`` ids and (re-)index ``added`` documents.

        Re-adding an indexed id replaces its previous postings. Returns the
        index itself so calls can be chained.
        """

        prepared = [self._analyse(document) for document in added]
        removed_ids: Sequence[str] = tuple(removed)
        with self._lock.write():
            for doc_id in removed_ids:
                self._remove_locked(doc_id)
            for doc_id, counts in prepared:
                self._remove_locked(doc_id)
                self._add_locked(doc_id, counts)
        if prepared or removed_ids:
            LOGGER.debug(
                "Inverted index updated: +%d -%d documents",
                len(prepared),
                len(removed_ids),
            )
        return self

    # StoreListener hooks
    def validate_documents(self, documents: Sequence[Document]) -> None:
        """Any text can be indexed, so no write is rejected."""

    def documents_written(self, documents: Sequence[Document]) -> None:
        self.update(added=documents)

    def documents_deleted(self, doc_ids: Sequence[str]) -> None:
        self.update(removed=doc_ids)

    def _analyse(self, document: Document) -> _TermCounts:
        return document.doc_id, Counter(self.tokenizer.normalize(document.content))

    def _add_locked(self, doc_id: str, counts: Counter) -> None:
        for term, frequency in counts.items():
            postings = self._postings.setdefault(term, {})
            postings[doc_id] = frequency
            self._document_frequency[term] = self._document_frequency.get(term, 0) + 1
        length = sum(counts.values())
        self._doc_terms[doc_id] = counts
        self._doc_lengths[doc_id] = length
        self._total_length += length

    def _remove_locked(self, doc_id: str) -> bool:
        counts = self._doc_terms.pop(doc_id, None)
        if counts is None:
            return False
        for term in counts:
            postings = self._postings.get(term)
            if postings is None or doc_id not in postings:
                raise IndexCorruption(f"term {term!r} is missing a posting for {doc_id!r}")
            del postings[doc_id]
            remaining = self._document_frequency[term] - 1
            if remaining:
                self._document_frequency[term] = remaining
            else:
                del self._document_frequency[term]
                del self._postings[term]
        self._total_length -= self._doc_lengths.pop(doc_id)
        return True

    # ------------------------------------------------------------------
    # Invariants
    # ------------------------------------------------------------------
    def check_invariants(self) -> None:
        """Raise :class:`IndexCorruption` if the statistics disagree with the postings."""

        with self._lock.read():
            if set(self._postings) != set(self._document_frequency):
                raise IndexCorruption("document-frequency table and posting lists cover different terms")
            for term, postings in self._postings.items():
                if self._document_frequency[term] != len(postings):
                    raise IndexCorruption(
                        f"df({term!r})={self._document_frequency[term]} but it has {len(postings)} postings"
                    )
                for doc_id, frequency in postings.items():
                    if doc_id not in self._doc_lengths:
                        raise IndexCorruption(f"posting for {term!r} references removed document {doc_id!r}")
                    if frequency <= 0 or frequency > self._doc_lengths[doc_id]:
                        raise IndexCorruption(f"tf({term!r}, {doc_id!r})={frequency} is out of range")
            if self._total_length != sum(self._doc_lengths.values()):
                raise IndexCorruption("collection length total is out of sync")

    def statistics(self) -> Dict[str, object]:
        """Return a plain-dict snapshot of the term statistics (for tests and debugging)."""

        with self._lock.read():
            return {
                "document_count": len(self._doc_lengths),
                "document_frequency": dict(self._document_frequency),
                "document_lengths": dict(self._doc_lengths),
                "postings": {term: dict(entries) for term, entries in self._postings.items()},
                "total_length": self._total_length,
            }


__all__ = ["IndexView", "InvertedIndex"]
