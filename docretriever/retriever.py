"""Retriever facade: strategy dispatch, filtering, ranking and truncation."""

from __future__ import annotations

import logging
from typing import Any, Dict, FrozenSet, Iterable, List, Mapping, Optional, Sequence, Tuple, Union

from opentelemetry import trace
from opentelemetry.trace import Tracer

from .concurrency import Deadline, check_deadline
from .config import RetrieverConfig, validate_top_k
from .dense import BaseVectorIndex, VectorIndex
from .encoders import BaseEncoder
from .errors import DimensionMismatch, InvalidArgument, RetrievalError, UnsupportedStrategy
from .filters import FilterExpression, matches, parse_filters
from .models import Document, ScoredResult, SimilarityMetric, Strategy, ensure_vector
from .sparse import InvertedIndex, SparseScorer, scorer_for
from .store import DocumentStore, StoreCapability
from .tokenizer import Tokenizer
from .tracing import (
    ATTR_CANDIDATE_COUNT,
    ATTR_FILTERED,
    ATTR_RESULT_COUNT,
    ATTR_STRATEGY,
    ATTR_TOP_K,
    start_span,
)
from .utils import QueryVectorCache, rank_scores, sigmoid

LOGGER = logging.getLogger(__name__)

FilterInput = Union[FilterExpression, Mapping[str, Any], None]

REQUIRED_CAPABILITY: Mapping[Strategy, StoreCapability] = {
    Strategy.SPARSE_TFIDF: StoreCapability.INVERTED_INDEX,
    Strategy.SPARSE_BM25: StoreCapability.INVERTED_INDEX,
    Strategy.DENSE: StoreCapability.VECTORS,
}

# Ranked sparse candidates are fetched from the store in pages of this size
# (or ``2 * top_k`` if larger) while post-filtering.
_FILTER_PAGE_SIZE = 32


def capabilities(store: DocumentStore) -> FrozenSet[StoreCapability]:
    """Return the index capabilities advertised by ``store``."""

    return frozenset(store.capabilities)


def supported_strategies(store: DocumentStore) -> FrozenSet[Strategy]:
    """Strategies a retriever over ``store`` can be configured with.

    Dense retrieval additionally needs an encoder; see
    :meth:`Retriever.supports` for the check including collaborators.
    """

    available = capabilities(store)
    return frozenset(strategy for strategy, needed in REQUIRED_CAPABILITY.items() if needed in available)


class Retriever:
    """Externally visible entry point of the retrieval core.

    The retriever reads documents through a :class:`DocumentStore`, keeps an
    :class:`InvertedIndex` and/or a vector index in sync through the store's
    listener hooks and answers queries with ranked :class:`ScoredResult`
    lists. Filters are applied after scoring and before truncation: they decide
    whether a document appears, never its score.

    Indexes the retriever builds itself, and supplied indexes that are still
    empty, are filled from the store on construction. A supplied index that
    already holds documents is used as is; call :meth:`sync` to reconcile it.
    """

    def __init__(
        self,
        store: DocumentStore,
        *,
        config: RetrieverConfig | None = None,
        encoder: BaseEncoder | None = None,
        inverted_index: InvertedIndex | None = None,
        vector_index: BaseVectorIndex | None = None,
        tokenizer: Tokenizer | None = None,
        tracer: Tracer | None = None,
        auto_sync: bool = True,
    ) -> None:
        self.config = config or RetrieverConfig()
        self._store = store
        self._encoder = encoder
        self._tracer = tracer
        available = capabilities(store)

        if tokenizer is None:
            tokenizer = inverted_index.tokenizer if inverted_index is not None else Tokenizer(
                self.config.tokenizer_config()
            )
        elif inverted_index is not None and inverted_index.tokenizer != tokenizer:
            raise InvalidArgument(
                f"query tokenizer {tokenizer!r} differs from the index tokenizer {inverted_index.tokenizer!r}"
            )
        self._tokenizer = tokenizer

        if inverted_index is None and StoreCapability.INVERTED_INDEX in available:
            inverted_index = InvertedIndex(self._tokenizer)
        self._inverted_index = inverted_index

        if vector_index is None and encoder is not None and StoreCapability.VECTORS in available:
            vector_index = VectorIndex(encoder.dimension, self.config.similarity_metric)
        self._vector_index = vector_index
        if encoder is not None and vector_index is not None and encoder.dimension != vector_index.dimension:
            raise DimensionMismatch(vector_index.dimension, encoder.dimension, context="encoder")
        if vector_index is not None and vector_index.metric is not self.config.similarity_metric:
            raise InvalidArgument(
                f"vector index uses {vector_index.metric.value} but the configuration asks for "
                f"{self.config.similarity_metric.value}"
            )

        self._require(self.config.strategy)

        self._query_cache = QueryVectorCache(self.config.query_cache_size) if self.config.query_cache_size else None

        # Empty indexes, built here or supplied, are filled from the store.
        fill_sparse = (
            inverted_index is not None and StoreCapability.INVERTED_INDEX in available and len(inverted_index) == 0
        )
        fill_dense = vector_index is not None and StoreCapability.VECTORS in available and len(vector_index) == 0
        if fill_sparse or fill_dense:
            self._index_documents(list(store.get_all()), sparse=fill_sparse, dense=fill_dense)
        self._attached = False
        if auto_sync:
            self.attach()

    # ------------------------------------------------------------------
    # Capabilities
    # ------------------------------------------------------------------
    @property
    def store(self) -> DocumentStore:
        return self._store

    @property
    def inverted_index(self) -> Optional[InvertedIndex]:
        return self._inverted_index

    @property
    def vector_index(self) -> Optional[BaseVectorIndex]:
        return self._vector_index

    @property
    def tokenizer(self) -> Tokenizer:
        return self._tokenizer

    @property
    def query_cache(self) -> Optional[QueryVectorCache]:
        return self._query_cache

    def supports(self, strategy: Strategy | str) -> bool:
        return self._unsupported_reason(Strategy.parse(strategy)) is None

    def supported_strategies(self) -> FrozenSet[Strategy]:
        return frozenset(strategy for strategy in Strategy if self.supports(strategy))

    def _unsupported_reason(self, strategy: Strategy) -> Optional[str]:
        needed = REQUIRED_CAPABILITY[strategy]
        if needed not in capabilities(self._store):
            return f"{type(self._store).__name__} does not provide {needed.value} storage required by {strategy.value}"
        if strategy.is_sparse and self._inverted_index is None:
            return f"{strategy.value} requires an inverted index"
        if strategy is Strategy.DENSE and (self._vector_index is None or self._encoder is None):
            return "dense retrieval requires both an encoder and a vector index"
        return None

    def _require(self, strategy: Strategy) -> None:
        reason = self._unsupported_reason(strategy)
        if reason is not None:
            raise UnsupportedStrategy(reason)

    # ------------------------------------------------------------------
    # Index maintenance
    # ------------------------------------------------------------------
    def attach(self) -> None:
        """Register the index-update hooks on the store."""

        if not self._attached:
            self._store.add_listener(self)
            self._attached = True

    def detach(self) -> None:
        if self._attached:
            self._store.remove_listener(self)
            self._attached = False

    def sync(self) -> None:
        """Rebuild the managed indexes from the store's current contents."""

        documents = list(self._store.get_all())
        live = {document.doc_id for document in documents}
        with start_span("docretriever.sync", {"index.document_count": len(documents)}, tracer=self._tracer):
            vectors = self._prepare_vectors(documents) if self._vector_index is not None else []
            if self._inverted_index is not None:
                stale = set(self._inverted_index.document_ids()) - live
                self._inverted_index.update(added=documents, removed=stale)
            if self._vector_index is not None:
                self._vector_index.documents_deleted(sorted(set(self._vector_index.document_ids()) - live))
                self._vector_index.add_many(vectors)
        LOGGER.info("Synchronised indexes with store: %d documents", len(documents))

    def validate_documents(self, documents: Sequence[Document]) -> None:
        """Reject a store write the vector index could not accept.

        Runs before the store commits. Precomputed embeddings must match the
        index dimension and documents without one need an encoder.
        """

        if self._vector_index is None:
            return
        for document in documents:
            if document.embedding is not None:
                self._vector_index.check_dimension(document.embedding, context=f"embedding of {document.doc_id!r}")
            elif self._encoder is None:
                raise UnsupportedStrategy(
                    f"document {document.doc_id!r} has no embedding and no encoder is configured"
                )

    def documents_written(self, documents: Sequence[Document]) -> None:
        self._index_documents(
            documents,
            sparse=self._inverted_index is not None,
            dense=self._vector_index is not None,
        )

    def documents_deleted(self, doc_ids: Sequence[str]) -> None:
        if self._inverted_index is not None:
            self._inverted_index.update(removed=doc_ids)
        if self._vector_index is not None:
            self._vector_index.documents_deleted(doc_ids)

    def _index_documents(self, documents: Sequence[Document], *, sparse: bool, dense: bool) -> None:
        # Vectors are built and checked before either index changes, so an
        # encoder or dimension error leaves both indexes untouched.
        vectors = self._prepare_vectors(documents) if dense and self._vector_index is not None else []
        if sparse and self._inverted_index is not None:
            self._inverted_index.update(added=documents)
        if vectors:
            self._vector_index.add_many(vectors)

    def _prepare_vectors(self, documents: Sequence[Document]) -> List[Tuple[str, List[float]]]:
        assert self._vector_index is not None
        vectors = []
        for document in documents:
            vector = self._embed_document(document)
            self._vector_index.check_dimension(vector, context=f"embedding of {document.doc_id!r}")
            vectors.append((document.doc_id, vector))
        return vectors

    def _embed_document(self, document: Document) -> List[float]:
        if document.embedding is not None:
            return ensure_vector(document.embedding)
        if self._encoder is None:
            raise UnsupportedStrategy(f"document {document.doc_id!r} has no embedding and no encoder is configured")
        return self._encoder.encode(document.content, context=f"embedding of {document.doc_id!r}")

    # ------------------------------------------------------------------
    # Retrieval
    # ------------------------------------------------------------------
    def retrieve(
        self,
        query_text: str,
        top_k: Optional[int] = None,
        filters: FilterInput = None,
        strategy: Strategy | str | None = None,
        *,
        timeout: Optional[float] = None,
        scale_score: Optional[bool] = None,
    ) -> List[ScoredResult]:
        """Return at most ``top_k`` results, best first, ties broken by ascending doc id.

        Options left as ``None`` fall back to :attr:`config`. Raises
        :class:`InvalidArgument`, :class:`UnsupportedStrategy`,
        :class:`DimensionMismatch` or :class:`RetrievalTimeout`.
        """

        if not isinstance(query_text, str):
            raise InvalidArgument(f"query must be a string, got {type(query_text).__name__}")
        plan = self._plan(top_k, filters, strategy, timeout, scale_score)
        resolved_strategy = plan[1]
        with start_span("docretriever.retrieve", self._span_attributes(plan), tracer=self._tracer) as span:
            try:
                if resolved_strategy.is_sparse:
                    results = self._retrieve_sparse(query_text, *plan)
                else:
                    query_vector = self._encode_query(query_text)
                    results = self._retrieve_dense(query_vector, *plan)
            except RetrievalError as exc:
                LOGGER.warning("Retrieval failed (%s): %s", resolved_strategy.value, exc)
                raise
            span.set_attribute(ATTR_RESULT_COUNT, len(results))
        LOGGER.debug(
            "Retrieved %d results for %r (%s, top_k=%d)",
            len(results),
            query_text,
            resolved_strategy.value,
            plan[0],
        )
        return results

    def retrieve_by_vector(
        self,
        query_vector: Iterable[float],
        top_k: Optional[int] = None,
        filters: FilterInput = None,
        *,
        timeout: Optional[float] = None,
        scale_score: Optional[bool] = None,
    ) -> List[ScoredResult]:
        """Dense retrieval for callers that already hold a query embedding."""

        if self._vector_index is None or StoreCapability.VECTORS not in capabilities(self._store):
            raise UnsupportedStrategy("vector search requires a vector index over a store with vector storage")
        plan = self._plan(top_k, filters, Strategy.DENSE, timeout, scale_score, check_strategy=False)
        vector = ensure_vector(query_vector)
        self._vector_index.check_dimension(vector, context="query vector")
        with start_span("docretriever.retrieve_by_vector", self._span_attributes(plan), tracer=self._tracer) as span:
            try:
                results = self._retrieve_dense(vector, *plan)
            except RetrievalError as exc:
                LOGGER.warning("Vector retrieval failed: %s", exc)
                raise
            span.set_attribute(ATTR_RESULT_COUNT, len(results))
        return results

    def retrieve_batch(
        self,
        queries: Sequence[str],
        top_k: Optional[int] = None,
        filters: FilterInput = None,
        strategy: Strategy | str | None = None,
        *,
        timeout: Optional[float] = None,
        scale_score: Optional[bool] = None,
    ) -> List[List[ScoredResult]]:
        """Run :meth:`retrieve` for each query; ``timeout`` applies per query."""

        if isinstance(queries, str):
            raise InvalidArgument("retrieve_batch expects a sequence of queries, not a single string")
        return [
            self.retrieve(query, top_k, filters, strategy, timeout=timeout, scale_score=scale_score)
            for query in queries
        ]

    def _plan(
        self,
        top_k: Optional[int],
        filters: FilterInput,
        strategy: Strategy | str | None,
        timeout: Optional[float],
        scale_score: Optional[bool],
        *,
        check_strategy: bool = True,
    ) -> Tuple[int, Strategy, Optional[FilterExpression], Optional[Deadline], bool]:
        resolved_top_k = validate_top_k(self.config.top_k if top_k is None else top_k)
        resolved_strategy = self.config.strategy if strategy is None else Strategy.parse(strategy)
        if check_strategy:
            self._require(resolved_strategy)
        expression = self.config.filters if filters is None else parse_filters(filters)
        deadline = Deadline.from_timeout(self.config.timeout_s if timeout is None else timeout)
        scale = self.config.scale_score if scale_score is None else scale_score
        return resolved_top_k, resolved_strategy, expression, deadline, scale

    @staticmethod
    def _span_attributes(plan: Tuple[int, Strategy, Optional[FilterExpression], Optional[Deadline], bool]) -> Dict[str, Any]:
        top_k, strategy, expression, _, _ = plan
        return {ATTR_STRATEGY: strategy.value, ATTR_TOP_K: top_k, ATTR_FILTERED: expression is not None}

    def _encode_query(self, query_text: str) -> List[float]:
        assert self._encoder is not None and self._vector_index is not None
        if self._query_cache is not None:
            cached = self._query_cache.lookup(query_text)
            if cached is not None:
                return cached
        vector = self._encoder.encode(query_text, context="query embedding")
        if self._query_cache is not None:
            self._query_cache.store(query_text, vector)
        return vector

    def _retrieve_sparse(
        self,
        query_text: str,
        top_k: int,
        strategy: Strategy,
        expression: Optional[FilterExpression],
        deadline: Optional[Deadline],
        scale: bool,
    ) -> List[ScoredResult]:
        assert self._inverted_index is not None
        scorer: SparseScorer = scorer_for(strategy, k1=self.config.bm25_k1, b=self.config.bm25_b)
        tokens = self._tokenizer.normalize(query_text)
        scores = scorer.score(self._inverted_index, tokens, deadline=deadline)
        # Documents whose shared terms carry no weight are not relevant.
        candidates = [(doc_id, value) for doc_id, value in scores.items() if value > 0.0]
        self._record_candidates(len(candidates))
        if expression is None:
            ranked = rank_scores(candidates, top_k)
            documents = self._fetch(ranked, deadline)
            hits = [(doc_id, value) for doc_id, value in ranked if doc_id in documents]
        else:
            ranked = rank_scores(candidates)
            hits, documents = self._post_filter(ranked, expression, top_k, deadline)
        return self._to_results(hits[:top_k], documents, strategy, scale)

    def _retrieve_dense(
        self,
        query_vector: List[float],
        top_k: int,
        strategy: Strategy,
        expression: Optional[FilterExpression],
        deadline: Optional[Deadline],
        scale: bool,
    ) -> List[ScoredResult]:
        assert self._vector_index is not None
        allowed: Optional[set] = None
        if expression is not None:
            # Pre-filter through the store; the filter never touches similarity
            # scores so this ranks exactly like scoring first and filtering after.
            allowed = {document.doc_id for document in self._store.get_all(expression)}
            check_deadline(deadline, "filter evaluation")
            if not allowed:
                return []
        hits = self._vector_index.search(query_vector, top_k, doc_ids=allowed, deadline=deadline)
        self._record_candidates(len(hits))
        documents = self._fetch(hits, deadline)
        hits = [(doc_id, value) for doc_id, value in hits if doc_id in documents]
        return self._to_results(hits, documents, Strategy.DENSE, scale)

    def _post_filter(
        self,
        ranked: List[Tuple[str, float]],
        expression: FilterExpression,
        top_k: int,
        deadline: Optional[Deadline],
    ) -> Tuple[List[Tuple[str, float]], Dict[str, Document]]:
        page_size = max(_FILTER_PAGE_SIZE, 2 * top_k)
        kept: List[Tuple[str, float]] = []
        documents: Dict[str, Document] = {}
        for start in range(0, len(ranked), page_size):
            page = ranked[start : start + page_size]
            fetched = self._fetch(page, deadline)
            for doc_id, value in page:
                document = fetched.get(doc_id)
                if document is not None and matches(expression, document):
                    kept.append((doc_id, value))
                    documents[doc_id] = document
                    if len(kept) == top_k:
                        return kept, documents
        return kept, documents

    def _fetch(self, hits: Sequence[Tuple[str, float]], deadline: Optional[Deadline]) -> Dict[str, Document]:
        if not hits:
            return {}
        documents = {document.doc_id: document for document in self._store.get_by_ids([doc_id for doc_id, _ in hits])}
        check_deadline(deadline, "document fetch")
        missing = len(hits) - len(documents)
        if missing:
            LOGGER.debug("%d indexed documents were no longer in the store", missing)
        return documents

    def _to_results(
        self,
        hits: Sequence[Tuple[str, float]],
        documents: Mapping[str, Document],
        strategy: Strategy,
        scale: bool,
    ) -> List[ScoredResult]:
        return [
            ScoredResult(
                doc_id=doc_id,
                score=self._scale(value, strategy) if scale else value,
                rank=rank,
                document=documents.get(doc_id),
            )
            for rank, (doc_id, value) in enumerate(hits, start=1)
        ]

    def _scale(self, value: float, strategy: Strategy) -> float:
        """Map a raw score into (0, 1) without changing the ranking."""

        if strategy.is_sparse:
            return sigmoid(value, scale=8.0)
        if self.config.similarity_metric is SimilarityMetric.COSINE:
            return (value + 1.0) / 2.0
        return sigmoid(value, scale=100.0)

    @staticmethod
    def _record_candidates(count: int) -> None:
        trace.get_current_span().set_attribute(ATTR_CANDIDATE_COUNT, count)


__all__ = ["REQUIRED_CAPABILITY", "Retriever", "capabilities", "supported_strategies"]
