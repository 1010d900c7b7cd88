"""Document store contract consumed by the retrieval core."""
from __future__ import annotations

import logging
import threading
from abc import ABC, abstractmethod
from enum import Enum
from typing import Dict, FrozenSet, Iterable, Iterator, List, Optional, Protocol, Sequence

from .errors import DuplicateDocumentError, InvalidArgument
from .filters import FilterExpression, matches, parse_filters
from .models import Document

LOGGER = logging.getLogger(__name__)


class StoreCapability(str, Enum):
    """Index structures a store maintains or forwards to."""

    INVERTED_INDEX = "inverted_index"
    VECTORS = "vectors"


class DuplicatePolicy(str, Enum):
    OVERWRITE = "overwrite"
    SKIP = "skip"
    FAIL = "fail"


class StoreListener(Protocol):
    """Index-update hooks a store invokes around changes to its contents.

    ``validate_documents`` runs before a write is committed and may raise to
    reject the whole batch; it is called under the store lock and must not
    call back into the store. The other hooks run after the change, outside
    any store lock.
    """

    def validate_documents(self, documents: Sequence[Document]) -> None:
        """Raise to reject documents that are about to be written."""

    def documents_written(self, documents: Sequence[Document]) -> None:
        """Called with the documents that were inserted or replaced."""

    def documents_deleted(self, doc_ids: Sequence[str]) -> None:
        """Called with the ids that were removed."""


class DocumentStore(ABC):
    """Read-side contract plus listener registration.

    The retrieval core only reads through this interface. Stores call the
    registered :class:`StoreListener` hooks after writes, outside any lock of
    their own.
    """

    capabilities: FrozenSet[StoreCapability] = frozenset()

    def __init__(self) -> None:
        self._listeners: List[StoreListener] = []

    @abstractmethod
    def get_all(self, filters: Optional[FilterExpression] = None) -> Iterator[Document]:
        """Iterate over documents matching ``filters`` (all when ``None``)."""

    @abstractmethod
    def get_by_ids(self, ids: Iterable[str]) -> List[Document]:
        """Return the documents for ``ids`` in request order, skipping unknown ids."""

    @abstractmethod
    def count(self, filters: Optional[FilterExpression] = None) -> int:
        """Count documents matching ``filters``."""

    def supports(self, capability: StoreCapability) -> bool:
        return capability in self.capabilities

    def add_listener(self, listener: StoreListener) -> None:
        if listener not in self._listeners:
            self._listeners.append(listener)

    def remove_listener(self, listener: StoreListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def _validate_with_listeners(self, documents: Sequence[Document]) -> None:
        for listener in list(self._listeners):
            listener.validate_documents(documents)

    def _notify_written(self, documents: Sequence[Document]) -> None:
        if not documents:
            return
        for listener in list(self._listeners):
            listener.documents_written(documents)

    def _notify_deleted(self, doc_ids: Sequence[str]) -> None:
        if not doc_ids:
            return
        for listener in list(self._listeners):
            listener.documents_deleted(doc_ids)


class InMemoryDocumentStore(DocumentStore):
    """Dictionary-backed store used for tests, demos and embedding in services."""

    def __init__(
        self,
        documents: Iterable[Document] | None = None,
        *,
        capabilities: Iterable[StoreCapability | str] | None = None,
    ) -> None:
        super().__init__()
        if capabilities is None:
            self.capabilities = frozenset(StoreCapability)
        else:
            self.capabilities = frozenset(StoreCapability(value) for value in capabilities)
        self._documents: Dict[str, Document] = {}
        self._lock = threading.Lock()
        if documents is not None:
            self.write_documents(documents)

    def get_all(self, filters: Optional[FilterExpression] = None) -> Iterator[Document]:
        expression = parse_filters(filters)
        with self._lock:
            snapshot = list(self._documents.values())
        for document in snapshot:
            if matches(expression, document):
                yield document

    def get_by_ids(self, ids: Iterable[str]) -> List[Document]:
        with self._lock:
            return [self._documents[doc_id] for doc_id in ids if doc_id in self._documents]

    def count(self, filters: Optional[FilterExpression] = None) -> int:
        if filters is None:
            with self._lock:
                return len(self._documents)
        return sum(1 for _ in self.get_all(filters))

    def write_documents(
        self,
        documents: Iterable[Document],
        policy: DuplicatePolicy | str = DuplicatePolicy.OVERWRITE,
    ) -> int:
        """Insert documents; returns how many were written.

        The batch is committed only if every listener accepts it. Errors from
        the post-commit index hooks propagate after the documents are stored.
        """

        policy = DuplicatePolicy(policy)
        written: List[Document] = []
        with self._lock:
            batch: Dict[str, Document] = {}
            for document in documents:
                if not isinstance(document, Document):
                    raise InvalidArgument(f"expected Document, got {type(document).__name__}")
                if document.doc_id in self._documents or document.doc_id in batch:
                    if policy is DuplicatePolicy.FAIL:
                        raise DuplicateDocumentError(f"document {document.doc_id!r} already exists")
                    if policy is DuplicatePolicy.SKIP:
                        continue
                batch[document.doc_id] = document
            written = list(batch.values())
            if written:
                self._validate_with_listeners(written)
            self._documents.update(batch)
        LOGGER.debug("Wrote %d documents (policy=%s)", len(written), policy.value)
        self._notify_written(written)
        return len(written)

    def delete_documents(self, ids: Iterable[str]) -> int:
        with self._lock:
            deleted = [doc_id for doc_id in dict.fromkeys(ids) if self._documents.pop(doc_id, None) is not None]
        LOGGER.debug("Deleted %d documents", len(deleted))
        self._notify_deleted(deleted)
        return len(deleted)


__all__ = [
    "DocumentStore",
    "DuplicatePolicy",
    "InMemoryDocumentStore",
    "StoreCapability",
    "StoreListener",
]
