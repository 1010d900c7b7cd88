"""Error taxonomy shared by the retrieval core."""

from __future__ import annotations


class RetrievalError(Exception):
    """Base class for every error surfaced by :mod:`docretriever`."""


class InvalidArgument(RetrievalError, ValueError):
    """Raised for bad caller input such as a non-positive ``top_k`` or a malformed filter."""


class DimensionMismatch(RetrievalError, ValueError):
    """Raised when a vector does not match the dimensionality of its index."""

    def __init__(self, expected: int, actual: int, *, context: str = "vector") -> None:
        super().__init__(f"{context} dimension {actual} does not match index dimension {expected}")
        self.expected = expected
        self.actual = actual


class UnsupportedStrategy(RetrievalError):
    """Raised when the configured collaborators cannot serve a retrieval strategy."""


class RetrievalTimeout(RetrievalError, TimeoutError):
    """Raised when a retrieval exceeds its deadline.

    Distinct from an empty result list: a timed-out query never returns a
    partial ranking.
    """


class ConfigurationError(RetrievalError):
    """Raised when configuration values cannot be parsed."""


class DuplicateDocumentError(RetrievalError):
    """Raised when a store refuses to overwrite an existing document id."""


class IndexCorruption(AssertionError):
    """Raised when index structures violate their consistency invariants.

    This is a programming error: callers must not catch it and continue.
    """


__all__ = [
    "ConfigurationError",
    "DimensionMismatch",
    "DuplicateDocumentError",
    "IndexCorruption",
    "InvalidArgument",
    "RetrievalError",
    "RetrievalTimeout",
    "UnsupportedStrategy",
]
