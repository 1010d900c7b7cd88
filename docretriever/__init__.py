"""Document retrieval core: sparse (TF-IDF/BM25) and dense ranking over a document store."""

from .config import RetrieverConfig
from .dense import HnswVectorIndex, VectorIndex
from .encoders import BaseEncoder, HashingEncoder
from .errors import (
    ConfigurationError,
    DimensionMismatch,
    DuplicateDocumentError,
    IndexCorruption,
    InvalidArgument,
    RetrievalError,
    RetrievalTimeout,
    UnsupportedStrategy,
)
from .filters import And, Not, Or, Predicate, evaluate, parse_filters
from .models import Document, ScoredResult, SimilarityMetric, Strategy
from .retriever import Retriever, capabilities, supported_strategies
from .sparse import Bm25Scorer, InvertedIndex, TfIdfScorer
from .store import DocumentStore, InMemoryDocumentStore, StoreCapability
from .tokenizer import Tokenizer, TokenizerConfig

__all__ = [
    "And",
    "BaseEncoder",
    "Bm25Scorer",
    "ConfigurationError",
    "DimensionMismatch",
    "Document",
    "DocumentStore",
    "DuplicateDocumentError",
    "HashingEncoder",
    "HnswVectorIndex",
    "InMemoryDocumentStore",
    "IndexCorruption",
    "InvalidArgument",
    "InvertedIndex",
    "Not",
    "Or",
    "Predicate",
    "RetrievalError",
    "RetrievalTimeout",
    "Retriever",
    "RetrieverConfig",
    "ScoredResult",
    "SimilarityMetric",
    "StoreCapability",
    "Strategy",
    "TfIdfScorer",
    "Tokenizer",
    "TokenizerConfig",
    "UnsupportedStrategy",
    "VectorIndex",
    "capabilities",
    "evaluate",
    "parse_filters",
    "supported_strategies",
]
