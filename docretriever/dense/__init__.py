"""Dense retrieval: vector indexes keyed by document id."""

from .hnsw import HnswVectorIndex
from .index import BaseVectorIndex, VectorHit, VectorIndex, validate_k

__all__ = ["BaseVectorIndex", "HnswVectorIndex", "VectorHit", "VectorIndex", "validate_k"]
