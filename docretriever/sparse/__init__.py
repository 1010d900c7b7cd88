"""Sparse lexical retrieval: inverted index plus TF-IDF/BM25 scoring."""

from .index import IndexView, InvertedIndex
from .scoring import Bm25Scorer, SparseScorer, TfIdfScorer, score, scorer_for

__all__ = [
    "Bm25Scorer",
    "IndexView",
    "InvertedIndex",
    "SparseScorer",
    "TfIdfScorer",
    "score",
    "scorer_for",
]
