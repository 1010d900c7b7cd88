"""Encoder contract for the dense path, plus a model-free hashing encoder."""
from __future__ import annotations

import hashlib
from abc import ABC, abstractmethod
from typing import Iterable, List

from .errors import DimensionMismatch, InvalidArgument
from .models import Vector, ensure_vector
from .tokenizer import Tokenizer
from .utils import l2_norm


class BaseEncoder(ABC):
    """Maps text to a fixed-size vector.

    Implementations provide :attr:`dimension` and :meth:`embed`. ``embed``
    must return the same vector for the same text within one model version;
    the retriever relies on that when it caches query embeddings.
    """

    @property
    @abstractmethod
    def dimension(self) -> int:
        ...

    @abstractmethod
    def embed(self, text: str) -> Vector:
        ...

    def encode(self, text: str, *, context: str = "encoder output") -> Vector:
        """Embed ``text`` and check the result has :attr:`dimension` entries."""

        vector = ensure_vector(self.embed(text))
        if len(vector) != self.dimension:
            raise DimensionMismatch(self.dimension, len(vector), context=context)
        return vector

    def encode_batch(self, texts: Iterable[str]) -> List[Vector]:
        return [self.encode(text) for text in texts]


class HashingEncoder(BaseEncoder):
    """Feature-hashing bag-of-words encoder.

    Each token is hashed with BLAKE2b to a bucket and a sign; the vector is
    L2-normalised. Useful wherever a deterministic, model-free encoder is
    needed.
    """

    def __init__(self, dimension: int = 64, tokenizer: Tokenizer | None = None, *, normalize: bool = True) -> None:
        if dimension <= 0:
            raise InvalidArgument("dimension must be positive")
        self._dimension = dimension
        self._tokenizer = tokenizer or Tokenizer()
        self._normalize = normalize

    @property
    def dimension(self) -> int:
        return self._dimension

    def embed(self, text: str) -> Vector:
        vector = [0.0] * self._dimension
        for token in self._tokenizer.normalize(text):
            digest = hashlib.blake2b(token.encode("utf-8"), digest_size=8).digest()
            bucket = int.from_bytes(digest[:4], "big") % self._dimension
            sign = 1.0 if digest[4] & 1 else -1.0
            vector[bucket] += sign
        if self._normalize:
            norm = l2_norm(vector)
            if norm:
                vector = [value / norm for value in vector]
        return vector


__all__ = ["BaseEncoder", "HashingEncoder"]
