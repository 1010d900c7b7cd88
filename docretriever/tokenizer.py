"""Text normalisation shared by indexing and query processing."""
from __future__ import annotations

import re
import unicodedata
from dataclasses import dataclass, field
from typing import FrozenSet, List

from nltk.stem import PorterStemmer

_WORD_PATTERN = re.compile(r"\w+(?:'\w+)*", re.UNICODE)
_WORD_OR_PUNCT_PATTERN = re.compile(r"\w+(?:'\w+)*|[^\w\s]+", re.UNICODE)

ENGLISH_STOPWORDS: FrozenSet[str] = frozenset(
    """
    a about above after again against all am an and any are as at be because
    been before being below between both but by can could did do does doing
    down during each few for from further had has have having he her here hers
    herself him himself his how i if in into is it its itself just me more
    most my myself no nor not now of off on once only or other our ours
    ourselves out over own same she should so some such than that the their
    theirs them themselves then there these they this those through to too
    under until up very was we were what when where which while who whom why
    will with would you your yours yourself yourselves
    """.split()
)


@dataclass(frozen=True, slots=True)
class TokenizerConfig:
    """Options controlling normalisation.

    Two tokenizers normalise identically exactly when their configs are equal,
    which is what the retriever checks before pairing a query tokenizer with
    an index.
    """

    strip_stopwords: bool = False
    use_stemming: bool = False
    keep_punctuation: bool = False
    stopwords: FrozenSet[str] = field(default=ENGLISH_STOPWORDS)


class Tokenizer:
    """Deterministic text → token sequence normaliser.

    Applies NFKC folding, lowercasing, word splitting and the optional
    punctuation, stopword and stemming policies from :class:`TokenizerConfig`.
    """

    def __init__(self, config: TokenizerConfig | None = None) -> None:
        self.config = config or TokenizerConfig()
        self._pattern = _WORD_OR_PUNCT_PATTERN if self.config.keep_punctuation else _WORD_PATTERN
        self._stemmer = PorterStemmer() if self.config.use_stemming else None

    def normalize(self, text: str) -> List[str]:
        if not text:
            return []
        folded = unicodedata.normalize("NFKC", text).casefold()
        tokens = self._pattern.findall(folded)
        if self.config.strip_stopwords:
            stopwords = self.config.stopwords
            tokens = [token for token in tokens if token not in stopwords]
        if self._stemmer is not None:
            tokens = [self._stem(token) for token in tokens]
        return tokens

    __call__ = normalize

    def _stem(self, token: str) -> str:
        # Punctuation runs are not stemmed; word tokens may start with "_".
        if not (token[0].isalnum() or token[0] == "_"):
            return token
        return self._stemmer.stem(token)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Tokenizer):
            return NotImplemented
        return self.config == other.config

    def __hash__(self) -> int:
        return hash(self.config)

    def __repr__(self) -> str:
        return f"Tokenizer({self.config!r})"


def normalize(text: str, config: TokenizerConfig | None = None) -> List[str]:
    """Convenience wrapper around :meth:`Tokenizer.normalize`."""

    return Tokenizer(config).normalize(text)


__all__ = ["ENGLISH_STOPWORDS", "Tokenizer", "TokenizerConfig", "normalize"]
