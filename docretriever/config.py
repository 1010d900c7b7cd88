"""Configuration surface for the retriever facade."""

from __future__ import annotations

import os
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

import yaml

from .errors import ConfigurationError, InvalidArgument
from .filters import FilterExpression, parse_filters
from .models import SimilarityMetric, Strategy
from .tokenizer import TokenizerConfig

ENV_PREFIX = "DOCRETRIEVER_"


def validate_top_k(top_k: object) -> int:
    if isinstance(top_k, bool) or not isinstance(top_k, int):
        raise InvalidArgument(f"top_k must be a positive integer, got {top_k!r}")
    if top_k <= 0:
        raise InvalidArgument(f"top_k must be a positive integer, got {top_k}")
    return top_k


@dataclass(slots=True)
class RetrieverConfig:
    """Recognised retriever options.

    ``filters`` accepts a :data:`~docretriever.filters.FilterExpression` or the
    mapping syntax understood by :func:`~docretriever.filters.parse_filters`;
    it is stored in parsed form. ``query_cache_size`` bounds the cache of
    query embeddings kept by each retriever; 0 disables it.
    """

    top_k: int = 10
    filters: Optional[FilterExpression] = None
    strategy: Strategy = Strategy.SPARSE_BM25
    bm25_k1: float = 1.2
    bm25_b: float = 0.75
    similarity_metric: SimilarityMetric = SimilarityMetric.COSINE
    scale_score: bool = False
    timeout_s: Optional[float] = None
    strip_stopwords: bool = False
    use_stemming: bool = False
    query_cache_size: int = 256

    def __post_init__(self) -> None:
        validate_top_k(self.top_k)
        self.strategy = Strategy.parse(self.strategy)
        self.similarity_metric = SimilarityMetric.parse(self.similarity_metric)
        self.filters = parse_filters(self.filters)
        if self.bm25_k1 < 0:
            raise InvalidArgument("bm25_k1 must be non-negative")
        if not 0.0 <= self.bm25_b <= 1.0:
            raise InvalidArgument("bm25_b must be within [0, 1]")
        if self.timeout_s is not None and self.timeout_s <= 0:
            raise InvalidArgument("timeout_s must be positive")
        cache_size = self.query_cache_size
        if isinstance(cache_size, bool) or not isinstance(cache_size, int) or cache_size < 0:
            raise InvalidArgument("query_cache_size must be a non-negative integer")

    def tokenizer_config(self) -> TokenizerConfig:
        return TokenizerConfig(strip_stopwords=self.strip_stopwords, use_stemming=self.use_stemming)

    @staticmethod
    def _parse_bool(value: str | None, default: bool) -> bool:
        if value is None:
            return default
        normalized = value.strip().lower()
        if normalized in {"1", "true", "yes", "on"}:
            return True
        if normalized in {"0", "false", "no", "off"}:
            return False
        return default

    @staticmethod
    def _parse_number(name: str, value: str, kind: type) -> Any:
        try:
            return kind(value.strip())
        except ValueError as exc:
            raise ConfigurationError(f"{name}={value!r} is not a valid {kind.__name__}") from exc

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None, *, prefix: str = ENV_PREFIX) -> "RetrieverConfig":
        """Create a configuration from ``DOCRETRIEVER_*`` environment variables."""

        mapping = env if env is not None else os.environ
        values: Dict[str, Any] = {}

        def raw(name: str) -> Optional[str]:
            value = mapping.get(prefix + name.upper())
            if value is None or value.strip() == "":
                return None
            return value

        if (top_k := raw("top_k")) is not None:
            values["top_k"] = cls._parse_number(prefix + "TOP_K", top_k, int)
        if (cache_size := raw("query_cache_size")) is not None:
            values["query_cache_size"] = cls._parse_number(prefix + "QUERY_CACHE_SIZE", cache_size, int)
        for name in ("bm25_k1", "bm25_b", "timeout_s"):
            if (value := raw(name)) is not None:
                values[name] = cls._parse_number(prefix + name.upper(), value, float)
        if (strategy := raw("strategy")) is not None:
            values["strategy"] = strategy
        if (metric := raw("similarity_metric")) is not None:
            values["similarity_metric"] = metric
        for name in ("scale_score", "strip_stopwords", "use_stemming"):
            values[name] = cls._parse_bool(raw(name), False)
        return cls(**values)

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "RetrieverConfig":
        known = {item.name for item in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise ConfigurationError(f"unknown retriever options: {', '.join(unknown)}")
        return cls(**dict(data))

    @classmethod
    def from_yaml(cls, path: str | Path) -> "RetrieverConfig":
        """Load options from a YAML file; a top-level ``retriever`` key is optional."""

        config_path = Path(path)
        if not config_path.exists():
            raise FileNotFoundError(f"Retriever config '{config_path}' does not exist")
        try:
            data = yaml.safe_load(config_path.read_text()) or {}
        except yaml.YAMLError as exc:
            raise ConfigurationError(f"cannot parse {config_path}: {exc}") from exc
        if not isinstance(data, Mapping):
            raise ConfigurationError(f"{config_path} must contain a mapping")
        if "retriever" in data and isinstance(data["retriever"], Mapping):
            data = data["retriever"]
        return cls.from_mapping(data)

    def into_dict(self) -> Dict[str, Any]:
        return {
            "top_k": self.top_k,
            "filters": self.filters,
            "strategy": self.strategy.value,
            "bm25_k1": self.bm25_k1,
            "bm25_b": self.bm25_b,
            "similarity_metric": self.similarity_metric.value,
            "scale_score": self.scale_score,
            "timeout_s": self.timeout_s,
            "strip_stopwords": self.strip_stopwords,
            "use_stemming": self.use_stemming,
            "query_cache_size": self.query_cache_size,
        }


__all__ = ["ENV_PREFIX", "RetrieverConfig", "validate_top_k"]
