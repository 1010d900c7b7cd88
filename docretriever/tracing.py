"""OpenTelemetry span helpers for retrieval operations.

Spans are emitted through the global tracer provider unless a tracer is
passed explicitly. Without an SDK installed by the host application the
OpenTelemetry API hands out no-op spans, so instrumentation costs nothing.
"""

from __future__ import annotations

from contextlib import contextmanager
from typing import Any, Iterator, Mapping, Optional

from opentelemetry import trace
from opentelemetry.trace import Span, Status, StatusCode, Tracer

INSTRUMENTATION_NAME = "docretriever"

ATTR_STRATEGY = "retrieval.strategy"
ATTR_TOP_K = "retrieval.top_k"
ATTR_RESULT_COUNT = "retrieval.result_count"
ATTR_CANDIDATE_COUNT = "retrieval.candidate_count"
ATTR_FILTERED = "retrieval.filtered"


def get_tracer(tracer: Optional[Tracer] = None) -> Tracer:
    if tracer is not None:
        return tracer
    return trace.get_tracer(INSTRUMENTATION_NAME)


@contextmanager
def start_span(
    name: str,
    attributes: Optional[Mapping[str, Any]] = None,
    *,
    tracer: Optional[Tracer] = None,
) -> Iterator[Span]:
    """Start ``name`` as the current span and mark it failed if the block raises."""

    with get_tracer(tracer).start_as_current_span(
        name,
        attributes=dict(attributes or {}),
        record_exception=False,
        set_status_on_exception=False,
    ) as span:
        try:
            yield span
        except Exception as exc:
            span.record_exception(exc)
            span.set_status(Status(StatusCode.ERROR, f"{type(exc).__name__}: {exc}"))
            span.set_attribute("error.type", type(exc).__name__)
            raise


__all__ = [
    "ATTR_CANDIDATE_COUNT",
    "ATTR_FILTERED",
    "ATTR_RESULT_COUNT",
    "ATTR_STRATEGY",
    "ATTR_TOP_K",
    "INSTRUMENTATION_NAME",
    "get_tracer",
    "start_span",
]
