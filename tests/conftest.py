"""Shared fixtures for the retrieval core tests."""

from __future__ import annotations

from typing import List

import pytest

from docretriever import Document, InMemoryDocumentStore


class FakeClock:
    """Manually advanced monotonic clock for deadline tests."""

    def __init__(self, now: float = 0.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def cat_documents() -> List[Document]:
    return [
        Document(doc_id="d1", content="the cat sat", metadata={"year": 2016, "lang": "en"}),
        Document(doc_id="d2", content="the cat sat on the mat", metadata={"year": 2020, "lang": "en"}),
        Document(doc_id="d3", content="dogs bark", metadata={"year": 2018, "lang": "de"}),
    ]


@pytest.fixture()
def store(cat_documents: List[Document]) -> InMemoryDocumentStore:
    return InMemoryDocumentStore(cat_documents)
