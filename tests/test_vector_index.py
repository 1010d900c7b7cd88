from __future__ import annotations

import math
import random

import pytest

from docretriever import DimensionMismatch, HnswVectorIndex, InvalidArgument, RetrievalTimeout, VectorIndex
from docretriever.concurrency import Deadline
from docretriever.models import SimilarityMetric


def _unit(angle: float) -> list:
    return [math.cos(angle), math.sin(angle)]


def test_cosine_search_orders_by_similarity() -> None:
    index = VectorIndex(dimension=2)
    index.add_many([("east", [1.0, 0.0]), ("north", [0.0, 1.0]), ("north-east", [1.0, 1.0])])

    hits = index.search([2.0, 0.1], k=3)

    assert [doc_id for doc_id, _ in hits] == ["east", "north-east", "north"]
    assert hits[0][1] == pytest.approx(2.0 / math.sqrt(4.01))


def test_dot_product_uses_raw_inner_product() -> None:
    index = VectorIndex(dimension=2, metric="dot_product")
    index.add("small", [1.0, 0.0])
    index.add("large", [5.0, 0.0])

    hits = index.search([1.0, 0.0], k=2)

    assert hits == [("large", 5.0), ("small", 1.0)]


def test_zero_vector_scores_zero_under_cosine() -> None:
    index = VectorIndex(dimension=2)
    index.add("zero", [0.0, 0.0])
    index.add("one", [1.0, 0.0])

    assert dict(index.search([0.0, 0.0], k=2)) == {"one": 0.0, "zero": 0.0}


def test_ties_break_by_document_id() -> None:
    index = VectorIndex(dimension=2)
    for doc_id in ("c", "a", "b"):
        index.add(doc_id, [1.0, 1.0])

    assert [doc_id for doc_id, _ in index.search([1.0, 1.0], k=2)] == ["a", "b"]


def _random_points(count: int, seed: int = 7) -> list:
    rng = random.Random(seed)
    return [(f"doc-{i:03d}", [rng.uniform(-1.0, 1.0) for _ in range(4)]) for i in range(count)]


@pytest.mark.parametrize(
    "factory",
    [lambda: VectorIndex(dimension=4), lambda: HnswVectorIndex(dimension=4, m=4, ef_search=8)],
)
def test_repeated_search_on_unchanged_index_is_identical(factory) -> None:
    index = factory()
    index.add_many(_random_points(60))
    index.add_many([("tie-b", [0.5, 0.5, 0.5, 0.5]), ("tie-a", [0.5, 0.5, 0.5, 0.5])])
    query = [0.5, 0.5, 0.5, 0.5]

    first = index.search(query, k=10)
    second = index.search(query, k=10)

    assert first == second
    assert len(first) == 10
    assert index.search(query, k=10, doc_ids=["doc-001", "tie-a", "tie-b"]) == index.search(
        query, k=10, doc_ids=["doc-001", "tie-a", "tie-b"]
    )


def test_search_returns_fewer_than_k_when_index_is_small() -> None:
    index = VectorIndex(dimension=2)
    assert index.search([1.0, 0.0], k=5) == []
    index.add("only", [1.0, 0.0])
    assert len(index.search([1.0, 0.0], k=5)) == 1


def test_dimension_is_enforced_for_inserts_and_queries() -> None:
    index = VectorIndex(dimension=3)

    with pytest.raises(DimensionMismatch) as excinfo:
        index.add("bad", [1.0, 0.0])
    assert excinfo.value.expected == 3
    assert excinfo.value.actual == 2
    with pytest.raises(DimensionMismatch):
        index.search([1.0], k=1)


@pytest.mark.parametrize("k", [0, -1, True, 1.5])
def test_invalid_k_is_rejected(k) -> None:
    index = VectorIndex(dimension=2)
    with pytest.raises(InvalidArgument):
        index.search([1.0, 0.0], k=k)


def test_search_metric_must_match_index_metric() -> None:
    index = VectorIndex(dimension=2, metric=SimilarityMetric.COSINE)
    index.add("a", [1.0, 0.0])

    assert index.search([1.0, 0.0], k=1, metric="cosine")
    with pytest.raises(InvalidArgument):
        index.search([1.0, 0.0], k=1, metric=SimilarityMetric.DOT_PRODUCT)


def test_candidate_restriction_and_removal() -> None:
    index = VectorIndex(dimension=2)
    index.add_many([("a", [1.0, 0.0]), ("b", [0.9, 0.1]), ("c", [0.0, 1.0])])

    assert [doc_id for doc_id, _ in index.search([1.0, 0.0], k=3, doc_ids={"b", "c"})] == ["b", "c"]
    assert index.remove("a") is True
    assert index.remove("a") is False
    assert "a" not in index
    index.documents_deleted(["b", "missing"])
    assert index.document_ids() == ["c"]


def test_replacing_a_vector_changes_results() -> None:
    index = VectorIndex(dimension=2)
    index.add("a", [1.0, 0.0])
    index.add("a", [0.0, 1.0])

    assert index.get_vector("a") == [0.0, 1.0]
    assert len(index) == 1


def test_expired_deadline_aborts_search(clock) -> None:
    index = VectorIndex(dimension=2)
    index.add("a", [1.0, 0.0])
    deadline = Deadline(0.5, clock=clock)
    clock.now = 1.0

    with pytest.raises(RetrievalTimeout):
        index.search([1.0, 0.0], k=1, deadline=deadline)


def test_hnsw_is_exact_when_graph_is_complete() -> None:
    rng = random.Random(11)
    points = {f"p{i:02d}": [rng.uniform(-1, 1) for _ in range(4)] for i in range(12)}
    exact = VectorIndex(dimension=4)
    approx = HnswVectorIndex(dimension=4, m=11, ef_search=12)
    exact.add_many(points.items())
    approx.add_many(points.items())

    for _ in range(10):
        query = [rng.uniform(-1, 1) for _ in range(4)]
        expected = exact.search(query, k=5)
        actual = approx.search(query, k=5)
        assert [doc_id for doc_id, _ in actual] == [doc_id for doc_id, _ in expected]
        for (_, got), (_, want) in zip(actual, expected):
            assert got == pytest.approx(want)


def test_hnsw_keeps_degree_bound_and_survives_removals() -> None:
    index = HnswVectorIndex(dimension=2, m=2, ef_search=8)
    for position in range(10):
        index.add(f"v{position}", _unit(position * 0.3))

    for doc_id in index.document_ids():
        assert len(index.neighbors(doc_id)) <= 2

    index.remove("v0")
    index.remove("v5")
    remaining = index.document_ids()
    assert "v0" not in remaining and "v5" not in remaining
    for doc_id in remaining:
        assert "v0" not in index.neighbors(doc_id)
        assert "v5" not in index.neighbors(doc_id)

    hits = index.search(_unit(0.3), k=1)
    assert hits[0][0] == "v1"


def test_hnsw_finds_nearest_in_a_single_cluster() -> None:
    index = HnswVectorIndex(dimension=2, m=4, ef_search=16)
    for position in range(20):
        index.add(f"v{position:02d}", _unit(position * 0.1))

    hits = index.search(_unit(1.05), k=2)
    assert {doc_id for doc_id, _ in hits} == {"v10", "v11"}
