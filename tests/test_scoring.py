from __future__ import annotations

import math

import pytest

from docretriever import Bm25Scorer, Document, InvalidArgument, InvertedIndex, RetrievalTimeout, TfIdfScorer
from docretriever.concurrency import Deadline
from docretriever.sparse import score, scorer_for
from docretriever.models import Strategy
from docretriever.utils import rank_scores


def _index(*contents: str) -> InvertedIndex:
    return InvertedIndex.build(
        Document(doc_id=f"d{position}", content=content) for position, content in enumerate(contents, start=1)
    )


def test_tfidf_uses_log_dampened_tf_and_idf() -> None:
    index = _index("cat cat dog", "dog", "fish")

    scores = TfIdfScorer().score(index, ["cat"])
    assert scores == {"d1": pytest.approx((1 + math.log(2)) * math.log(3))}

    dog = TfIdfScorer().score(index, ["dog"])
    assert dog["d1"] == pytest.approx(math.log(3 / 2))
    assert dog["d2"] == pytest.approx(math.log(3 / 2))


def test_tfidf_term_in_every_document_scores_zero() -> None:
    index = _index("the cat", "the dog")

    assert TfIdfScorer().score(index, ["the"]) == {"d1": 0.0, "d2": 0.0}


def test_bm25_matches_reference_formula() -> None:
    index = _index("cat cat dog", "dog", "fish")
    k1, b = 1.2, 0.75
    n, df, tf, length, avgdl = 3, 1, 2, 3, 5 / 3
    idf = math.log(1 + (n - df + 0.5) / (df + 0.5))
    expected = idf * tf * (k1 + 1) / (tf + k1 * (1 - b + b * length / avgdl))

    assert Bm25Scorer().score(index, ["cat"]) == {"d1": pytest.approx(expected)}


def test_bm25_is_increasing_in_term_frequency_for_fixed_length() -> None:
    index = _index("x y y y", "x x y y", "x x x y", "z z z z")

    scores = Bm25Scorer().score(index, ["x"])
    assert scores["d1"] < scores["d2"] < scores["d3"]
    # Saturation: each extra occurrence adds less than the one before.
    assert scores["d3"] - scores["d2"] < scores["d2"] - scores["d1"]


def test_bm25_is_non_increasing_in_document_length() -> None:
    index = _index("x", "x y", "x y y y", "x y y y y y y y")

    scores = Bm25Scorer().score(index, ["x"])
    assert scores["d1"] >= scores["d2"] >= scores["d3"] >= scores["d4"]
    assert scores["d1"] > scores["d4"]


def test_bm25_without_length_normalisation_ignores_length() -> None:
    index = _index("x", "x y y y")

    scores = Bm25Scorer(b=0.0).score(index, ["x"])
    assert scores["d1"] == pytest.approx(scores["d2"])


def test_only_documents_in_postings_are_candidates() -> None:
    index = _index("cat sat", "dogs bark", "cat naps")

    assert set(Bm25Scorer().score(index, ["cat", "unknown"])) == {"d1", "d3"}
    assert Bm25Scorer().score(index, []) == {}
    assert Bm25Scorer().score(index, ["unknown"]) == {}


def test_candidate_subset_restricts_scoring() -> None:
    index = _index("cat sat", "cat naps", "cat")

    assert set(score(index, ["cat"], doc_ids={"d2", "d9"})) == {"d2"}


def test_repeated_query_terms_count_per_occurrence() -> None:
    index = _index("cat sat", "dog")

    single = Bm25Scorer().score(index, ["cat"])["d1"]
    double = Bm25Scorer().score(index, ["cat", "cat"])["d1"]
    assert double == pytest.approx(2 * single)


def test_equal_scores_rank_by_document_id() -> None:
    index = InvertedIndex.build(
        [Document("b", "same words"), Document("c", "same words"), Document("a", "same words")]
    )

    ranked = rank_scores(Bm25Scorer().score(index, ["same"]))
    assert [doc_id for doc_id, _ in ranked] == ["a", "b", "c"]


def test_invalid_bm25_constants_are_rejected() -> None:
    with pytest.raises(InvalidArgument):
        Bm25Scorer(k1=-0.1)
    with pytest.raises(InvalidArgument):
        Bm25Scorer(b=1.5)


def test_scorer_for_returns_the_matching_variant() -> None:
    assert isinstance(scorer_for(Strategy.SPARSE_TFIDF), TfIdfScorer)
    assert scorer_for(Strategy.SPARSE_BM25, k1=2.0, b=0.5) == Bm25Scorer(k1=2.0, b=0.5)
    with pytest.raises(InvalidArgument):
        scorer_for(Strategy.DENSE)


def test_expired_deadline_aborts_scoring(clock) -> None:
    index = _index("cat sat", "cat naps")
    deadline = Deadline(1.0, clock=clock)
    clock.now = 5.0

    with pytest.raises(RetrievalTimeout):
        Bm25Scorer().score(index, ["cat"], deadline=deadline)
