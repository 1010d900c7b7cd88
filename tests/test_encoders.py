from __future__ import annotations

import math

import pytest

from docretriever import BaseEncoder, DimensionMismatch, HashingEncoder, InvalidArgument, Tokenizer, TokenizerConfig


class LengthEncoder(BaseEncoder):
    @property
    def dimension(self) -> int:
        return 2

    def embed(self, text: str) -> list:
        return [float(len(text)), 1.0]


class ShortEncoder(BaseEncoder):
    @property
    def dimension(self) -> int:
        return 3

    def embed(self, text: str) -> list:
        return [1.0]


def test_hashing_encoder_is_deterministic_and_normalised() -> None:
    encoder = HashingEncoder(dimension=32)

    first = encoder.embed("The cat sat on the mat")
    second = HashingEncoder(dimension=32).embed("the CAT sat on the mat")

    assert len(first) == 32
    assert first == second
    assert math.sqrt(sum(value * value for value in first)) == pytest.approx(1.0)


def test_hashing_encoder_handles_text_without_tokens() -> None:
    assert HashingEncoder(dimension=8).embed("!!!") == [0.0] * 8


def test_hashing_encoder_uses_its_tokenizer() -> None:
    stemming = HashingEncoder(dimension=16, tokenizer=Tokenizer(TokenizerConfig(use_stemming=True)))

    assert stemming.embed("running dogs") == stemming.embed("run dog")


def test_hashing_encoder_rejects_bad_dimension() -> None:
    with pytest.raises(InvalidArgument):
        HashingEncoder(dimension=0)


def test_encode_checks_the_output_dimension() -> None:
    encoder = LengthEncoder()

    assert encoder.encode("abc") == [3.0, 1.0]
    assert encoder.encode_batch(["a", "bb"]) == [[1.0, 1.0], [2.0, 1.0]]

    broken = ShortEncoder()
    with pytest.raises(DimensionMismatch) as excinfo:
        broken.encode("cat")
    assert excinfo.value.expected == 3
    assert excinfo.value.actual == 1
