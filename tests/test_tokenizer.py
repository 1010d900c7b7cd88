from __future__ import annotations

from nltk.stem import PorterStemmer

from docretriever.tokenizer import Tokenizer, TokenizerConfig, normalize


def test_lowercases_and_drops_punctuation_by_default() -> None:
    assert normalize("Hello, World!  The CAT sat.") == ["hello", "world", "the", "cat", "sat"]


def test_keep_punctuation_emits_punctuation_tokens() -> None:
    tokenizer = Tokenizer(TokenizerConfig(keep_punctuation=True))
    assert tokenizer.normalize("Hello, World!") == ["hello", ",", "world", "!"]


def test_contractions_and_unicode_words_stay_whole() -> None:
    assert normalize("Don't panic: Café über alles") == ["don't", "panic", "café", "über", "alles"]


def test_compatibility_forms_are_folded() -> None:
    assert normalize("Ｃａｔ sat") == ["cat", "sat"]


def test_empty_and_whitespace_text() -> None:
    assert normalize("") == []
    assert normalize(" \t\n ") == []


def test_stopword_stripping() -> None:
    tokenizer = Tokenizer(TokenizerConfig(strip_stopwords=True))
    assert tokenizer.normalize("the cat sat on the mat") == ["cat", "sat", "mat"]


def test_custom_stopwords() -> None:
    tokenizer = Tokenizer(TokenizerConfig(strip_stopwords=True, stopwords=frozenset({"cat"})))
    assert tokenizer.normalize("the cat sat") == ["the", "sat"]


def test_stemming_reduces_inflections() -> None:
    tokenizer = Tokenizer(TokenizerConfig(use_stemming=True))
    assert tokenizer.normalize("Running dogs") == ["run", "dog"]
    assert tokenizer.normalize("dog") == tokenizer.normalize("dogs")


def test_stemming_covers_underscore_words_but_not_punctuation() -> None:
    tokenizer = Tokenizer(TokenizerConfig(use_stemming=True, keep_punctuation=True))

    assert tokenizer.normalize("_running") == [PorterStemmer().stem("_running")]
    assert tokenizer.normalize("_running") != ["_running"]
    assert tokenizer.normalize("dogs!!") == ["dog", "!!"]


def test_normalize_is_deterministic() -> None:
    tokenizer = Tokenizer(TokenizerConfig(strip_stopwords=True, use_stemming=True))
    text = "The quick brown foxes were jumping over lazy dogs"
    assert tokenizer.normalize(text) == tokenizer.normalize(text)
    assert tokenizer(text) == tokenizer.normalize(text)


def test_tokenizers_with_equal_config_compare_equal() -> None:
    assert Tokenizer(TokenizerConfig(use_stemming=True)) == Tokenizer(TokenizerConfig(use_stemming=True))
    assert Tokenizer() != Tokenizer(TokenizerConfig(strip_stopwords=True))
