import random

import pytest

from askdoc.components.chunkers import RecursiveCharacterChunker, reassemble
from askdoc.utils.data_models import SourceDocument
from askdoc.utils.errors import ConfigError

ARTICLE = (
    "Identity verification is the process of confirming that a person is who they claim to be. "
    "Companies use it when opening accounts, approving loans or onboarding new drivers.\n\n"
    "A typical flow asks the user for a photo of an official document and a selfie. "
    "The two images are compared and the document is checked against public records.\n"
    "Fraud attempts often reuse stolen documents, so liveness checks matter.\n\n"
    "Results are returned within seconds! Operators can review doubtful cases by hand? "
    "Most of them never need to."
)


def assert_consistent(text, fragments, chunk_size, chunk_overlap):
    """Checks offsets, size limits, overlap bounds and exact reconstruction."""
    assert reassemble(fragments) == text
    for fragment in fragments:
        assert len(fragment.content) <= chunk_size
        assert text[fragment.start_index : fragment.end_index] == fragment.content
    for previous, current in zip(fragments, fragments[1:]):
        shared = previous.end_index - current.start_index
        assert 0 <= shared <= chunk_overlap
        if shared:
            assert previous.content[-shared:] == current.content[:shared]


@pytest.fixture
def sample_document():
    return SourceDocument(content="Hello world. This is a test.", source="test.txt")


def test_short_text_scenario(sample_document):
    """Two sentences under a 15/5 policy split at the sentence boundary."""
    chunker = RecursiveCharacterChunker(chunk_size=15, chunk_overlap=5)
    fragments = chunker.chunk(sample_document)

    assert len(fragments) >= 2
    assert [f.content for f in fragments] == ["Hello world. ", "This is a test."]
    assert [f.index for f in fragments] == [0, 1]
    assert all(f.chunk_size == 15 and f.chunk_overlap == 5 for f in fragments)
    assert_consistent(sample_document.content, fragments, 15, 5)


def test_word_level_overlap():
    """Adjacent fragments split on whitespace share their boundary words."""
    text = "alpha beta gamma delta epsilon zeta eta theta iota kappa lambda mu"
    chunker = RecursiveCharacterChunker(chunk_size=20, chunk_overlap=8)
    fragments = chunker.split(text)

    assert [f.content for f in fragments] == [
        "alpha beta gamma ",
        "gamma delta epsilon ",
        "epsilon zeta eta ",
        "eta theta iota ",
        "iota kappa lambda mu",
    ]
    assert_consistent(text, fragments, 20, 8)


@pytest.mark.parametrize("chunk_size, chunk_overlap", [(40, 0), (80, 20), (150, 40), (1000, 100)])
def test_article_reconstructs_exactly(chunk_size, chunk_overlap):
    """Fragments reassembled by offset give back the source text."""
    fragments = RecursiveCharacterChunker(chunk_size, chunk_overlap).split(ARTICLE)
    assert fragments
    assert_consistent(ARTICLE, fragments, chunk_size, chunk_overlap)


def test_paragraph_boundaries_are_preferred():
    """When paragraphs fit, fragments end exactly at paragraph breaks."""
    text = "First paragraph here.\n\nSecond paragraph here.\n\nThird one."
    fragments = RecursiveCharacterChunker(chunk_size=30, chunk_overlap=5).split(text)

    assert [f.content for f in fragments] == [
        "First paragraph here.\n\n",
        "Second paragraph here.\n\n",
        "Third one.",
    ]


def test_oversized_word_is_split_by_character():
    """A single token longer than the limit is cut into character runs."""
    text = "An extraordinarily antidisestablishmentarianism word"
    fragments = RecursiveCharacterChunker(chunk_size=10, chunk_overlap=3).split(text)
    assert_consistent(text, fragments, 10, 3)


def test_splitting_is_deterministic():
    chunker = RecursiveCharacterChunker(chunk_size=60, chunk_overlap=15)
    assert chunker.split(ARTICLE) == chunker.split(ARTICLE)


def test_single_fragment_when_text_fits():
    fragments = RecursiveCharacterChunker().split("Short text.")
    assert len(fragments) == 1
    assert fragments[0].start_index == 0
    assert fragments[0].content == "Short text."


def test_empty_document_yields_no_fragments():
    chunker = RecursiveCharacterChunker(chunk_size=15, chunk_overlap=5)
    assert chunker.chunk(SourceDocument(content="   \n ", source="empty.txt")) == []
    assert chunker.split("") == []


@pytest.mark.parametrize("chunk_size, chunk_overlap", [(100, 100), (100, 150), (0, 0), (10, -1)])
def test_invalid_policy_raises_config_error(chunk_size, chunk_overlap):
    with pytest.raises(ConfigError):
        RecursiveCharacterChunker(chunk_size=chunk_size, chunk_overlap=chunk_overlap)


WORDS = ["alpha", "beta", "gamma", "delta", "epsilon", "zeta", "eta", "theta", "iota", "kappa"]


def paragraphs(sizes, joiner):
    """Builds paragraphs of roughly `size` characters each, joined by `joiner`."""
    rng = random.Random(sum(sizes))
    result = []
    for size in sizes:
        words = []
        while sum(len(w) + 1 for w in words) < size:
            words.append(rng.choice(WORDS))
        result.append(" ".join(words) + ".")
    return joiner.join(result)


def test_lone_newline_fragment_keeps_its_offset():
    text = "Alpha beta gamma.\n\nDelta epsilon zeta eta theta.\n\nIota."
    fragments = RecursiveCharacterChunker(chunk_size=30, chunk_overlap=10).split(text)

    newline = [f for f in fragments if f.content == "\n"]
    assert newline and newline[0].start_index == 49
    assert_consistent(text, fragments, 30, 10)


@pytest.mark.parametrize("joiner", ["\n\n", "\n", "\n \n", ". ", "\n\n\n", "  "])
@pytest.mark.parametrize("chunk_size, chunk_overlap", [(30, 10), (200, 50), (1000, 100)])
def test_paragraphs_slightly_over_the_limit_reconstruct(joiner, chunk_size, chunk_overlap):
    """Paragraphs just longer than a fragment force recursion into finer separators."""
    text = paragraphs([chunk_size + 1, chunk_size + 7, chunk_size - 3, chunk_size + 1], joiner)
    fragments = RecursiveCharacterChunker(chunk_size, chunk_overlap).split(text)
    assert_consistent(text, fragments, chunk_size, chunk_overlap)


@pytest.mark.parametrize("text, chunk_size, chunk_overlap", [(" \n\n", 2, 1), ("\n\n\n\n", 2, 1), ("a\n\nb\n\nc", 2, 1)])
def test_whitespace_runs_reconstruct(text, chunk_size, chunk_overlap):
    fragments = RecursiveCharacterChunker(chunk_size, chunk_overlap).split(text)
    assert_consistent(text, fragments, chunk_size, chunk_overlap)


def test_random_texts_reconstruct():
    """Randomly shaped texts keep every offset, size and overlap invariant."""
    rng = random.Random(20240607)
    pieces = WORDS + [" ", "  ", "\n", "\n\n", ". ", "? ", "! ", "\n \n"]
    for _ in range(300):
        text = "".join(rng.choice(pieces) for _ in range(rng.randint(1, 120)))
        chunk_size = rng.randint(2, 60)
        chunk_overlap = rng.randint(0, chunk_size - 1)
        fragments = RecursiveCharacterChunker(chunk_size, chunk_overlap).split(text)
        assert_consistent(text, fragments, chunk_size, chunk_overlap)
