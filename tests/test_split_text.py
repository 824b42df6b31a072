import pytest

from narration_pipeline.errors import InputValidationError
from narration_pipeline.split_text import (
    chunks_from_texts,
    hard_split_by_length,
    segment_text,
    split_into_sentences,
)


def _squash(text):
    return "".join(text.split())


SAMPLE = (
    "It was a bright cold day in April, and the clocks were striking thirteen. "
    "Winston Smith slipped quickly through the glass doors! Was he seen? "
    "Nobody could tell\n\n"
    "The hallway smelt of boiled cabbage and old rag mats. At one end of it a coloured "
    "poster, too large for indoor display, had been tacked to the wall.\n\n"
    "Short one."
)


def test_empty_text_yields_no_chunks():
    assert segment_text("") == []
    assert segment_text("   \n\n  \n") == []


def test_short_paragraphs_become_one_chunk_each():
    text = "First paragraph.\n\nSecond paragraph!\n\n\nThird paragraph?"
    chunks = segment_text(text, max_chars=2000)

    assert [chunk.text for chunk in chunks] == [
        "First paragraph.",
        "Second paragraph!",
        "Third paragraph?",
    ]
    assert [chunk.index for chunk in chunks] == [0, 1, 2]


def test_text_below_limit_without_breaks_is_single_chunk():
    chunks = segment_text("One line. Another line. And a third.", max_chars=2000)
    assert len(chunks) == 1


def test_unterminated_paragraph_is_hard_split():
    chunks = segment_text("a" * 2500, max_chars=2000)

    assert [len(chunk.text) for chunk in chunks] == [2000, 500]


def test_sentences_are_grouped_up_to_limit():
    text = "Hello world. This is a test! Unterminated tail"
    chunks = segment_text(text, max_chars=20)

    assert [chunk.text for chunk in chunks] == [
        "Hello world.",
        "This is a test!",
        "Unterminated tail",
    ]


@pytest.mark.parametrize("max_chars", [15, 40, 90, 200])
def test_size_and_coverage_invariants(max_chars):
    chunks = segment_text(SAMPLE, max_chars=max_chars)

    assert chunks
    assert all(0 < len(chunk.text) <= max_chars for chunk in chunks)
    assert all(chunk.text.strip() for chunk in chunks)
    assert _squash("".join(chunk.text for chunk in chunks)) == _squash(SAMPLE)


def test_segmentation_is_deterministic():
    assert segment_text(SAMPLE, max_chars=60) == segment_text(SAMPLE, max_chars=60)


def test_windows_line_endings_split_paragraphs():
    chunks = segment_text("Alpha.\r\n\r\nBeta.", max_chars=100)
    assert [chunk.text for chunk in chunks] == ["Alpha.", "Beta."]


def test_non_positive_limit_is_rejected():
    with pytest.raises(InputValidationError):
        segment_text("text", max_chars=0)


def test_split_into_sentences_keeps_every_character():
    paragraph = "...Wait. What?! Yes and no"
    sentences = split_into_sentences(paragraph)

    assert "".join(sentences) == paragraph
    assert sentences[-1] == " Yes and no"


def test_hard_split_ignores_word_boundaries():
    assert hard_split_by_length("abcdefghij", max_chars=4) == ["abcd", "efgh", "ij"]


def test_chunks_from_texts_indexes_in_order():
    chunks = chunks_from_texts(["a", "b"])
    assert [(chunk.index, chunk.text) for chunk in chunks] == [(0, "a"), (1, "b")]
