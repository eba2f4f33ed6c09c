"""Tests for lantern/chunking.py"""

import math

import pytest

from lantern.chunking import chunk_text, estimate_tokens, estimate_word_tokens


def test_empty_and_whitespace_text_give_no_chunks():
    assert chunk_text("") == []
    assert chunk_text("   \n\t  ") == []


def test_short_text_is_one_chunk():
    chunks = chunk_text("A short note.", max_tokens=50, overlap_tokens=10)
    assert len(chunks) == 1
    assert chunks[0].text == "A short note."
    assert chunks[0].position == 0
    assert (chunks[0].start_index, chunks[0].end_index) == (0, 3)


def test_overlapping_sentence_scenario():
    chunks = chunk_text("Cats are mammals. Dogs are mammals too.", max_tokens=5, overlap_tokens=2)
    assert [c.text for c in chunks] == [
        "Cats are mammals.",
        "mammals. Dogs are",
        "are mammals too.",
    ]
    assert [c.position for c in chunks] == [0, 1, 2]
    # Neighbours share their boundary word
    assert chunks[0].text.split()[-1] == chunks[1].text.split()[0]
    assert chunks[1].text.split()[-1] == chunks[2].text.split()[0]


@pytest.mark.parametrize("max_tokens,overlap", [(5, 0), (5, 2), (20, 5), (100, 99)])
def test_chunks_cover_every_word_and_respect_budget(max_tokens, overlap):
    words = [f"w{i}" for i in range(137)]
    chunks = chunk_text(" ".join(words), max_tokens=max_tokens, overlap_tokens=overlap)

    covered = set()
    for chunk in chunks:
        covered.update(range(chunk.start_index, chunk.end_index))
        assert chunk.text.split() == words[chunk.start_index:chunk.end_index]
        assert chunk.token_count == math.ceil(len(chunk.text.split()) / 0.75)
        assert len(chunk.text.split()) / 0.75 <= max_tokens
    assert covered == set(range(len(words)))

    # Always moves forward
    starts = [c.start_index for c in chunks]
    assert starts == sorted(set(starts))
    assert chunks[-1].end_index == len(words)


def test_zero_overlap_gives_disjoint_chunks():
    chunks = chunk_text(" ".join(["word"] * 30), max_tokens=6, overlap_tokens=0)
    for prev, nxt in zip(chunks, chunks[1:]):
        assert prev.end_index == nxt.start_index


def test_single_oversized_word_still_forms_a_chunk():
    chunks = chunk_text("supercalifragilistic", max_tokens=1, overlap_tokens=0)
    assert len(chunks) == 1
    assert chunks[0].text == "supercalifragilistic"


@pytest.mark.parametrize("max_tokens,overlap", [(0, 0), (-5, 0), (5, 5), (5, 6), (5, -1)])
def test_invalid_sizes_raise(max_tokens, overlap):
    with pytest.raises(ValueError):
        chunk_text("some text", max_tokens=max_tokens, overlap_tokens=overlap)


def test_unknown_strategy_raises():
    with pytest.raises(ValueError, match="Unknown chunk strategy"):
        chunk_text("some text", strategy="tokens")


def test_sentence_strategy_keeps_sentences_whole():
    text = "First sentence here. Second one follows. Third closes it. Fourth is extra."
    chunks = chunk_text(text, max_tokens=10, overlap_tokens=4, strategy="sentence")
    assert len(chunks) > 1
    for chunk in chunks:
        assert chunk.text.endswith(".")
    covered = set()
    for chunk in chunks:
        covered.update(range(chunk.start_index, chunk.end_index))
    assert covered == set(range(len(text.split())))


def test_paragraph_strategy_preserves_breaks():
    text = "Alpha beta gamma.\n\nDelta epsilon.\n\nZeta eta theta iota."
    chunks = chunk_text(text, max_tokens=100, overlap_tokens=0, strategy="paragraph")
    assert len(chunks) == 1
    assert chunks[0].text == "Alpha beta gamma.\n\nDelta epsilon.\n\nZeta eta theta iota."


def test_paragraph_strategy_splits_oversized_paragraph():
    text = " ".join(["long"] * 40) + "\n\nshort tail"
    chunks = chunk_text(text, max_tokens=10, overlap_tokens=2, strategy="paragraph")
    assert len(chunks) > 2
    assert chunks[-1].end_index == 42


def test_token_estimates():
    assert estimate_word_tokens("") == 0
    assert estimate_word_tokens("one two three") == 4
    # (13 chars / 4 + 3 words / 0.75) / 2 = (3.25 + 4) / 2 -> 4
    assert estimate_tokens("one two three") == 4
    assert estimate_tokens("") == 0
