"""Text chunking strategies and token estimation for document processing."""

import math
import re
from typing import List, Sequence, Tuple

from .models import TextChunk


WORDS_PER_TOKEN = 0.75
CHARS_PER_TOKEN = 4

STRATEGIES = ("words", "sentence", "paragraph")


def estimate_word_tokens(text: str) -> int:
    """Word-based token estimate, ``ceil(words / 0.75)``."""
    return math.ceil(len(text.split()) / WORDS_PER_TOKEN)


def estimate_tokens(text: str) -> int:
    """Blend of the character-based and word-based token estimates.

    This is an approximation only. Text without whitespace (CJK scripts,
    long identifiers) counts as a single word and leans on the character
    estimate.
    """
    char_estimate = len(text) / CHARS_PER_TOKEN
    word_estimate = len(text.split()) / WORDS_PER_TOKEN
    return math.ceil((char_estimate + word_estimate) / 2)


def _word_cost(n_words: int) -> float:
    return n_words / WORDS_PER_TOKEN


def _split_sentences(text: str) -> List[str]:
    """Split text into sentences using regex."""
    text = re.sub(r'([.!?])\s+', r'\1\n', text)
    return [s.strip() for s in text.split('\n') if s.strip()]


def _split_paragraphs(text: str) -> List[str]:
    """Split text into paragraphs."""
    paragraphs = re.split(r'\n\s*\n', text)
    return [p.strip() for p in paragraphs if p.strip()]


def _word_spans(n_words: int, max_tokens: int, overlap_tokens: int) -> List[Tuple[int, int]]:
    """Greedy word packing. Returns ``(start, end)`` word spans, end exclusive."""
    spans: List[Tuple[int, int]] = []
    count = 0

    for i in range(n_words):
        if count and _word_cost(count + 1) > max_tokens:
            spans.append((i - count, i))
            # Seed the next chunk with a proportional suffix of this one
            overlap_words = math.floor(count * overlap_tokens / max_tokens)
            count = min(overlap_words, count - 1)
        count += 1

    if count:
        spans.append((n_words - count, n_words))
    return spans


def _unit_spans(
    units: Sequence[Tuple[int, int]],
    max_tokens: int,
    overlap_tokens: int,
) -> List[Tuple[int, int]]:
    """Pack whole units (sentences or paragraphs) given as word spans."""
    spans: List[Tuple[int, int]] = []
    current: List[Tuple[int, int]] = []
    current_words = 0

    for start, end in units:
        size = end - start

        if _word_cost(size) > max_tokens:
            # Oversized unit: flush, then hard split on word boundaries
            if current:
                spans.append((current[0][0], current[-1][1]))
                current, current_words = [], 0
            spans.extend(
                (start + s, start + e) for s, e in _word_spans(size, max_tokens, overlap_tokens)
            )
            continue

        if current and _word_cost(current_words + size) > max_tokens:
            spans.append((current[0][0], current[-1][1]))

            # Keep trailing units that fit the overlap budget
            kept: List[Tuple[int, int]] = []
            kept_words = 0
            for unit in reversed(current):
                unit_words = unit[1] - unit[0]
                if _word_cost(kept_words + unit_words) > overlap_tokens:
                    break
                kept.insert(0, unit)
                kept_words += unit_words
            if len(kept) == len(current):
                kept_words -= kept[0][1] - kept[0][0]
                kept.pop(0)
            while kept and _word_cost(kept_words + size) > max_tokens:
                kept_words -= kept[0][1] - kept[0][0]
                kept.pop(0)
            current, current_words = kept, kept_words

        current.append((start, end))
        current_words += size

    if current:
        spans.append((current[0][0], current[-1][1]))
    return spans


def chunk_text(
    text: str,
    max_tokens: int = 800,
    overlap_tokens: int = 200,
    *,
    strategy: str = "words",
) -> List[TextChunk]:
    """
    Split text into overlapping chunks bounded by an estimated token size.

    Args:
        text: Input text to chunk
        max_tokens: Maximum estimated tokens per chunk
        overlap_tokens: Approximate estimated tokens shared by neighbouring chunks
        strategy: 'words', 'sentence', or 'paragraph'

    Returns:
        Chunks in source order, ``position`` counting up from 0. Start and
        end indexes are word offsets into ``text.split()``.
    """
    if max_tokens <= 0:
        raise ValueError("max_tokens must be positive")
    if overlap_tokens < 0 or overlap_tokens >= max_tokens:
        raise ValueError("overlap_tokens must be non-negative and less than max_tokens")
    if strategy not in STRATEGIES:
        raise ValueError(f"Unknown chunk strategy: {strategy}. Supported: {', '.join(STRATEGIES)}")

    words = text.split()
    if not words:
        return []

    if strategy == "words":
        spans = _word_spans(len(words), max_tokens, overlap_tokens)
        separator = " "
        boundaries: List[int] = []
    else:
        pieces = _split_sentences(text) if strategy == "sentence" else _split_paragraphs(text)
        units = []
        offset = 0
        for piece in pieces:
            n = len(piece.split())
            units.append((offset, offset + n))
            offset += n
        spans = _unit_spans(units, max_tokens, overlap_tokens)
        separator = " " if strategy == "sentence" else "\n\n"
        boundaries = [start for start, _ in units]

    chunks = []
    for position, (start, end) in enumerate(spans):
        if separator == " ":
            chunk = " ".join(words[start:end])
        else:
            # Re-insert paragraph breaks at unit boundaries inside the span
            parts = []
            cuts = [b for b in boundaries if start < b < end] + [end]
            prev = start
            for cut in cuts:
                parts.append(" ".join(words[prev:cut]))
                prev = cut
            chunk = separator.join(parts)
        chunks.append(TextChunk(
            text=chunk,
            position=position,
            start_index=start,
            end_index=end,
            token_count=estimate_word_tokens(chunk),
        ))
    return chunks
