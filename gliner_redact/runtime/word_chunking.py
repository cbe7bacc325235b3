from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass

from gliner_redact.models.entities import Entity
from gliner_redact.runtime.decoder import greedy_search
from gliner_redact.runtime.processor import WordToken, split_words


@dataclass(slots=True, frozen=True)
class TextChunkWindow:
    text_start: int
    text_end: int
    word_start: int
    word_end: int


def chunk_words(
    words: Sequence[WordToken],
    *,
    window_words: int,
    overlap_words: int,
) -> list[TextChunkWindow]:
    """Slide fixed-size word windows over the text.

    A window's char span runs from its first word start to its last word end,
    so a window substring is the exact source text for those words.
    """
    if window_words < 1:
        raise ValueError("window_words must be >= 1")
    if overlap_words < 0:
        raise ValueError("overlap_words must be >= 0")

    n = len(words)
    if n == 0:
        return []

    step = max(1, window_words - overlap_words)
    windows: list[TextChunkWindow] = []
    idx = 0
    while idx < n:
        word_end = min(n, idx + window_words)
        windows.append(
            TextChunkWindow(
                text_start=words[idx].start,
                text_end=words[word_end - 1].end,
                word_start=idx,
                word_end=word_end,
            )
        )
        if word_end >= n:
            break
        idx += step
    return windows


def chunk_text_by_words(text: str, *, window_words: int, overlap_words: int) -> list[TextChunkWindow]:
    return chunk_words(split_words(text), window_words=window_words, overlap_words=overlap_words)


def merge_window_entities(
    *,
    text: str,
    windows: Sequence[TextChunkWindow],
    window_entities: Sequence[Sequence[Entity]],
) -> list[Entity]:
    """Shift window-local entities to global offsets, dedup on (start, end, label), resolve overlaps."""
    dedup: dict[tuple[int, int, str], Entity] = {}
    text_len = len(text)
    for window, entities in zip(windows, window_entities, strict=False):
        for item in entities:
            global_start = window.text_start + item.start
            global_end = window.text_start + item.end
            if global_start < 0 or global_end > text_len or global_end <= global_start:
                continue
            key = (global_start, global_end, item.label)
            existing = dedup.get(key)
            if existing is None or item.score > existing.score:
                dedup[key] = Entity(
                    start=global_start,
                    end=global_end,
                    text=text[global_start:global_end],
                    label=item.label,
                    score=item.score,
                    detector=item.detector,
                    metadata=dict(item.metadata),
                )
    return greedy_search(dedup.values())
