from __future__ import annotations

from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass
from typing import Any

import numpy as np

from gliner_redact.errors import ConfigurationError
from gliner_redact.models.entities import Entity
from gliner_redact.runtime.processor import BatchTensors

# Defaults differ by model generation: token-pair heads are calibrated lower.
DEFAULT_TOKEN_THRESHOLD = 0.3
DEFAULT_SPAN_THRESHOLD = 0.4


@dataclass(frozen=True, slots=True)
class _Boundary:
    word: int
    label: int
    score: float


def sigmoid(values: Any) -> np.ndarray:
    # tanh form does not overflow for large negative logits.
    array = np.asarray(values, dtype=np.float64)
    return 0.5 * (1.0 + np.tanh(0.5 * array))


def greedy_search(
    candidates: Iterable[Entity],
    tie_breaker: Callable[[Entity], Any] | None = None,
) -> list[Entity]:
    """Flat NER: keep the highest-scoring non-overlapping spans, returned in start order."""
    if tie_breaker is None:
        ranked = sorted(candidates, key=lambda item: -item.score)
    else:
        ranked = sorted(candidates, key=lambda item: (-item.score, tie_breaker(item)))

    accepted: list[Entity] = []
    for candidate in ranked:
        if any(candidate.overlaps(existing) for existing in accepted):
            continue
        accepted.append(candidate)
    return sorted(accepted, key=lambda item: item.start)


def output_position_to_word(words_mask_row: np.ndarray) -> list[int]:
    """Map compacted output positions to 0-based text word indices.

    The model's word axis excludes CLS and prompt positions, so position k is
    the k-th nonzero entry of words_mask.
    """
    return [int(value) - 1 for value in words_mask_row if int(value) > 0]


def _make_entity(
    *,
    text: str,
    start: int,
    end: int,
    label: str,
    score: float,
) -> Entity | None:
    if not (0 <= start < end <= len(text)):
        return None
    return Entity(start=start, end=end, text=text[start:end], label=label, score=float(score), detector="gliner")


def decode_token_level(
    logits: Any,
    batch: BatchTensors,
    entity_labels: Sequence[str],
    texts: Sequence[str],
    threshold: float = DEFAULT_TOKEN_THRESHOLD,
) -> list[list[Entity]]:
    """Decode [batch, word_positions, labels, 3] start/end/inside logits into entities."""
    probs = sigmoid(logits)
    if probs.ndim != 4 or probs.shape[-1] != 3:
        raise ValueError(f"token-level logits must have shape [B, W, C, 3], got {probs.shape}")

    num_labels = min(int(probs.shape[2]), len(entity_labels))
    results: list[list[Entity]] = []
    for b in range(min(int(probs.shape[0]), batch.batch_size, len(texts))):
        num_words = len(batch.words_start_idx[b])
        position_to_word = output_position_to_word(batch.words_mask[b])
        num_positions = min(int(probs.shape[1]), len(position_to_word))

        inside = np.zeros((num_words, num_labels), dtype=np.float64)
        starts: list[_Boundary] = []
        ends: list[_Boundary] = []
        for position in range(num_positions):
            word = position_to_word[position]
            if word >= num_words:
                continue
            for label in range(num_labels):
                start_p, end_p, inside_p = probs[b, position, label]
                if start_p >= threshold:
                    starts.append(_Boundary(word=word, label=label, score=float(start_p)))
                if end_p >= threshold:
                    ends.append(_Boundary(word=word, label=label, score=float(end_p)))
                inside[word, label] = inside_p

        candidates: list[Entity] = []
        for start in starts:
            for end in ends:
                if end.label != start.label or end.word < start.word:
                    continue
                inner = inside[start.word + 1 : end.word, start.label]
                if inner.size and bool(np.any(inner < threshold)):
                    continue
                score = (start.score + end.score + float(inner.sum())) / (2 + int(inner.size))
                entity = _make_entity(
                    text=texts[b],
                    start=batch.words_start_idx[b][start.word],
                    end=batch.words_end_idx[b][end.word],
                    label=entity_labels[start.label],
                    score=score,
                )
                if entity is not None:
                    candidates.append(entity)

        results.append(greedy_search(candidates))
    return results


def decode_span_level(
    logits: Any,
    batch: BatchTensors,
    entity_labels: Sequence[str],
    texts: Sequence[str],
    threshold: float = DEFAULT_SPAN_THRESHOLD,
) -> list[list[Entity]]:
    """Decode [batch, spans, labels] logits (or [batch, words, max_width, labels]) into entities."""
    if batch.span_idx is None or batch.span_mask is None:
        raise ConfigurationError("span-level decoding requires a batch built with build_span_batch")

    probs = sigmoid(logits)
    if probs.ndim == 4:
        probs = probs.reshape(probs.shape[0], -1, probs.shape[-1])
    if probs.ndim != 3:
        raise ValueError(f"span-level logits must have shape [B, S, C], got {probs.shape}")

    num_labels = min(int(probs.shape[2]), len(entity_labels))
    num_spans = min(int(probs.shape[1]), int(batch.span_idx.shape[1]))
    results: list[list[Entity]] = []
    for b in range(min(int(probs.shape[0]), batch.batch_size, len(texts))):
        if num_labels == 0 or num_spans == 0:
            results.append([])
            continue

        example = probs[b, :num_spans, :num_labels]
        best_label = example.argmax(axis=1)
        best_score = example.max(axis=1)
        keep = np.flatnonzero(batch.span_mask[b, :num_spans] & (best_score > threshold))

        num_words = len(batch.words_start_idx[b])
        candidates: list[Entity] = []
        for span in keep:
            start_word, end_word = (int(value) for value in batch.span_idx[b, span])
            if not (0 <= start_word <= end_word < num_words):
                continue
            entity = _make_entity(
                text=texts[b],
                start=batch.words_start_idx[b][start_word],
                end=batch.words_end_idx[b][end_word],
                label=entity_labels[int(best_label[span])],
                score=float(best_score[span]),
            )
            if entity is not None:
                candidates.append(entity)

        results.append(greedy_search(candidates))
    return results
