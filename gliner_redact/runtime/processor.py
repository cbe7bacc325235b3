from __future__ import annotations

import re
from collections.abc import Sequence
from dataclasses import dataclass, field

import numpy as np

from gliner_redact.errors import ConfigurationError
from gliner_redact.runtime.tokenizer import BaseTokenizer

# Same splitter GLiNER uses (WhitespaceTokenSplitter): a word, or one non-space character.
_WORD_SPLITTER_RE = re.compile(r"\w+(?:[-_]\w+)*|\S")

DEFAULT_ENT_TOKEN = "<<ENT>>"
DEFAULT_SEP_TOKEN = "<<SEP>>"


@dataclass(frozen=True, slots=True)
class WordToken:
    token: str
    start: int
    end: int


def split_words(text: str) -> list[WordToken]:
    """Split text into model words with char offsets (end exclusive)."""
    return [
        WordToken(token=match.group(0), start=match.start(), end=match.end())
        for match in _WORD_SPLITTER_RE.finditer(text or "")
    ]


@dataclass(slots=True)
class BatchTensors:
    input_ids: np.ndarray
    attention_mask: np.ndarray
    words_mask: np.ndarray
    text_lengths: np.ndarray
    words: list[list[WordToken]] = field(default_factory=list)
    words_start_idx: list[list[int]] = field(default_factory=list)
    words_end_idx: list[list[int]] = field(default_factory=list)
    span_idx: np.ndarray | None = None
    span_mask: np.ndarray | None = None

    @property
    def batch_size(self) -> int:
        return int(self.input_ids.shape[0])

    @property
    def is_span_batch(self) -> bool:
        return self.span_idx is not None and self.span_mask is not None

    def to_feeds(self) -> dict[str, np.ndarray]:
        feeds = {
            "input_ids": self.input_ids,
            "attention_mask": self.attention_mask,
            "words_mask": self.words_mask,
            "text_lengths": self.text_lengths,
        }
        if self.span_idx is not None and self.span_mask is not None:
            feeds["span_idx"] = self.span_idx
            feeds["span_mask"] = self.span_mask.astype(np.int64)
        return feeds


@dataclass(slots=True)
class _Sequence:
    input_ids: list[int]
    words_mask: list[int]
    words: list[WordToken]


def build_prompt_ids(
    tokenizer: BaseTokenizer,
    entity_labels: Sequence[str],
    ent_token: str = DEFAULT_ENT_TOKEN,
    sep_token: str = DEFAULT_SEP_TOKEN,
) -> list[int]:
    """Encode the entity prompt: <<ENT>> label-1 <<ENT>> label-2 ... <<SEP>>."""
    ent_token_id = tokenizer.get_token_id(ent_token)
    prompt: list[int] = []
    for label in entity_labels:
        prompt.append(ent_token_id)
        for label_word in label.split():
            prompt.extend(tokenizer.encode_word(label_word))
    prompt.append(tokenizer.get_token_id(sep_token))
    return prompt


def _build_sequence(text: str, prompt_ids: list[int], tokenizer: BaseTokenizer) -> _Sequence:
    words = split_words(text)
    input_ids = [tokenizer.cls_token_id, *prompt_ids]
    words_mask = [0] * len(input_ids)
    for ordinal, word in enumerate(words, start=1):
        for position, token_id in enumerate(tokenizer.encode_word(word.token)):
            input_ids.append(token_id)
            words_mask.append(ordinal if position == 0 else 0)
    return _Sequence(input_ids=input_ids, words_mask=words_mask, words=words)


def _pad_rows(rows: list[list[int]], width: int) -> np.ndarray:
    out = np.zeros((len(rows), width), dtype=np.int64)
    for idx, row in enumerate(rows):
        out[idx, : len(row)] = row
    return out


def build_token_batch(
    texts: Sequence[str],
    entity_labels: Sequence[str],
    tokenizer: BaseTokenizer,
    ent_token: str = DEFAULT_ENT_TOKEN,
    sep_token: str = DEFAULT_SEP_TOKEN,
) -> BatchTensors:
    if not texts:
        raise ValueError("texts must contain at least one item")

    prompt_ids = build_prompt_ids(tokenizer, entity_labels, ent_token=ent_token, sep_token=sep_token)
    sequences = [_build_sequence(text, prompt_ids, tokenizer) for text in texts]
    max_len = max(len(seq.input_ids) for seq in sequences)

    return BatchTensors(
        input_ids=_pad_rows([seq.input_ids for seq in sequences], max_len),
        attention_mask=_pad_rows([[1] * len(seq.input_ids) for seq in sequences], max_len),
        words_mask=_pad_rows([seq.words_mask for seq in sequences], max_len),
        text_lengths=np.array([[len(seq.words)] for seq in sequences], dtype=np.int64),
        words=[seq.words for seq in sequences],
        words_start_idx=[[word.start for word in seq.words] for seq in sequences],
        words_end_idx=[[word.end for word in seq.words] for seq in sequences],
    )


def enumerate_spans(num_words: int, max_width: int) -> tuple[list[tuple[int, int]], list[bool]]:
    """All (start, start + width) word spans; out-of-range ones are kept as invalid (0, 0)."""
    spans: list[tuple[int, int]] = []
    valid: list[bool] = []
    for start in range(num_words):
        for width in range(max_width):
            end = start + width
            if end < num_words:
                spans.append((start, end))
                valid.append(True)
            else:
                spans.append((0, 0))
                valid.append(False)
    if not spans:
        # Never hand the executor an empty span axis.
        spans.append((0, 0))
        valid.append(False)
    return spans, valid


def build_span_batch(
    texts: Sequence[str],
    entity_labels: Sequence[str],
    tokenizer: BaseTokenizer,
    max_width: int = 12,
    ent_token: str = DEFAULT_ENT_TOKEN,
    sep_token: str = DEFAULT_SEP_TOKEN,
) -> BatchTensors:
    if max_width < 1:
        raise ConfigurationError(f"max_width must be >= 1, got {max_width}")

    batch = build_token_batch(texts, entity_labels, tokenizer, ent_token=ent_token, sep_token=sep_token)
    per_example = [enumerate_spans(len(words), max_width) for words in batch.words]
    max_spans = max(len(spans) for spans, _ in per_example)

    span_idx = np.zeros((len(per_example), max_spans, 2), dtype=np.int64)
    span_mask = np.zeros((len(per_example), max_spans), dtype=bool)
    for idx, (spans, valid) in enumerate(per_example):
        span_idx[idx, : len(spans)] = spans
        span_mask[idx, : len(valid)] = valid

    batch.span_idx = span_idx
    batch.span_mask = span_mask
    return batch
