from __future__ import annotations

import logging
import math
import re
import unicodedata
from abc import ABC, abstractmethod
from collections.abc import Iterable, Mapping
from typing import Any

logger = logging.getLogger(__name__)

_BYTE_PIECE_RE = re.compile(r"^<0x([0-9A-Fa-f]{2})>$")
_WORD_BOUNDARY = "▁"
_BYTE_FALLBACK_PENALTY = 100.0
_UNKNOWN_PENALTY = 200.0

_UNK_SPELLINGS = ("[UNK]", "<unk>")
_CLS_SPELLINGS = ("[CLS]", "<s>")
_SEP_SPELLINGS = ("[SEP]", "</s>")


def bytes_to_unicode() -> dict[int, str]:
    """GPT-2 byte encoder: every byte maps to a printable, non-whitespace character."""
    printable = (
        list(range(ord("!"), ord("~") + 1))
        + list(range(ord("¡"), ord("¬") + 1))
        + list(range(ord("®"), ord("ÿ") + 1))
    )
    byte_values = list(printable)
    code_points = list(printable)
    shift = 0
    for value in range(256):
        if value not in byte_values:
            byte_values.append(value)
            code_points.append(256 + shift)
            shift += 1
    return {value: chr(point) for value, point in zip(byte_values, code_points, strict=True)}


def _utf8(text: str) -> bytes:
    # Lone surrogates are encodable this way; strict encoding would raise.
    return text.encode("utf-8", errors="surrogatepass")


def _parse_added_tokens(description: Mapping[str, Any]) -> dict[str, int]:
    added: dict[str, int] = {}
    for item in description.get("added_tokens") or []:
        if not isinstance(item, Mapping):
            continue
        content = item.get("content")
        token_id = item.get("id")
        if not isinstance(content, str) or isinstance(token_id, bool):
            continue
        try:
            added[content] = int(token_id)
        except (TypeError, ValueError):
            continue
    return added


def _lookup_first(spellings: Iterable[str], *tables: Mapping[str, int]) -> int | None:
    for spelling in spellings:
        for table in tables:
            if spelling in table:
                return table[spelling]
    return None


def _as_token_id(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _template_special_ids(processor: Mapping[str, Any]) -> tuple[int | None, int | None]:
    special_tokens = processor.get("special_tokens")
    single = processor.get("single")
    if not isinstance(special_tokens, Mapping) or not isinstance(single, list):
        return None, None

    def token_id(name: Any) -> int | None:
        entry = special_tokens.get(name)
        ids = entry.get("ids") if isinstance(entry, Mapping) else None
        return _as_token_id(ids[0]) if isinstance(ids, list) and ids else None

    # "$A" template: the special token before the sequence is cls, the one after is sep.
    cls: int | None = None
    sep: int | None = None
    seen_sequence = False
    for piece in single:
        if not isinstance(piece, Mapping):
            continue
        if "Sequence" in piece:
            seen_sequence = True
            continue
        special = piece.get("SpecialToken")
        if not isinstance(special, Mapping):
            continue
        if not seen_sequence and cls is None:
            cls = token_id(special.get("id"))
        elif seen_sequence and sep is None:
            sep = token_id(special.get("id"))
    return cls, sep


def _post_processor_special_ids(description: Mapping[str, Any]) -> tuple[int | None, int | None]:
    """cls/sep ids declared by the post_processor, when it declares them."""
    processor = description.get("post_processor")
    if not isinstance(processor, Mapping):
        return None, None
    kind = processor.get("type")
    if kind == "Sequence":
        cls: int | None = None
        sep: int | None = None
        for inner in processor.get("processors") or []:
            if isinstance(inner, Mapping):
                inner_cls, inner_sep = _post_processor_special_ids({"post_processor": inner})
                cls = cls if cls is not None else inner_cls
                sep = sep if sep is not None else inner_sep
        return cls, sep
    if kind == "TemplateProcessing":
        return _template_special_ids(processor)

    def pair_id(value: Any) -> int | None:
        # BertProcessing / RobertaProcessing store ["[CLS]", 101].
        if isinstance(value, list) and len(value) == 2:
            return _as_token_id(value[1])
        return None

    return pair_id(processor.get("cls")), pair_id(processor.get("sep"))


class BaseTokenizer(ABC):
    cls_token_id: int
    sep_token_id: int
    unk_token_id: int

    def __init__(self, added_tokens: dict[str, int]) -> None:
        self._added_tokens = dict(added_tokens)

    @property
    @abstractmethod
    def vocab(self) -> Mapping[str, int]:
        raise NotImplementedError

    @abstractmethod
    def encode_word(self, word: str) -> list[int]:
        raise NotImplementedError

    def get_token_id(self, token: str) -> int:
        if token in self._added_tokens:
            return self._added_tokens[token]
        return self.vocab.get(token, self.unk_token_id)

    def _resolve_special_ids(
        self,
        explicit_unk: int | None,
        explicit_cls_sep: tuple[int | None, int | None] = (None, None),
    ) -> None:
        added, vocab = self._added_tokens, self.vocab
        explicit_cls, explicit_sep = explicit_cls_sep
        unk = explicit_unk if explicit_unk is not None else _lookup_first(_UNK_SPELLINGS, added, vocab)
        cls = explicit_cls if explicit_cls is not None else _lookup_first(_CLS_SPELLINGS, added, vocab)
        sep = explicit_sep if explicit_sep is not None else _lookup_first(_SEP_SPELLINGS, added, vocab)
        self.unk_token_id = 0 if unk is None else unk
        self.cls_token_id = 1 if cls is None else cls
        self.sep_token_id = 2 if sep is None else sep


class BPETokenizer(BaseTokenizer):
    """Byte-level BPE (GPT-2 / ModernBERT), with a WordPiece path for non byte-level vocabularies."""

    def __init__(self, description: Mapping[str, Any]) -> None:
        super().__init__(_parse_added_tokens(description))
        model = description.get("model")
        if not isinstance(model, Mapping):
            model = {}

        vocab: dict[str, int] = {}
        raw_vocab = model.get("vocab")
        if isinstance(raw_vocab, Mapping):
            for token, token_id in raw_vocab.items():
                try:
                    vocab[str(token)] = int(token_id)
                except (TypeError, ValueError):
                    continue
        vocab.update(self._added_tokens)
        self._vocab = vocab

        merge_ranks: dict[tuple[str, str], int] = {}
        for rank, merge in enumerate(model.get("merges") or []):
            pair = self._parse_merge(merge)
            if pair is not None and pair not in merge_ranks:
                merge_ranks[pair] = rank
        self._merge_ranks = merge_ranks

        pre_tokenizer = description.get("pre_tokenizer")
        if not isinstance(pre_tokenizer, Mapping):
            pre_tokenizer = {}
        if pre_tokenizer.get("type") == "ByteLevel":
            byte_level_steps = [pre_tokenizer]
        else:
            byte_level_steps = [
                step
                for step in pre_tokenizer.get("pretokenizers") or []
                if isinstance(step, Mapping) and step.get("type") == "ByteLevel"
            ]
        self.is_byte_level = bool(byte_level_steps) or model.get("byte_fallback") is True
        self.add_prefix_space = pre_tokenizer.get("add_prefix_space") is True or any(
            step.get("add_prefix_space") is True for step in byte_level_steps
        )
        self._byte_encoder = bytes_to_unicode()

        explicit_unk = model.get("unk_token")
        self._resolve_special_ids(
            vocab.get(explicit_unk) if isinstance(explicit_unk, str) else None,
            _post_processor_special_ids(description),
        )

    @property
    def vocab(self) -> Mapping[str, int]:
        return self._vocab

    @staticmethod
    def _parse_merge(merge: Any) -> tuple[str, str] | None:
        if isinstance(merge, str):
            parts = merge.split(" ")
            if len(parts) == 2:
                return (parts[0], parts[1])
            return None
        if isinstance(merge, (list, tuple)) and len(merge) == 2 and all(isinstance(p, str) for p in merge):
            return (merge[0], merge[1])
        return None

    def encode_word(self, word: str) -> list[int]:
        if word in self._added_tokens:
            return [self._added_tokens[word]]
        if self.is_byte_level:
            return self._encode_byte_level(word)
        return self._encode_wordpiece(word)

    def _encode_byte_level(self, word: str) -> list[int]:
        text = " " + word if self.add_prefix_space else word
        symbols = [self._byte_encoder[value] for value in _utf8(text)]
        if not symbols:
            return [self.unk_token_id]
        if len(symbols) == 1:
            return [self._vocab.get(symbols[0], self.unk_token_id)]
        return [self._vocab.get(symbol, self.unk_token_id) for symbol in self._apply_merges(symbols)]

    def _apply_merges(self, symbols: list[str]) -> list[str]:
        while len(symbols) > 1:
            best_pair: tuple[str, str] | None = None
            best_rank = math.inf
            for pair in zip(symbols, symbols[1:]):
                rank = self._merge_ranks.get(pair)
                if rank is not None and rank < best_rank:
                    best_pair = pair
                    best_rank = rank
            if best_pair is None:
                break

            first, second = best_pair
            merged: list[str] = []
            idx = 0
            while idx < len(symbols):
                if idx < len(symbols) - 1 and symbols[idx] == first and symbols[idx + 1] == second:
                    merged.append(first + second)
                    idx += 2
                else:
                    merged.append(symbols[idx])
                    idx += 1
            symbols = merged
        return symbols

    def _encode_wordpiece(self, word: str) -> list[int]:
        if word in self._vocab:
            return [self._vocab[word]]

        ids: list[int] = []
        start = 0
        while start < len(word):
            end = len(word)
            match_id: int | None = None
            while start < end:
                piece = word[start:end] if start == 0 else "##" + word[start:end]
                if piece in self._vocab:
                    match_id = self._vocab[piece]
                    break
                end -= 1
            if match_id is None:
                ids.append(self.unk_token_id)
                start += 1
            else:
                ids.append(match_id)
                start = end
        return ids


class UnigramTokenizer(BaseTokenizer):
    """SentencePiece Unigram (mDeBERTa-v3): Viterbi segmentation with byte fallback."""

    def __init__(self, description: Mapping[str, Any]) -> None:
        super().__init__(_parse_added_tokens(description))
        model = description.get("model")
        if not isinstance(model, Mapping):
            model = {}

        vocab: dict[str, int] = {}
        scores: dict[str, float] = {}
        byte_tokens: dict[int, int] = {}
        max_piece_length = 0
        for idx, entry in enumerate(model.get("vocab") or []):
            if not isinstance(entry, (list, tuple)) or len(entry) < 2 or not isinstance(entry[0], str):
                continue
            piece = entry[0]
            try:
                score = float(entry[1])
            except (TypeError, ValueError):
                continue
            if piece not in vocab:
                vocab[piece] = idx
                scores[piece] = score
                max_piece_length = max(max_piece_length, len(piece))
            byte_match = _BYTE_PIECE_RE.match(piece)
            if byte_match:
                byte_tokens.setdefault(int(byte_match.group(1), 16), idx)

        self._vocab = vocab
        self._scores = scores
        self._byte_tokens = byte_tokens
        self._max_piece_length = max_piece_length

        unk_id = model.get("unk_id")
        explicit_unk = int(unk_id) if isinstance(unk_id, int) and not isinstance(unk_id, bool) else None
        self._resolve_special_ids(explicit_unk, _post_processor_special_ids(description))

    @property
    def vocab(self) -> Mapping[str, int]:
        return self._vocab

    def encode_word(self, word: str) -> list[int]:
        if word in self._added_tokens:
            return [self._added_tokens[word]]
        normalized = unicodedata.normalize("NFKC", word)
        return self._viterbi(_WORD_BOUNDARY + normalized.replace(" ", _WORD_BOUNDARY))

    def _fallback_ids(self, char: str) -> tuple[tuple[int, ...], float]:
        byte_ids = [self._byte_tokens.get(value) for value in _utf8(char)]
        if byte_ids and all(token_id is not None for token_id in byte_ids):
            return tuple(int(token_id) for token_id in byte_ids if token_id is not None), _BYTE_FALLBACK_PENALTY
        return (self.unk_token_id,), _UNKNOWN_PENALTY

    def _viterbi(self, text: str) -> list[int]:
        n = len(text)
        if n == 0:
            return []

        # best_score[i]: best cumulative log-score of text[:i]; emitted[i]: ids of the step ending at i.
        best_score = [-math.inf] * (n + 1)
        best_score[0] = 0.0
        prev = [0] * (n + 1)
        emitted: list[tuple[int, ...]] = [()] * (n + 1)

        for i in range(n):
            if best_score[i] == -math.inf:
                continue
            for length in range(1, min(self._max_piece_length, n - i) + 1):
                piece = text[i : i + length]
                score = self._scores.get(piece)
                if score is None:
                    continue
                candidate = best_score[i] + score
                if candidate > best_score[i + length]:
                    best_score[i + length] = candidate
                    prev[i + length] = i
                    emitted[i + length] = (self._vocab[piece],)

            if best_score[i + 1] == -math.inf:
                ids, penalty = self._fallback_ids(text[i])
                best_score[i + 1] = best_score[i] - penalty
                prev[i + 1] = i
                emitted[i + 1] = ids

        steps: list[tuple[int, ...]] = []
        pos = n
        while pos > 0:
            steps.append(emitted[pos])
            pos = prev[pos]
        return [token_id for step in reversed(steps) for token_id in step]


def build_tokenizer(description: Mapping[str, Any]) -> BaseTokenizer:
    """Build the tokenizer described by a Hugging Face tokenizer.json payload."""
    model = description.get("model") if isinstance(description, Mapping) else None
    model_type = str((model or {}).get("type") or "")
    if model_type == "Unigram":
        logger.info("using Unigram (SentencePiece) tokenizer")
        return UnigramTokenizer(description)
    logger.info("using BPE tokenizer (model.type=%s)", model_type or "unset")
    return BPETokenizer(description if isinstance(description, Mapping) else {})
