from __future__ import annotations

from typing import Any

from gliner_redact.runtime.tokenizer import (
    BPETokenizer,
    UnigramTokenizer,
    build_tokenizer,
    bytes_to_unicode,
)


def _byte_level(vocab: dict[str, int], merges: list[Any], **pre_tokenizer: Any) -> dict[str, Any]:
    return {
        "model": {"type": "BPE", "vocab": vocab, "merges": merges},
        "pre_tokenizer": {"type": "ByteLevel", **pre_tokenizer},
    }


def _unigram() -> dict[str, Any]:
    return {
        "model": {
            "type": "Unigram",
            "unk_id": 0,
            "vocab": [
                ["<unk>", 0.0],
                ["<s>", 0.0],
                ["</s>", 0.0],
                ["▁", -1.0],
                ["▁hello", -2.0],
                ["▁he", -1.5],
                ["llo", -1.5],
                ["<0xC3>", -5.0],
                ["<0xA9>", -5.0],
            ],
        },
        "added_tokens": [{"id": 9, "content": "<<ENT>>"}],
    }


def test_bytes_to_unicode_maps_every_byte_to_distinct_printable_char() -> None:
    table = bytes_to_unicode()

    assert len(table) == 256
    assert len(set(table.values())) == 256
    assert table[ord("A")] == "A"
    assert table[ord(" ")] == "Ġ"
    assert all(not char.isspace() for char in table.values())


def test_bpe_applies_lowest_rank_merge_first() -> None:
    vocab = {"l": 1, "o": 2, "w": 3, "lo": 4, "low": 5, "ow": 6}

    tokenizer = build_tokenizer(_byte_level(vocab, ["l o", "lo w", "o w"]))
    assert isinstance(tokenizer, BPETokenizer)
    assert tokenizer.encode_word("low") == [5]

    reordered = build_tokenizer(_byte_level(vocab, ["o w", "l o", "lo w"]))
    assert reordered.encode_word("low") == [1, 6]


def test_bpe_accepts_merges_as_pairs() -> None:
    tokenizer = build_tokenizer(_byte_level({"a": 1, "b": 2, "ab": 3}, [["a", "b"]]))

    assert tokenizer.encode_word("ab") == [3]
    assert tokenizer.encode_word("ba") == [2, 1]


def test_bpe_unknown_symbols_map_to_unk() -> None:
    tokenizer = build_tokenizer(_byte_level({"[UNK]": 7, "a": 1}, []))

    assert tokenizer.unk_token_id == 7
    assert tokenizer.encode_word("z") == [7]
    assert tokenizer.encode_word("az") == [1, 7]
    assert tokenizer.encode_word("") == [7]


def test_bpe_add_prefix_space_inside_sequence_pre_tokenizer() -> None:
    description = {
        "model": {
            "type": "BPE",
            "vocab": {"Ġ": 1, "h": 2, "i": 3, "Ġh": 4, "Ġhi": 5},
            "merges": ["Ġ h", "Ġh i"],
        },
        "pre_tokenizer": {
            "type": "Sequence",
            "pretokenizers": [{"type": "Split"}, {"type": "ByteLevel", "add_prefix_space": True}],
        },
    }
    tokenizer = build_tokenizer(description)

    assert tokenizer.is_byte_level is True
    assert tokenizer.add_prefix_space is True
    assert tokenizer.encode_word("hi") == [5]


def test_bpe_lone_surrogate_degrades_to_unk() -> None:
    tokenizer = build_tokenizer(_byte_level({"[UNK]": 0}, []))

    assert tokenizer.encode_word("\ud800") == [0, 0, 0]


def test_added_tokens_win_over_encoding() -> None:
    description = _byte_level({"a": 1}, [])
    description["added_tokens"] = [{"id": 100, "content": "<<ENT>>"}, {"id": 101, "content": "<<SEP>>"}]
    tokenizer = build_tokenizer(description)

    assert tokenizer.encode_word("<<ENT>>") == [100]
    assert tokenizer.get_token_id("<<SEP>>") == 101
    assert tokenizer.get_token_id("missing") == tokenizer.unk_token_id


def test_wordpiece_fallback_when_not_byte_level() -> None:
    description = {
        "model": {
            "type": "WordPiece",
            "vocab": {"[UNK]": 0, "[CLS]": 101, "[SEP]": 102, "play": 1, "##ing": 2},
        },
    }
    tokenizer = build_tokenizer(description)

    assert tokenizer.is_byte_level is False
    assert tokenizer.encode_word("play") == [1]
    assert tokenizer.encode_word("playingz") == [1, 2, 0]
    assert (tokenizer.cls_token_id, tokenizer.sep_token_id) == (101, 102)


def test_special_ids_fall_back_to_canonical_defaults() -> None:
    tokenizer = build_tokenizer({})

    assert (tokenizer.unk_token_id, tokenizer.cls_token_id, tokenizer.sep_token_id) == (0, 1, 2)


def test_special_ids_resolved_from_roberta_spellings() -> None:
    tokenizer = build_tokenizer(_byte_level({"<s>": 0, "<pad>": 1, "</s>": 2, "<unk>": 3}, []))

    assert (tokenizer.unk_token_id, tokenizer.cls_token_id, tokenizer.sep_token_id) == (3, 0, 2)


def test_unigram_viterbi_prefers_best_total_score() -> None:
    tokenizer = build_tokenizer(_unigram())

    assert isinstance(tokenizer, UnigramTokenizer)
    # "▁hello" (-2.0) beats "▁he" + "llo" (-3.0).
    assert tokenizer.encode_word("hello") == [4]


def test_unigram_applies_nfkc_normalization() -> None:
    tokenizer = build_tokenizer(_unigram())

    assert tokenizer.encode_word("ｈｅｌｌｏ") == [4]


def test_unigram_byte_fallback_emits_one_id_per_utf8_byte() -> None:
    tokenizer = build_tokenizer(_unigram())

    assert tokenizer.encode_word("é") == [3, 7, 8]


def test_unigram_unknown_character_without_byte_pieces_maps_to_unk() -> None:
    tokenizer = build_tokenizer(_unigram())

    assert tokenizer.encode_word("中") == [3, 0]


def test_unigram_special_ids_and_added_tokens() -> None:
    tokenizer = build_tokenizer(_unigram())

    assert (tokenizer.unk_token_id, tokenizer.cls_token_id, tokenizer.sep_token_id) == (0, 1, 2)
    assert tokenizer.encode_word("<<ENT>>") == [9]


def test_construction_tolerates_malformed_fields() -> None:
    tokenizer = build_tokenizer({"model": {"type": "Unigram", "vocab": [["ok", "nan?"], "bad", [1, 2]]}})

    assert tokenizer.encode_word("x") == [tokenizer.unk_token_id, tokenizer.unk_token_id]


def test_encode_word_is_stable_across_repeated_calls() -> None:
    byte_level = build_tokenizer(
        _byte_level({"[UNK]": 0, "l": 1, "o": 2, "w": 3, "lo": 4, "low": 5, "Ã": 6, "©": 7}, ["l o", "lo w"])
    )
    unigram = build_tokenizer(_unigram())
    cases = [
        (byte_level, ["low", "é", "zz", "<<ENT>>"]),
        (unigram, ["hello", "é", "中", "<<ENT>>"]),
    ]

    for tokenizer, words in cases:
        first = {word: tokenizer.encode_word(word) for word in words}
        for _ in range(3):
            for word in reversed(words):
                assert tokenizer.encode_word(word) == first[word]

    # "é" is two UTF-8 bytes on the byte-level path and two byte pieces on the Unigram path.
    assert byte_level.encode_word("é") == [6, 7]
    assert unigram.encode_word("é") == [3, 7, 8]


def test_special_ids_prefer_bert_style_post_processor() -> None:
    description = _byte_level({"[CLS]": 1, "[SEP]": 2, "<s>": 40, "</s>": 41}, [])
    description["post_processor"] = {"type": "RobertaProcessing", "cls": ["<s>", 40], "sep": ["</s>", 41]}

    tokenizer = build_tokenizer(description)

    assert (tokenizer.cls_token_id, tokenizer.sep_token_id) == (40, 41)


def test_special_ids_read_from_template_post_processor() -> None:
    description = _unigram()
    description["post_processor"] = {
        "type": "Sequence",
        "processors": [
            {"type": "ByteLevel"},
            {
                "type": "TemplateProcessing",
                "single": [
                    {"SpecialToken": {"id": "[CLS]", "type_id": 0}},
                    {"Sequence": {"id": "A", "type_id": 0}},
                    {"SpecialToken": {"id": "[SEP]", "type_id": 0}},
                ],
                "special_tokens": {
                    "[CLS]": {"id": "[CLS]", "ids": [50], "tokens": ["[CLS]"]},
                    "[SEP]": {"id": "[SEP]", "ids": [51], "tokens": ["[SEP]"]},
                },
            },
        ],
    }

    tokenizer = build_tokenizer(description)

    assert (tokenizer.cls_token_id, tokenizer.sep_token_id) == (50, 51)
    assert tokenizer.unk_token_id == 0
