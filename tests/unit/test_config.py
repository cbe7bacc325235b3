from __future__ import annotations

from pathlib import Path

import pytest
from pydantic import ValidationError

from gliner_redact.config import ModelConfig, PatternDefinition, load_pattern_config
from gliner_redact.settings import Settings


def test_model_config_defaults_for_missing_and_empty_fields() -> None:
    config = ModelConfig.from_raw({"span_mode": "", "max_width": 0, "unrelated": "x"})

    assert config.span_mode == "token_level"
    assert config.max_width == 12
    assert config.max_len == 2048
    assert config.max_types == 100
    assert (config.ent_token, config.sep_token) == ("<<ENT>>", "<<SEP>>")
    assert config.is_span_mode is False
    assert ModelConfig.from_raw(None) == ModelConfig()


def test_model_config_reads_token_aliases() -> None:
    config = ModelConfig.from_raw({"entity_token": "<ENT>", "separator_token": "<SEP>", "max_width": 8})

    assert (config.ent_token, config.sep_token, config.max_width) == ("<ENT>", "<SEP>", 8)


def test_unknown_span_variants_use_span_layout() -> None:
    assert ModelConfig.from_raw({"span_mode": "markerV1"}).span_mode == "span_level"
    assert ModelConfig.from_raw({"span_mode": "markerV0"}).is_span_mode is True


def test_load_pattern_config_from_yaml(tmp_path: Path) -> None:
    path = tmp_path / "patterns.yaml"
    path.write_text(
        """
structured:
  - name: employee_id
    label: employee_id
    pattern: "EMP-\\\\d{6}"
    score: 0.9
context:
  - name: badge
    label: employee_id
    pattern: "badge\\\\s+(\\\\d{4})"
    group: 1
    locales: [en]
person_stopwords: [Team]
""",
        encoding="utf-8",
    )

    config = load_pattern_config(path)

    assert [item.name for item in config.structured] == ["employee_id"]
    assert config.structured[0].pattern == r"EMP-\d{6}"
    assert config.context[0].group == 1
    assert config.person_stopwords == ["Team"]


def test_pattern_definition_rejects_unknown_fields() -> None:
    with pytest.raises(ValidationError):
        PatternDefinition(name="x", label="x", pattern="x", weight=1.0)


def test_settings_read_prefixed_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("GLR_ANONYMIZATION_MODE", "hybrid")
    monkeypatch.setenv("GLR_THRESHOLD", "0.45")
    monkeypatch.setenv("GLR_REGEX_LOCALES", '["nl"]')

    settings = Settings()

    assert settings.anonymization_mode == "hybrid"
    assert settings.threshold == 0.45
    assert settings.regex_locales == ["nl"]


@pytest.mark.parametrize(
    ("raw", "expected"),
    [("en,nl", ["en", "nl"]), ("en", ["en"]), (" nl , en ", ["nl", "en"]), ('["en"]', ["en"])],
)
def test_regex_locales_accept_comma_separated_environment(
    monkeypatch: pytest.MonkeyPatch, raw: str, expected: list[str]
) -> None:
    monkeypatch.setenv("GLR_REGEX_LOCALES", raw)

    assert Settings().regex_locales == expected
