from __future__ import annotations

from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import BaseModel, ConfigDict, Field

SpanMode = Literal["token_level", "span_level", "markerV0"]

_RAW_ALIASES: dict[str, tuple[str, ...]] = {
    "span_mode": ("span_mode",),
    "max_width": ("max_width",),
    "max_len": ("max_len",),
    "max_types": ("max_types",),
    "ent_token": ("ent_token", "entity_token"),
    "sep_token": ("sep_token", "separator_token"),
}


class ModelConfig(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore")

    span_mode: SpanMode = "token_level"
    max_width: int = Field(default=12, ge=1)
    max_len: int = Field(default=2048, ge=2)
    max_types: int = Field(default=100, ge=1)
    ent_token: str = "<<ENT>>"
    sep_token: str = "<<SEP>>"

    @property
    def is_span_mode(self) -> bool:
        return self.span_mode != "token_level"

    @classmethod
    def from_raw(cls, raw: dict[str, Any] | None) -> ModelConfig:
        """Build from a downloaded gliner_config.json; absent or empty fields keep defaults."""
        values: dict[str, Any] = {}
        for field_name, keys in _RAW_ALIASES.items():
            for key in keys:
                value = (raw or {}).get(key)
                if value:
                    values[field_name] = value
                    break
        if values.get("span_mode") not in (None, "token_level", "span_level", "markerV0"):
            # Every GLiNER span variant (markerV1, query, ...) shares the span output layout.
            values["span_mode"] = "span_level"
        return cls.model_validate(values)


class PatternDefinition(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str
    label: str
    pattern: str
    score: float = 0.8
    flags: list[str] = Field(default_factory=list)
    group: int = 0
    locales: list[str] = Field(default_factory=list)


class PatternConfig(BaseModel):
    model_config = ConfigDict(extra="allow")

    structured: list[PatternDefinition] = Field(default_factory=list)
    context: list[PatternDefinition] = Field(default_factory=list)
    person_stopwords: list[str] = Field(default_factory=list)


def load_pattern_config(path: str | Path) -> PatternConfig:
    pattern_path = Path(path)
    with pattern_path.open("r", encoding="utf-8") as file:
        raw = yaml.safe_load(file) or {}
    return PatternConfig.model_validate(raw)
