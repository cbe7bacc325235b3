from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

SourceType = Literal["model", "regex", "hybrid", "none"]


class EntityItem(BaseModel):
    start: int
    end: int
    text: str
    label: str
    score: float
    detector: str


class AnonymizeRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    text: str


class AnonymizeResponse(BaseModel):
    anonymized: str
    mappings: dict[str, str] = Field(default_factory=dict)
    source: SourceType
    entities: list[EntityItem] = Field(default_factory=list)


class ReidentifyRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    text: str
    mappings: dict[str, str] = Field(default_factory=dict)


class ReidentifyResponse(BaseModel):
    text: str
    replaced: int


class StatsRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    text: str


class StatsResponse(BaseModel):
    stats: dict[str, int] = Field(default_factory=dict)


class DetectRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    text: str
    labels: list[str] | None = Field(default=None, min_length=1)
    threshold: float | None = Field(default=None, gt=0.0, lt=1.0)


class DetectResponse(BaseModel):
    entities: list[EntityItem] = Field(default_factory=list)
