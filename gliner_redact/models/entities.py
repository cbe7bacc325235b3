from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass(slots=True)
class Entity:
    start: int
    end: int
    text: str
    label: str
    score: float
    detector: str = "gliner"
    metadata: dict[str, Any] = field(default_factory=dict)

    def key(self) -> tuple[int, int, str]:
        return (self.start, self.end, self.label)

    def overlaps(self, other: Entity) -> bool:
        return self.start < other.end and other.start < self.end


@dataclass(slots=True)
class AnonymizationResult:
    anonymized: str
    mappings: dict[str, str]
    entities: list[Entity] = field(default_factory=list)
    source: str = "none"


@dataclass(slots=True)
class UnmaskingResult:
    text: str
    replaced: int
