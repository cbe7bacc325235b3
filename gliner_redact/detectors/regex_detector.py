from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass

import regex as re

from gliner_redact.config import PatternDefinition
from gliner_redact.detectors.base import Detector
from gliner_redact.models.entities import Entity

_FLAG_MAP: dict[str, int] = {
    "IGNORECASE": re.IGNORECASE,
    "MULTILINE": re.MULTILINE,
    "DOTALL": re.DOTALL,
    "UNICODE": re.UNICODE,
}


@dataclass(slots=True)
class CompiledPattern:
    name: str
    label: str
    regex: re.Pattern
    score: float
    group: int


def compile_pattern(definition: PatternDefinition) -> CompiledPattern:
    flags_value = 0
    for flag in definition.flags:
        flags_value |= _FLAG_MAP.get(str(flag).upper(), 0)
    compiled = re.compile(definition.pattern, flags_value)
    if definition.group > compiled.groups:
        raise ValueError(f"pattern '{definition.name}' has no capture group {definition.group}")
    return CompiledPattern(
        name=definition.name,
        label=definition.label,
        regex=compiled,
        score=definition.score,
        group=definition.group,
    )


class RegexDetector(Detector):
    def __init__(self, name: str, patterns: Sequence[PatternDefinition]) -> None:
        super().__init__(name)
        self._patterns = [compile_pattern(pattern) for pattern in patterns]

    @property
    def labels(self) -> list[str]:
        return list(dict.fromkeys(pattern.label for pattern in self._patterns))

    def detect(self, text: str) -> list[Entity]:
        findings: list[Entity] = []
        for pattern in self._patterns:
            for match in pattern.regex.finditer(text):
                start, end = match.span(pattern.group)
                if start < 0:
                    continue
                # Captured values may carry the separator that followed the keyword.
                value = text[start:end]
                start += len(value) - len(value.lstrip())
                end -= len(value) - len(value.rstrip())
                if end <= start:
                    continue
                findings.append(
                    Entity(
                        start=start,
                        end=end,
                        text=text[start:end],
                        label=pattern.label,
                        score=pattern.score,
                        detector=self.name,
                        metadata={"pattern": pattern.name},
                    )
                )
        return findings

    def count_matches(self, text: str) -> dict[str, int]:
        counts: dict[str, int] = {}
        for pattern in self._patterns:
            found = sum(1 for _ in pattern.regex.finditer(text))
            if found:
                counts[pattern.label] = counts.get(pattern.label, 0) + found
        return counts
