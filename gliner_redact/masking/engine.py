from __future__ import annotations

from collections.abc import Callable, Iterable, Mapping
from dataclasses import replace
from typing import Any

import regex as re

from gliner_redact.labels import placeholder_type
from gliner_redact.models.entities import AnonymizationResult, Entity, UnmaskingResult
from gliner_redact.runtime.decoder import greedy_search


def format_placeholder(entity_type: str, counter: int) -> str:
    return f"<{entity_type} {counter}>"


class PlaceholderMaskingEngine:
    def __init__(self, priority: Callable[[Entity], Any] | None = None) -> None:
        # Secondary sort key for equal scores; lower wins.
        self._priority = priority

    def resolve_overlaps(self, entities: Iterable[Entity]) -> list[Entity]:
        priority = self._priority

        def tie_breaker(item: Entity) -> tuple[Any, int, int]:
            rank = priority(item) if priority is not None else 0
            return (rank, -(item.end - item.start), item.start)

        return greedy_search(entities, tie_breaker=tie_breaker)

    @staticmethod
    def _valid(text: str, entities: Iterable[Entity]) -> list[Entity]:
        out: list[Entity] = []
        for entity in entities:
            if not (0 <= entity.start < entity.end <= len(text)):
                continue
            out.append(replace(entity, text=text[entity.start : entity.end]))
        return out

    def mask(self, text: str, entities: Iterable[Entity], source: str = "none") -> AnonymizationResult:
        findings = self.resolve_overlaps(self._valid(text, entities))
        if not findings:
            return AnonymizationResult(anonymized=text, mappings={}, entities=[], source=source)

        mappings: dict[str, str] = {}
        counters: dict[str, int] = {}
        placeholder_by_original: dict[tuple[str, str], str] = {}
        assigned: list[tuple[Entity, str]] = []

        for finding in findings:
            entity_type = placeholder_type(finding.label)
            key = (entity_type, finding.text)
            placeholder = placeholder_by_original.get(key)
            if placeholder is None:
                counter = counters.get(entity_type, 0) + 1
                # A placeholder-looking string already in the source would make reversal ambiguous.
                while format_placeholder(entity_type, counter) in text:
                    counter += 1
                counters[entity_type] = counter
                placeholder = format_placeholder(entity_type, counter)
                placeholder_by_original[key] = placeholder
                mappings[placeholder] = finding.text
            assigned.append((finding, placeholder))

        masked = text
        for finding, placeholder in sorted(assigned, key=lambda item: item[0].start, reverse=True):
            masked = masked[: finding.start] + placeholder + masked[finding.end :]

        return AnonymizationResult(anonymized=masked, mappings=mappings, entities=findings, source=source)

    @staticmethod
    def unmask(text: str, mappings: Mapping[str, str]) -> UnmaskingResult:
        if not mappings or not text:
            return UnmaskingResult(text=text, replaced=0)

        # One pass: restored values are never scanned again.
        ordered = sorted((key for key in mappings if key), key=len, reverse=True)
        if not ordered:
            return UnmaskingResult(text=text, replaced=0)
        pattern = re.compile("|".join(re.escape(placeholder) for placeholder in ordered))
        restored, replaced = pattern.subn(lambda match: mappings[match.group(0)], text)
        return UnmaskingResult(text=restored, replaced=replaced)
