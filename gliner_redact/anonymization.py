from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from functools import lru_cache
from typing import Literal

import regex as re

from gliner_redact.config import PatternConfig, load_pattern_config
from gliner_redact.detectors.base import Detector
from gliner_redact.detectors.gliner_detector import GlinerDetector
from gliner_redact.detectors.patterns import build_fallback_detectors, build_structured_detector
from gliner_redact.detectors.regex_detector import RegexDetector
from gliner_redact.errors import ExecutionError, ModelUnavailableError
from gliner_redact.masking.engine import PlaceholderMaskingEngine
from gliner_redact.models.entities import AnonymizationResult, Entity, UnmaskingResult
from gliner_redact.runtime.gliner_runtime import GlinerRuntime, build_gliner_runtime
from gliner_redact.settings import Settings

logger = logging.getLogger(__name__)

AnonymizationMode = Literal["model", "regex", "hybrid"]


def expand_repeated_values(text: str, entities: Sequence[Entity]) -> list[Entity]:
    """Add every other case-insensitive, word-bounded occurrence of each detected value."""
    expanded = list(entities)
    taken = {(entity.start, entity.end) for entity in entities}
    searched: set[tuple[str, str]] = set()
    for entity in entities:
        key = (entity.label, entity.text.casefold())
        if not entity.text.strip() or key in searched:
            continue
        searched.add(key)
        pattern = re.compile(r"(?<!\w)" + re.escape(entity.text) + r"(?!\w)", re.IGNORECASE)
        for match in pattern.finditer(text):
            if match.span() in taken:
                continue
            taken.add(match.span())
            expanded.append(
                Entity(
                    start=match.start(),
                    end=match.end(),
                    text=match.group(0),
                    label=entity.label,
                    score=entity.score,
                    detector=entity.detector,
                    metadata={**entity.metadata, "repeat_of": entity.start},
                )
            )
    return expanded


def merge_hybrid(model_entities: Sequence[Entity], regex_entities: Sequence[Entity]) -> list[Entity]:
    """Union of both sources; a regex finding on exactly a model span is dropped."""
    model_spans = {(entity.start, entity.end) for entity in model_entities}
    return [
        *model_entities,
        *(entity for entity in regex_entities if (entity.start, entity.end) not in model_spans),
    ]


class AnonymizationService:
    def __init__(
        self,
        model_detector: GlinerDetector | None,
        fallback_detectors: Sequence[Detector],
        mode: AnonymizationMode = "model",
        stats_detector: RegexDetector | None = None,
    ) -> None:
        if mode not in ("model", "regex", "hybrid"):
            raise ValueError(f"unsupported anonymization mode: {mode}")
        self._model_detector = model_detector
        self._fallback_detectors = list(fallback_detectors)
        self._mode = mode
        self._stats_detector = stats_detector or build_structured_detector()
        model_name = model_detector.name if model_detector is not None else None
        self._engine = PlaceholderMaskingEngine(priority=lambda item: 0 if item.detector == model_name else 1)

    @property
    def mode(self) -> AnonymizationMode:
        return self._mode

    @property
    def runtime(self) -> GlinerRuntime | None:
        return self._model_detector.runtime if self._model_detector is not None else None

    def _detect_with_model(self, text: str) -> list[Entity] | None:
        detector = self._model_detector
        if detector is None:
            return None
        if not detector.is_available():
            logger.info("gliner model not available, using regex fallback")
            return None
        try:
            return detector.detect(text)
        except (ModelUnavailableError, ExecutionError) as exc:
            logger.warning("gliner detection failed, falling back to regex: %s", exc)
            return None

    def _detect_with_fallback(self, text: str) -> list[Entity]:
        findings: list[Entity] = []
        for detector in self._fallback_detectors:
            findings.extend(detector.detect(text))
        return expand_repeated_values(text, findings)

    def anonymize(self, text: str) -> AnonymizationResult:
        if not text:
            return AnonymizationResult(anonymized="", mappings={}, entities=[], source="none")

        if self._mode == "regex":
            return self._engine.mask(text, self._detect_with_fallback(text), source="regex")

        model_entities = self._detect_with_model(text)
        if model_entities is None:
            return self._engine.mask(text, self._detect_with_fallback(text), source="regex")
        if self._mode == "hybrid":
            merged = merge_hybrid(model_entities, self._detect_with_fallback(text))
            return self._engine.mask(text, merged, source="hybrid")
        return self._engine.mask(text, model_entities, source="model")

    def reidentify(self, text: str, mappings: Mapping[str, str]) -> UnmaskingResult:
        return self._engine.unmask(text, mappings)

    def stats(self, text: str) -> dict[str, int]:
        return self._stats_detector.count_matches(text or "")


@lru_cache(maxsize=8)
def _default_stats_detector(locales: tuple[str, ...]) -> RegexDetector:
    return build_structured_detector(locales)


def reverse_pii_mappings(text: str, mappings: Mapping[str, str]) -> str:
    return PlaceholderMaskingEngine.unmask(text, mappings).text


def get_pii_stats(text: str, locales: Sequence[str] = ("en", "nl")) -> dict[str, int]:
    """Raw structured-pattern match counts per type; diagnostic only."""
    return _default_stats_detector(tuple(locales)).count_matches(text or "")


def build_anonymization_service(
    settings: Settings,
    runtime: GlinerRuntime | None = None,
) -> AnonymizationService:
    pattern_config: PatternConfig | None = None
    if settings.patterns_path:
        pattern_config = load_pattern_config(settings.patterns_path)
        logger.info("loaded pattern overrides from %s", settings.patterns_path)

    model_detector = GlinerDetector(
        name="gliner",
        runtime=runtime or build_gliner_runtime(settings),
        threshold=settings.threshold,
    )
    return AnonymizationService(
        model_detector=model_detector,
        fallback_detectors=build_fallback_detectors(settings.regex_locales, pattern_config),
        mode=settings.anonymization_mode,
        stats_detector=build_structured_detector(settings.regex_locales, pattern_config),
    )
