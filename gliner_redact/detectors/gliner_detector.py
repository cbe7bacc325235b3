from __future__ import annotations

from collections.abc import Sequence
from dataclasses import replace

from gliner_redact.detectors.base import Detector
from gliner_redact.labels import PII_LABELS, placeholder_type
from gliner_redact.models.entities import Entity
from gliner_redact.runtime.gliner_runtime import GlinerRuntime


class GlinerDetector(Detector):
    """Model detections relabelled to placeholder types, so they merge with regex findings."""

    def __init__(
        self,
        name: str,
        runtime: GlinerRuntime,
        labels: Sequence[str] = PII_LABELS,
        threshold: float | None = None,
    ) -> None:
        super().__init__(name)
        self._runtime = runtime
        self._labels = list(labels)
        self._threshold = threshold

    @property
    def runtime(self) -> GlinerRuntime:
        return self._runtime

    def is_available(self) -> bool:
        return self._runtime.is_available()

    def detect(self, text: str) -> list[Entity]:
        findings: list[Entity] = []
        for entity in self._runtime.predict_entities(text, self._labels, threshold=self._threshold):
            findings.append(
                replace(
                    entity,
                    label=placeholder_type(entity.label),
                    detector=self.name,
                    metadata={**entity.metadata, "model_label": entity.label},
                )
            )
        return findings
