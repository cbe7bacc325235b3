from __future__ import annotations

from collections.abc import Sequence
from pathlib import Path

import pytest

from gliner_redact.anonymization import (
    AnonymizationService,
    build_anonymization_service,
    expand_repeated_values,
    get_pii_stats,
    merge_hybrid,
    reverse_pii_mappings,
)
from gliner_redact.detectors.gliner_detector import GlinerDetector
from gliner_redact.detectors.patterns import build_fallback_detectors
from gliner_redact.errors import ConfigurationError, ExecutionError, ModelUnavailableError
from gliner_redact.models.entities import Entity
from gliner_redact.runtime.gliner_runtime import GlinerRuntime
from gliner_redact.settings import Settings

SAMPLE = "Contact John Smith at john.smith@example.com or 555-123-4567."


def _find(text: str, needle: str, label: str, score: float = 0.9) -> Entity:
    start = text.index(needle)
    return Entity(start=start, end=start + len(needle), text=needle, label=label, score=score)


class FakeRuntime(GlinerRuntime):
    def __init__(
        self,
        entities: list[Entity] | None = None,
        *,
        available: bool = True,
        error: Exception | None = None,
    ) -> None:
        self.entities = entities or []
        self.available = available
        self.error = error
        self.calls: list[tuple[str, list[str] | None, float | None]] = []
        self.disposed = False

    def predict_entities(
        self,
        text: str,
        labels: Sequence[str] | None = None,
        threshold: float | None = None,
    ) -> list[Entity]:
        self.calls.append((text, list(labels) if labels is not None else None, threshold))
        if self.error is not None:
            raise self.error
        return list(self.entities)

    def ensure_ready(self) -> bool:
        return self.available

    def is_ready(self) -> bool:
        return self.available

    def is_available(self) -> bool:
        return self.available

    def load_error(self) -> str | None:
        return None if self.available else "gliner model files are not available"

    def dispose(self) -> None:
        self.disposed = True


def _service(runtime: FakeRuntime, mode: str = "model") -> AnonymizationService:
    return AnonymizationService(
        model_detector=GlinerDetector(name="gliner", runtime=runtime),
        fallback_detectors=build_fallback_detectors(),
        mode=mode,
    )


def test_regex_mode_masks_person_email_and_phone() -> None:
    runtime = FakeRuntime()

    result = _service(runtime, mode="regex").anonymize(SAMPLE)

    assert result.anonymized == "Contact <person 1> at <email 1> or <phone 1>."
    assert result.mappings == {
        "<person 1>": "John Smith",
        "<email 1>": "john.smith@example.com",
        "<phone 1>": "555-123-4567",
    }
    assert result.source == "regex"
    assert runtime.calls == []


def test_ip_address_wins_over_phone_like_digits() -> None:
    result = _service(FakeRuntime(), mode="regex").anonymize("Server 192.168.1.10 is down")

    assert result.anonymized == "Server <ip_address 1> is down"


def test_empty_text_returns_empty_result() -> None:
    runtime = FakeRuntime()

    result = _service(runtime).anonymize("")

    assert (result.anonymized, result.mappings, result.source) == ("", {}, "none")
    assert runtime.calls == []


def test_model_mode_uses_model_entities_with_placeholder_types() -> None:
    runtime = FakeRuntime(
        [
            _find(SAMPLE, "John Smith", "person"),
            _find(SAMPLE, "john.smith@example.com", "email address"),
        ]
    )

    result = _service(runtime).anonymize(SAMPLE)

    assert result.anonymized == "Contact <person 1> at <email 1> or 555-123-4567."
    assert result.source == "model"
    assert {entity.detector for entity in result.entities} == {"gliner"}
    assert result.entities[1].metadata["model_label"] == "email address"
    assert runtime.calls[0][0] == SAMPLE


@pytest.mark.parametrize(
    "error",
    [ModelUnavailableError("missing"), ExecutionError("window 0: executor run failed", window_index=0)],
)
def test_model_failures_fall_back_to_regex(error: Exception) -> None:
    result = _service(FakeRuntime(error=error)).anonymize(SAMPLE)

    assert result.source == "regex"
    assert result.anonymized == "Contact <person 1> at <email 1> or <phone 1>."


def test_unavailable_model_is_not_called() -> None:
    runtime = FakeRuntime(available=False)

    result = _service(runtime).anonymize(SAMPLE)

    assert result.source == "regex"
    assert runtime.calls == []


def test_configuration_errors_propagate() -> None:
    with pytest.raises(ConfigurationError):
        _service(FakeRuntime(error=ConfigurationError("broken"))).anonymize(SAMPLE)


def test_hybrid_mode_merges_sources_and_keeps_model_span() -> None:
    runtime = FakeRuntime([_find(SAMPLE, "John Smith", "person", score=0.5)])

    result = _service(runtime, mode="hybrid").anonymize(SAMPLE)

    assert result.source == "hybrid"
    assert result.anonymized == "Contact <person 1> at <email 1> or <phone 1>."
    person = next(entity for entity in result.entities if entity.label == "person")
    assert person.detector == "gliner"


def test_merge_hybrid_drops_regex_on_identical_span() -> None:
    model = [Entity(start=0, end=4, text="Jane", label="person", score=0.4, detector="gliner")]
    regex = [
        Entity(start=0, end=4, text="Jane", label="person", score=0.5, detector="person_heuristic"),
        Entity(start=0, end=9, text="Jane Doe.", label="person", score=0.5, detector="person_heuristic"),
    ]

    assert [(entity.end, entity.detector) for entity in merge_hybrid(model, regex)] == [
        (4, "gliner"),
        (9, "person_heuristic"),
    ]


def test_invalid_mode_is_rejected() -> None:
    with pytest.raises(ValueError):
        _service(FakeRuntime(), mode="fast")


def test_round_trip_restores_original_text() -> None:
    service = _service(FakeRuntime(), mode="regex")
    result = service.anonymize(SAMPLE)

    assert reverse_pii_mappings(result.anonymized, result.mappings) == SAMPLE
    restored = service.reidentify(f"Reply to {result.anonymized}", result.mappings)
    assert restored.text == f"Reply to {SAMPLE}"
    assert restored.replaced == 3


def test_stats_count_structured_matches() -> None:
    stats = get_pii_stats(SAMPLE)

    assert stats["email"] == 1
    assert stats["phone"] >= 1
    assert "person" not in stats
    assert get_pii_stats("") == {}


def test_build_service_applies_pattern_file(tmp_path: Path) -> None:
    patterns = tmp_path / "patterns.yaml"
    patterns.write_text(
        "structured:\n  - name: employee_id\n    label: employee_id\n    pattern: 'EMP-\\d{6}'\n",
        encoding="utf-8",
    )
    runtime = FakeRuntime()
    settings = Settings(anonymization_mode="regex", patterns_path=str(patterns), threshold=0.6)

    service = build_anonymization_service(settings, runtime=runtime)
    result = service.anonymize("Badge EMP-123456 issued")

    assert service.mode == "regex"
    assert service.runtime is runtime
    assert result.anonymized == "Badge <employee_id 1> issued"
    assert service.stats("EMP-123456 EMP-654321")["employee_id"] == 2


def test_build_service_passes_threshold_to_runtime() -> None:
    runtime = FakeRuntime([])
    service = build_anonymization_service(Settings(threshold=0.6), runtime=runtime)

    service.anonymize("hello there")

    assert runtime.calls[0][2] == 0.6


def test_regex_mode_masks_repeated_value_in_other_casing() -> None:
    text = "Contact John Smith today. Later john smith called again."
    service = _service(FakeRuntime(), mode="regex")

    result = service.anonymize(text)

    assert result.anonymized == "Contact <person 1> today. Later <person 2> called again."
    assert result.mappings == {"<person 1>": "John Smith", "<person 2>": "john smith"}
    assert service.reidentify(result.anonymized, result.mappings).text == text


def test_repeated_values_respect_word_boundaries() -> None:
    text = "Ann Lee met ANN LEE and Annlee"
    found = Entity(start=0, end=7, text="Ann Lee", label="person", score=0.5, detector="person_heuristic")

    expanded = expand_repeated_values(text, [found])

    assert [(entity.start, entity.text) for entity in expanded] == [(0, "Ann Lee"), (12, "ANN LEE")]
    assert expanded[1].metadata["repeat_of"] == 0
    assert expanded[1].detector == "person_heuristic"
