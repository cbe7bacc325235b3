from __future__ import annotations

from abc import ABC, abstractmethod

from gliner_redact.models.entities import Entity


class Detector(ABC):
    def __init__(self, name: str) -> None:
        self.name = name

    @abstractmethod
    def detect(self, text: str) -> list[Entity]:
        raise NotImplementedError
