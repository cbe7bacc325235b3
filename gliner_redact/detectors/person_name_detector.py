from __future__ import annotations

from collections.abc import Iterable

import regex as re

from gliner_redact.detectors.base import Detector
from gliner_redact.models.entities import Entity

# Runs of capitalized words on one line, e.g. "Jan de Vries" yields "Jan" and "Vries" runs.
_CAPITALIZED_RUN_RE = re.compile(r"\b\p{Lu}\p{Ll}+(?:[ \t]+\p{Lu}\p{Ll}+)*\b")
_WORD_RE = re.compile(r"\S+")


class PersonNameDetector(Detector):
    """Heuristic person names: two or more capitalized words that are not function words."""

    def __init__(self, name: str, stopwords: Iterable[str], score: float = 0.5, min_words: int = 2) -> None:
        super().__init__(name)
        self._stopwords = frozenset(stopwords)
        self._score = score
        self._min_words = max(1, min_words)

    def detect(self, text: str) -> list[Entity]:
        findings: list[Entity] = []
        for run in _CAPITALIZED_RUN_RE.finditer(text):
            words = [
                (run.start() + word.start(), run.start() + word.end())
                for word in _WORD_RE.finditer(run.group(0))
            ]
            while words and text[words[0][0] : words[0][1]] in self._stopwords:
                words.pop(0)
            while words and text[words[-1][0] : words[-1][1]] in self._stopwords:
                words.pop()
            if len(words) < self._min_words:
                continue
            start, end = words[0][0], words[-1][1]
            findings.append(
                Entity(
                    start=start,
                    end=end,
                    text=text[start:end],
                    label="person",
                    score=self._score,
                    detector=self.name,
                    metadata={"words": len(words)},
                )
            )
        return findings
