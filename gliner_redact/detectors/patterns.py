from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence

from gliner_redact.config import PatternConfig, PatternDefinition
from gliner_redact.detectors.base import Detector
from gliner_redact.detectors.person_name_detector import PersonNameDetector
from gliner_redact.detectors.regex_detector import RegexDetector

logger = logging.getLogger(__name__)

# Labels here double as placeholder types and as get_pii_stats keys.
STRUCTURED_PATTERNS: tuple[PatternDefinition, ...] = (
    PatternDefinition(
        name="email",
        label="email",
        pattern=r"\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b",
        score=0.95,
    ),
    PatternDefinition(
        # International: optional +cc, 7 to 15 digits with optional separators.
        name="phone",
        label="phone",
        pattern=r"(?<!\w)(?:\+\d{1,3}[-.\s]?)?\(?\d{1,4}\)?[-.\s]?\d{2,4}[-.\s]?\d{3,4}[-.\s]?\d{0,4}\b",
        score=0.7,
    ),
    PatternDefinition(
        name="credit_card",
        label="credit_card",
        pattern=r"\b(?:\d{4}[-\s]?){3}\d{4}\b",
        score=0.9,
    ),
    PatternDefinition(
        name="ssn",
        label="ssn",
        pattern=r"\b\d{3}-\d{2}-\d{4}\b",
        score=0.9,
    ),
    PatternDefinition(
        name="passport",
        label="passport",
        pattern=r"\b[A-Z]{1,2}\d{6,9}\b",
        score=0.6,
    ),
    PatternDefinition(
        # Number, capitalized street name words on one line, then a street suffix.
        name="address",
        label="address",
        pattern=(
            r"\b\d+[ \t]+(?:[A-Z][A-Za-z]*[ \t]+)*"
            r"(?:(?:Street|St|Avenue|Ave|Road|Rd|Boulevard|Blvd|Drive|Dr|Lane|Ln|Court|Ct"
            r"|Circle|Cir|Terrace|Ter|Way|Park|Parkway|Pkwy|Place|Pl|Square|Sq|Trail|Trl)\b"
            r"|[A-Z][a-z]*(?:straat|laan|weg|plein|gracht|kade|singel)\b)"
        ),
        score=0.75,
    ),
    PatternDefinition(
        name="iban",
        label="bank_account",
        pattern=r"\b[A-Z]{2}\d{2}(?:[ ]?[A-Z0-9]{4}){3,7}(?:[ ]?[A-Z0-9]{1,3})?\b",
        score=0.9,
    ),
    PatternDefinition(
        # Bare account numbers only count when "account" follows on the same line.
        name="bank_account",
        label="bank_account",
        pattern=r"\b\d{9,17}\b(?=.*account)",
        score=0.6,
        flags=["IGNORECASE"],
    ),
    PatternDefinition(
        name="health_insurance_id",
        label="health_insurance_id",
        pattern=r"\b[A-Z]{2}\d{10}\b",
        score=0.7,
    ),
    PatternDefinition(
        # mm/dd/yyyy or dd-mm-yyyy.
        name="date_of_birth",
        label="date_of_birth",
        pattern=(
            r"\b(?:(?:0[1-9]|1[0-2])[-/](?:0[1-9]|[12]\d|3[01])"
            r"|(?:0[1-9]|[12]\d|3[01])[-/.](?:0[1-9]|1[0-2]))[-/.](?:19|20)\d{2}\b"
        ),
        score=0.85,
    ),
    PatternDefinition(
        name="ip_address",
        label="ip_address",
        pattern=r"\b(?:[0-9]{1,3}\.){3}[0-9]{1,3}\b",
        score=0.85,
    ),
)

_KEYWORD_SEPARATOR = r"\s*(?::|is\b)?\s*"
_PHONE_VALUE = r"(\+?\d[\d\s\-.]{6,17}\d)"
_ACCOUNT_VALUE = r"([A-Z]{2}\d{2}\s?[A-Z]{4}\s?[\d\s]{8,26}|\d{9,17})"

# Keyword-preceded values; group 1 is the PII itself.
CONTEXT_PATTERNS: tuple[PatternDefinition, ...] = (
    PatternDefinition(
        name="ssn_context_en",
        label="ssn",
        pattern=r"\bsocial\s+security(?:\s+number)?" + _KEYWORD_SEPARATOR + r"(\d{7,9})\b",
        score=0.85,
        flags=["IGNORECASE"],
        group=1,
        locales=["en"],
    ),
    PatternDefinition(
        name="ssn_context_nl",
        label="ssn",
        pattern=r"\b(?:BSN|sofi(?:nummer)?|burgerservicenummer)" + _KEYWORD_SEPARATOR + r"(\d{7,9})\b",
        score=0.85,
        flags=["IGNORECASE"],
        group=1,
        locales=["nl"],
    ),
    PatternDefinition(
        name="phone_context_en",
        label="phone",
        pattern=r"\b(?:phone(?:\s*number)?|tel|mobile)" + _KEYWORD_SEPARATOR + _PHONE_VALUE,
        score=0.85,
        flags=["IGNORECASE"],
        group=1,
        locales=["en"],
    ),
    PatternDefinition(
        name="phone_context_nl",
        label="phone",
        pattern=r"\b(?:telefoon(?:nummer)?|mobiel|nummer)" + _KEYWORD_SEPARATOR + _PHONE_VALUE,
        score=0.85,
        flags=["IGNORECASE"],
        group=1,
        locales=["nl"],
    ),
    PatternDefinition(
        name="bank_account_context_en",
        label="bank_account",
        pattern=r"\b(?:account(?:\s*number)?|IBAN)" + _KEYWORD_SEPARATOR + _ACCOUNT_VALUE,
        score=0.85,
        flags=["IGNORECASE"],
        group=1,
        locales=["en"],
    ),
    PatternDefinition(
        name="bank_account_context_nl",
        label="bank_account",
        pattern=r"\b(?:rekening(?:nummer)?|IBAN)" + _KEYWORD_SEPARATOR + _ACCOUNT_VALUE,
        score=0.85,
        flags=["IGNORECASE"],
        group=1,
        locales=["nl"],
    ),
)

PERSON_STOPWORDS: tuple[str, ...] = (
    "The", "And", "Or", "But", "In", "On", "At", "To", "For", "Of", "With",
    "By", "From", "Is", "Are", "Was", "Were", "Been", "Be", "Have", "Has",
    "Had", "Do", "Does", "Did", "Will", "Would", "Should", "Could", "May",
    "Might", "Must", "Can",
    # Sentence openers that precede names in notes and transcripts.
    "A", "An", "This", "That", "Dear", "Hi", "Hello", "Contact", "Call", "Please",
    "De", "Het", "Een", "Beste",
)


def select_patterns(patterns: Iterable[PatternDefinition], locales: Sequence[str]) -> list[PatternDefinition]:
    """Keep locale-neutral patterns plus those tagged with one of the active locales."""
    active = {locale.strip().lower() for locale in locales if locale.strip()}
    return [
        pattern
        for pattern in patterns
        if not pattern.locales or active.intersection(locale.lower() for locale in pattern.locales)
    ]


def build_structured_detector(
    locales: Sequence[str] = ("en", "nl"),
    pattern_config: PatternConfig | None = None,
) -> RegexDetector:
    extra = pattern_config.structured if pattern_config is not None else []
    return RegexDetector(name="regex", patterns=select_patterns([*STRUCTURED_PATTERNS, *extra], locales))


def build_fallback_detectors(
    locales: Sequence[str] = ("en", "nl"),
    pattern_config: PatternConfig | None = None,
) -> list[Detector]:
    context_extra = pattern_config.context if pattern_config is not None else []
    stopword_extra = pattern_config.person_stopwords if pattern_config is not None else []

    structured = build_structured_detector(locales, pattern_config)
    context = RegexDetector(name="context", patterns=select_patterns([*CONTEXT_PATTERNS, *context_extra], locales))
    person = PersonNameDetector(name="person_heuristic", stopwords=[*PERSON_STOPWORDS, *stopword_extra])
    logger.debug(
        "fallback detectors built (locales=%s, structured=%d, context=%d)",
        ",".join(locales),
        len(structured.labels),
        len(context.labels),
    )
    return [structured, context, person]
