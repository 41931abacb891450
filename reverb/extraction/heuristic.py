"""Heuristic extraction engine — regex patterns over a conversation turn.

Fast, deterministic, no AI cost. Produces candidate observations tagged
with the entity type and key they belong to; the Collector decides what
to keep.
"""

from __future__ import annotations

import re
from datetime import datetime, timezone
from typing import Any, Callable, Mapping

from reverb.collector.observation import (
    Observation,
    ObservationSource,
    Scalar,
    TaggedObservation,
    natural_key,
)

Extractor = Callable[[str, str, Mapping[str, Any]], list[TaggedObservation]]

INSTITUTION = "institution"
PROGRAMME = "programme"

REFERENCE_CONFIDENCE = 0.95
MENTION_CONFIDENCE = 0.65
YEAR_CONFIDENCE = 0.8
FEE_CONFIDENCE = 0.7

_VERIFIED = ObservationSource.REFERENCE_VERIFIED
_INFERRED = ObservationSource.MODEL_INFERENCE

_SUFFIX = r"(?:University|College|Institute|School)"
_OF_TAIL = r"\s+of(?:\s+[A-Z][a-zA-Z]*)+"

_INSTITUTION_PATTERNS = [
    # "at Strathmore University", "from Technical University of Kenya",
    # "studying at University of Nairobi"
    re.compile(
        r"(?i:\b(?:at|from|in|study(?:ing)?))\s+("
        rf"(?:[A-Z][a-zA-Z]*\s+)+{_SUFFIX}(?:{_OF_TAIL})?"
        rf"|{_SUFFIX}{_OF_TAIL}"
        r")"
    ),
    re.compile(r"\b(KMTC(?:\s+[A-Z][a-z]+)+)"),
]
_PROGRAMME_PATTERN = re.compile(
    r"\b((?:Bachelor|Master|Diploma|Certificate)\s+(?:of|in)\s+"
    r"[A-Z][a-zA-Z]*(?:\s+[A-Z][a-zA-Z]*)*)"
)
_YEAR_PATTERN = re.compile(r"\b(?:19|20)\d{2}\b")
_FEE_PATTERN = re.compile(r"(?:KES|Ksh)\s*([\d,]+)", re.IGNORECASE)

# Reference columns copied onto institution observations, keyed by schema field.
_REFERENCE_FIELDS = {
    "type": "type",
    "category": "category",
    "location": "location",
    "county": "county",
    "email": "email",
    "phone": "phone",
}


def heuristic_extract(
    user_text: str,
    model_text: str,
    reference_context: Mapping[str, Any] | None = None,
) -> list[TaggedObservation]:
    """Extract candidate observations from one conversation turn.

    Args:
        user_text: What the user wrote.
        model_text: What the assistant replied.
        reference_context: Verified reference rows, e.g. ``{"universities": [...],
            "programmes": [...]}``.

    Returns:
        Observations deduplicated on ``(entity_type, key, field)``; the first
        occurrence wins.
    """
    reference_context = reference_context or {}
    combined = f"{user_text} {model_text}"
    observed_at = datetime.now(timezone.utc)
    extracted: list[TaggedObservation] = []

    def add(
        entity_type: str,
        key: str,
        field: str,
        value: Scalar,
        confidence: float,
        source: ObservationSource,
    ) -> None:
        observation = Observation(
            field=field,
            value=value,
            confidence=confidence,
            source=source,
            observed_at=observed_at,
        )
        extracted.append(
            TaggedObservation(entity_type=entity_type, key=key, observation=observation)
        )

    universities = {
        str(row["name"]).lower(): row
        for row in reference_context.get("universities") or []
        if row.get("name")
    }
    known_programmes = {
        str(row["name"]).lower()
        for row in reference_context.get("programmes") or []
        if row.get("name")
    }

    institutions: dict[str, str] = {}
    for pattern in _INSTITUTION_PATTERNS:
        for match in pattern.finditer(combined):
            name = " ".join(match.group(1).split())
            if len(name) > 3:
                institutions.setdefault(natural_key(name), name)

    for key, name in institutions.items():
        reference = universities.get(name.lower())
        if reference is None:
            source = _mention_source(name, user_text)
            add(INSTITUTION, key, "name", name, MENTION_CONFIDENCE, source)
            continue
        add(INSTITUTION, key, "name", reference["name"], REFERENCE_CONFIDENCE, _VERIFIED)
        for field, column in _REFERENCE_FIELDS.items():
            if reference.get(column) not in (None, ""):
                add(INSTITUTION, key, field, reference[column], REFERENCE_CONFIDENCE, _VERIFIED)
        if reference.get("domain"):
            url = f"https://{reference['domain']}"
            add(INSTITUTION, key, "website_url", url, REFERENCE_CONFIDENCE, _VERIFIED)

    # Years and fees are only attributable when the turn names a single entity.
    sole_institution = next(iter(institutions)) if len(institutions) == 1 else None
    if sole_institution is not None:
        for match in _YEAR_PATTERN.finditer(combined):
            year = int(match.group(0))
            add(INSTITUTION, sole_institution, "charter_year", year, YEAR_CONFIDENCE, _INFERRED)

    programmes: dict[str, str] = {}
    for match in _PROGRAMME_PATTERN.finditer(combined):
        name = " ".join(match.group(1).split())
        prefix = f"{institutions[sole_institution]} " if sole_institution else ""
        programmes.setdefault(natural_key(prefix + name), name)

    institution_ref = (
        universities.get(institutions[sole_institution].lower()) if sole_institution else None
    )
    for key, name in programmes.items():
        if name.lower() in known_programmes:
            add(PROGRAMME, key, "name", name, REFERENCE_CONFIDENCE, _VERIFIED)
        else:
            source = _mention_source(name, user_text)
            add(PROGRAMME, key, "name", name, MENTION_CONFIDENCE, source)
        if institution_ref is not None and institution_ref.get("id") is not None:
            institution_id = institution_ref["id"]
            add(PROGRAMME, key, "institution_id", institution_id, REFERENCE_CONFIDENCE, _VERIFIED)

    amounts = [
        int(digits)
        for digits in (m.group(1).replace(",", "") for m in _FEE_PATTERN.finditer(combined))
        if digits
    ]
    if amounts and len(programmes) == 1:
        key = next(iter(programmes))
        add(PROGRAMME, key, "fees_min", min(amounts), FEE_CONFIDENCE, _INFERRED)
        add(PROGRAMME, key, "fees_max", max(amounts), FEE_CONFIDENCE, _INFERRED)

    return _deduplicate(extracted)


def _mention_source(name: str, user_text: str) -> ObservationSource:
    if name.lower() in user_text.lower():
        return ObservationSource.USER_STATED
    return ObservationSource.MODEL_INFERENCE


def _deduplicate(items: list[TaggedObservation]) -> list[TaggedObservation]:
    seen: set[tuple[str, str, str]] = set()
    unique: list[TaggedObservation] = []
    for item in items:
        marker = (item.entity_type, item.key, item.observation.field)
        if marker in seen:
            continue
        seen.add(marker)
        unique.append(item)
    return unique
