"""Observation model — one candidate fact about one entity."""

from __future__ import annotations

import math
import re
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Mapping, Union

from pydantic import BaseModel, Field
from pydantic import ValidationError as PydanticValidationError

from reverb.collector.errors import ValidationError

Scalar = Union[str, int, float, bool, None]

_WHITESPACE = re.compile(r"\s+")


class ObservationSource(str, Enum):
    """Provenance of an observation."""

    REFERENCE_VERIFIED = "reference-verified"
    MODEL_INFERENCE = "model-inference"
    USER_STATED = "user-stated"


class Observation(BaseModel):
    """A single extracted field value with confidence and provenance.

    Range checks live in ``validate_observation`` so that out-of-range
    confidence surfaces as a collector ``ValidationError``.
    """

    field: str
    value: Scalar = None
    confidence: float
    source: ObservationSource
    observed_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    model_config = {"frozen": True}


class TaggedObservation(BaseModel):
    """An observation routed to a specific entity buffer."""

    entity_type: str
    key: str
    observation: Observation

    model_config = {"frozen": True}


def natural_key(raw: str) -> str:
    """Normalize a human-readable identifier into a buffer key.

    ``"Strathmore  University"`` becomes ``"strathmore_university"``.
    """
    return _WHITESPACE.sub("_", raw.strip().lower())


def validate_observation(obs: Observation | Mapping[str, Any]) -> Observation:
    """Return a validated Observation or raise ValidationError.

    Rejects blank field names, non-finite confidence and confidence outside
    [0, 1]. Out-of-range values are not clamped.
    """
    if not isinstance(obs, Observation):
        try:
            obs = Observation.model_validate(dict(obs))
        except PydanticValidationError as exc:
            raise ValidationError(f"Malformed observation: {exc.errors()}") from exc

    if not obs.field or not obs.field.strip():
        raise ValidationError("Observation field cannot be empty")

    confidence = obs.confidence
    if isinstance(confidence, bool) or not isinstance(confidence, (int, float)):
        raise ValidationError(f"Confidence for '{obs.field}' is not a number")
    if not math.isfinite(confidence):
        raise ValidationError(f"Confidence for '{obs.field}' is not finite: {confidence}")
    if not 0.0 <= confidence <= 1.0:
        raise ValidationError(f"Confidence for '{obs.field}' outside [0, 1]: {confidence}")

    return obs
