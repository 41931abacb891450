"""Promotion policy — pure completeness and readiness calculations.

A buffer is promoted (ready for storage) once enough of its schema's
required fields are observed with enough average confidence. Both
thresholds come from ``PromotionThresholds``.
"""

from __future__ import annotations

from typing import Mapping

from reverb.collector.observation import Observation
from reverb.config.settings import EntitySchema, PromotionThresholds


def completeness_pct(observations: Mapping[str, Observation], schema: EntitySchema) -> float:
    """Percentage of required fields that have a retained observation.

    Fields outside the schema are carried in the record but not counted.
    """
    filled = sum(1 for name in schema.required_fields if name in observations)
    return 100.0 * filled / len(schema.required_fields)


def average_confidence(observations: Mapping[str, Observation]) -> float:
    """Mean confidence of all retained observations, 0.0 when empty."""
    if not observations:
        return 0.0
    return sum(obs.confidence for obs in observations.values()) / len(observations)


def missing_fields(observations: Mapping[str, Observation], schema: EntitySchema) -> list[str]:
    """Required fields not yet observed, in schema order."""
    return [name for name in schema.required_fields if name not in observations]


def is_ready(
    observations: Mapping[str, Observation],
    schema: EntitySchema,
    thresholds: PromotionThresholds,
) -> bool:
    # Tolerance keeps exact boundaries (e.g. mean of [0.5, 0.7]) from
    # failing on float rounding.
    eps = 1e-9
    return (
        completeness_pct(observations, schema) + eps >= thresholds.min_completeness_pct
        and average_confidence(observations) + eps >= thresholds.min_average_confidence
    )
