"""Entity buffer — accumulates observations for one entity across turns."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any

from reverb.collector import policy
from reverb.collector.observation import Observation, Scalar
from reverb.collector.resolver import resolve
from reverb.config.settings import EntitySchema, PromotionThresholds


class BufferPhase(str, Enum):
    """Lifecycle states of an EntityBuffer."""

    EMPTY = "EMPTY"
    ACCUMULATING = "ACCUMULATING"
    READY = "READY"
    FLUSHED = "FLUSHED"


# Valid phase transitions. READY can fall back to ACCUMULATING when a
# replacement lowers completeness or confidence.
VALID_TRANSITIONS: dict[BufferPhase, set[BufferPhase]] = {
    BufferPhase.EMPTY: {BufferPhase.ACCUMULATING, BufferPhase.READY},
    BufferPhase.ACCUMULATING: {BufferPhase.ACCUMULATING, BufferPhase.READY},
    BufferPhase.READY: {BufferPhase.READY, BufferPhase.ACCUMULATING, BufferPhase.FLUSHED},
    BufferPhase.FLUSHED: set(),  # terminal
}


class BufferStateError(RuntimeError):
    """Raised on an invalid buffer phase transition."""


class EntityBuffer:
    """Retains at most one observation per field for a single entity.

    Derived state (completeness, readiness) is recomputed on every
    mutation. Buffers are owned by a Collector and never shared.
    """

    def __init__(
        self,
        key: str,
        schema: EntitySchema,
        thresholds: PromotionThresholds,
        label: str | None = None,
    ) -> None:
        self._key = key
        self._label = label or key
        self._schema = schema
        self._thresholds = thresholds
        self._observations: dict[str, Observation] = {}
        self._completeness_pct = 0.0
        self._ready = False
        self._phase = BufferPhase.EMPTY
        self._version = 0
        self.created_at = datetime.now(timezone.utc)
        self.updated_at = self.created_at

    @property
    def key(self) -> str:
        return self._key

    @property
    def label(self) -> str:
        """The key as the caller first spelled it, before normalisation."""
        return self._label

    @property
    def entity_type(self) -> str:
        return self._schema.entity_type

    @property
    def schema(self) -> EntitySchema:
        return self._schema

    @property
    def observations(self) -> dict[str, Observation]:
        return dict(self._observations)

    @property
    def completeness_pct(self) -> float:
        return self._completeness_pct

    @property
    def ready_for_storage(self) -> bool:
        return self._ready

    @property
    def phase(self) -> BufferPhase:
        return self._phase

    @property
    def version(self) -> int:
        """Mutation counter, bumped whenever the retained set changes."""
        return self._version

    def upsert(self, observation: Observation) -> Observation:
        """Merge an observation and return the one retained for its field."""
        if self._phase is BufferPhase.FLUSHED:
            raise BufferStateError(f"Buffer '{self._key}' has already been flushed")

        existing = self._observations.get(observation.field)
        retained = resolve(existing, observation)
        if retained != existing:
            self._observations[observation.field] = retained
            self._version += 1
        self.updated_at = datetime.now(timezone.utc)
        self._recompute()
        return retained

    def missing_fields(self) -> list[str]:
        return policy.missing_fields(self._observations, self._schema)

    def average_confidence(self) -> float:
        return policy.average_confidence(self._observations)

    def to_record(self) -> dict[str, Scalar]:
        """Flatten to ``field -> value``, dropping confidence and provenance.

        When the natural key is a single required field that was never
        observed, the buffer label fills it, since the buffer is keyed by
        that value.
        """
        record: dict[str, Scalar] = {name: obs.value for name, obs in self._observations.items()}
        if len(self._schema.natural_key) == 1:
            key_field = self._schema.natural_key[0]
            if key_field in self._schema.required_fields and record.get(key_field) in (None, ""):
                record[key_field] = self._label
        return record

    def mark_flushed(self) -> None:
        self._transition(BufferPhase.FLUSHED)

    def snapshot(self) -> dict[str, Any]:
        return {
            "key": self._key,
            "entity_type": self.entity_type,
            "phase": self._phase.value,
            "completeness_pct": self._completeness_pct,
            "ready_for_storage": self._ready,
            "average_confidence": self.average_confidence(),
            "missing_fields": self.missing_fields(),
            "observation_count": len(self._observations),
        }

    def _recompute(self) -> None:
        self._completeness_pct = policy.completeness_pct(self._observations, self._schema)
        self._ready = policy.is_ready(self._observations, self._schema, self._thresholds)
        self._transition(BufferPhase.READY if self._ready else BufferPhase.ACCUMULATING)

    def _transition(self, to_phase: BufferPhase) -> None:
        if to_phase not in VALID_TRANSITIONS[self._phase]:
            raise BufferStateError(
                f"Invalid transition: {self._phase.value} -> {to_phase.value}"
            )
        self._phase = to_phase
