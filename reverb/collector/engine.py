"""The Collector — owns entity buffers and drives them into the Store.

Observations extracted from conversation turns are queued here, merged
per entity, and promoted once their buffer is complete and confident
enough. Promotion never writes by itself: the caller decides when to
call ``flush_ready``.

Responsibilities:
- Validate every observation before it can touch a buffer
- Route observations to the buffer keyed by ``(entity_type, key)``
- Persist ready buffers through the Store and evict them on success
- Keep failed buffers so the next flush retries them
- Emit Signals for every lifecycle change

MUST NOT:
- Choose a target table from the fields present in a buffer
- Hold the buffer lock while awaiting the Store
- Let one failing entity abort a flush for the others
- Drop a buffer without an explicit discard or a successful store write
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Mapping

from pydantic import BaseModel, Field

from reverb.collector.buffer import BufferPhase, EntityBuffer
from reverb.collector.errors import ConfigurationError, StoreError, ValidationError
from reverb.collector.observation import Observation, natural_key, validate_observation
from reverb.collector.schema import SchemaRegistry
from reverb.config.settings import PromotionThresholds
from reverb.signals.emitter import SignalEmitter
from reverb.signals.types import SignalType
from reverb.store.base import Store, StoreMetadata
from reverb.telemetry.errors import ErrorCode, emit_structured_error

logger = logging.getLogger(__name__)

BufferId = tuple[str, str]


class FlushContext(BaseModel):
    """Caller-supplied context attached to every record written by a flush."""

    session_id: str
    user_id: str | None = None


class FlushResult(BaseModel):
    """Per-buffer outcome of a flush."""

    entity_type: str
    key: str
    ok: bool
    record_id: str | None = None
    error: str | None = None
    evicted: bool = False
    record: dict[str, Any] = Field(default_factory=dict)


class BufferStatus(BaseModel):
    """Read-only view of one buffer, safe to show to end users."""

    key: str
    entity_type: str
    phase: BufferPhase
    completeness_pct: float
    ready_for_storage: bool
    missing_fields: list[str]
    observation_count: int
    average_confidence: float

    def describe(self) -> str:
        text = f"Building profile for {self.key}: {self.completeness_pct:.0f}% complete"
        if self.missing_fields:
            count = len(self.missing_fields)
            noun = "field" if count == 1 else "fields"
            text += f", {count} {noun} missing: {', '.join(self.missing_fields)}"
        if self.ready_for_storage:
            text += " (ready to save)"
        return text


class Collector:
    """Buffers observations per entity and flushes complete records.

    One Collector is owned by one conversation. A single asyncio lock guards
    the buffer map; Store calls happen outside it.
    """

    def __init__(
        self,
        store: Store,
        *,
        session_id: str = "default",
        schemas: SchemaRegistry | None = None,
        thresholds: PromotionThresholds | None = None,
        store_timeout_s: float = 5.0,
        signals: SignalEmitter | None = None,
    ) -> None:
        self._store = store
        self._session_id = session_id
        self._schemas = schemas or SchemaRegistry()
        self._thresholds = thresholds or PromotionThresholds()
        self._store_timeout_s = store_timeout_s
        self._signals = signals or SignalEmitter(session_id=session_id)
        self._buffers: dict[BufferId, EntityBuffer] = {}
        self._lock = asyncio.Lock()

    @property
    def session_id(self) -> str:
        return self._session_id

    @property
    def signals(self) -> SignalEmitter:
        return self._signals

    @property
    def thresholds(self) -> PromotionThresholds:
        return self._thresholds

    def __len__(self) -> int:
        return len(self._buffers)

    # --- Queue ---

    async def queue(
        self,
        entity_type: str,
        key: str,
        observation: Observation | Mapping[str, Any],
    ) -> bool:
        """Merge an observation into its entity buffer.

        Returns the buffer's ``ready_for_storage`` after the merge.

        Raises:
            ValidationError: the observation or key is malformed.
            ConfigurationError: ``entity_type`` has no registered schema.
        """
        try:
            obs = validate_observation(observation)
            schema = self._schemas.get(entity_type)
            buffer_key = natural_key(key or "")
            if not buffer_key:
                raise ValidationError("Entity key cannot be empty")
        except (ValidationError, ConfigurationError) as exc:
            await self._signals.emit(
                SignalType.OBSERVATION_REJECTED,
                {"entity_type": entity_type, "key": key, "reason": str(exc)},
            )
            raise

        async with self._lock:
            buffer_id = (schema.entity_type, buffer_key)
            buffer = self._buffers.get(buffer_id)
            if buffer is None:
                buffer = EntityBuffer(buffer_key, schema, self._thresholds, label=key.strip())
                self._buffers[buffer_id] = buffer
            was_ready = buffer.ready_for_storage
            retained = buffer.upsert(obs)
            ready = buffer.ready_for_storage
            completeness = buffer.completeness_pct

        await self._signals.emit(
            SignalType.OBSERVATION_QUEUED,
            {
                "entity_type": entity_type,
                "key": buffer_key,
                "field": obs.field,
                "retained": retained is obs,
                "completeness_pct": completeness,
            },
        )
        if ready != was_ready:
            signal_type = SignalType.BUFFER_PROMOTED if ready else SignalType.BUFFER_DEMOTED
            logger.info(
                signal_type.value.lower(),
                extra={"session_id": self._session_id, "entity_key": buffer_key},
            )
            await self._signals.emit(
                signal_type,
                {"entity_type": entity_type, "key": buffer_key, "completeness_pct": completeness},
            )
        return ready

    # --- Flush ---

    async def flush_ready(self, context: FlushContext | None = None) -> list[FlushResult]:
        """Persist every ready buffer and evict the ones that were stored.

        Failures are reported in the returned list and never raised. A buffer
        that changed while its write was in flight is kept so the newer
        observations are flushed next time.
        """
        context = context or FlushContext(session_id=self._session_id)

        async with self._lock:
            pending = [
                (buffer_id, buffer, buffer.version, buffer.to_record(), buffer.average_confidence())
                for buffer_id, buffer in self._buffers.items()
                if buffer.ready_for_storage
            ]

        if not pending:
            return []

        results: list[FlushResult] = list(
            await asyncio.gather(
                *(
                    self._flush_one(buffer_id, record, confidence, context)
                    for buffer_id, _, _, record, confidence in pending
                )
            )
        )

        async with self._lock:
            for (buffer_id, buffer, version, _, _), result in zip(pending, results):
                if not result.ok:
                    continue
                if self._buffers.get(buffer_id) is buffer and buffer.version == version:
                    buffer.mark_flushed()
                    del self._buffers[buffer_id]
                    result.evicted = True

        for result in results:
            if result.ok:
                await self._signals.emit(
                    SignalType.BUFFER_FLUSHED,
                    {
                        "entity_type": result.entity_type,
                        "key": result.key,
                        "record_id": result.record_id,
                        "evicted": result.evicted,
                    },
                )
            else:
                await self._signals.emit(
                    SignalType.FLUSH_FAILED,
                    {"entity_type": result.entity_type, "key": result.key, "error": result.error},
                )
        return results

    async def _flush_one(
        self,
        buffer_id: BufferId,
        record: dict[str, Any],
        confidence: float,
        context: FlushContext,
    ) -> FlushResult:
        entity_type, key = buffer_id
        metadata = StoreMetadata(
            session_id=context.session_id,
            confidence_score=confidence,
            timestamp=datetime.now(timezone.utc),
        )
        try:
            record_id = await self._upsert(entity_type, key, record, metadata)
        except StoreError as exc:
            return FlushResult(
                entity_type=entity_type, key=key, ok=False, error=exc.reason, record=record
            )
        return FlushResult(
            entity_type=entity_type, key=key, ok=True, record_id=record_id, record=record
        )

    async def _upsert(
        self,
        entity_type: str,
        key: str,
        record: dict[str, Any],
        metadata: StoreMetadata,
    ) -> str | None:
        try:
            result = await asyncio.wait_for(
                self._store.upsert(entity_type, dict(record), metadata),
                timeout=self._store_timeout_s,
            )
        except asyncio.TimeoutError as exc:
            reason = f"Store upsert timed out after {self._store_timeout_s}s"
            self._report_store_failure(ErrorCode.STORE_UPSERT_TIMEOUT, entity_type, key, reason)
            raise StoreError(entity_type, key, reason) from exc
        except Exception as exc:
            reason = f"{type(exc).__name__}: {exc}"
            self._report_store_failure(ErrorCode.STORE_UPSERT_FAILED, entity_type, key, reason)
            raise StoreError(entity_type, key, reason) from exc

        if not result.ok:
            reason = result.error or "Store rejected record"
            self._report_store_failure(ErrorCode.STORE_UPSERT_FAILED, entity_type, key, reason)
            raise StoreError(entity_type, key, reason)
        return result.id

    def _report_store_failure(
        self, code: ErrorCode, entity_type: str, key: str, reason: str
    ) -> None:
        emit_structured_error(
            logger,
            code=code,
            message=reason,
            suppressed=True,
            session_id=self._session_id,
            entity_key=key,
            details={"entity_type": entity_type},
        )

    # --- Introspection ---

    def buffer_status(self) -> list[BufferStatus]:
        """Return the status of every live buffer without mutating anything."""
        return [BufferStatus(**buffer.snapshot()) for buffer in list(self._buffers.values())]

    def observations(self, entity_type: str, key: str) -> dict[str, Observation]:
        """Copy of the observations retained for one buffer, empty if unknown."""
        buffer = self._buffers.get((entity_type, natural_key(key)))
        return buffer.observations if buffer else {}

    # --- Eviction ---

    async def discard(self, entity_type: str, key: str) -> bool:
        """Drop a buffer without storing it. Returns False when absent."""
        buffer_id = (entity_type, natural_key(key))
        async with self._lock:
            buffer = self._buffers.pop(buffer_id, None)
        if buffer is None:
            return False
        await self._signals.emit(
            SignalType.BUFFER_DISCARDED,
            {"entity_type": entity_type, "key": buffer.key, "reason": "explicit"},
        )
        return True

    async def discard_all(self, reason: str = "session_ended") -> list[BufferId]:
        """Drop every buffer, e.g. when the owning session ends."""
        async with self._lock:
            dropped = list(self._buffers)
            self._buffers.clear()

        for entity_type, key in dropped:
            await self._signals.emit(
                SignalType.BUFFER_DISCARDED,
                {"entity_type": entity_type, "key": key, "reason": reason},
            )
        return dropped

    async def sweep_stale(self, max_age_s: float) -> list[BufferId]:
        """Discard buffers that have not changed within ``max_age_s`` seconds."""
        cutoff = datetime.now(timezone.utc) - timedelta(seconds=max_age_s)
        async with self._lock:
            expired = [
                buffer_id
                for buffer_id, buffer in self._buffers.items()
                if buffer.updated_at < cutoff
            ]
            for buffer_id in expired:
                del self._buffers[buffer_id]

        for entity_type, key in expired:
            await self._signals.emit(
                SignalType.BUFFER_DISCARDED,
                {"entity_type": entity_type, "key": key, "reason": "stale"},
            )
        if expired:
            logger.info(
                "stale_buffers_swept",
                extra={"session_id": self._session_id, "count": len(expired)},
            )
        return expired
