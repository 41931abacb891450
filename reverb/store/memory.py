"""In-memory store with natural-key upsert semantics."""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, Field

from reverb.collector.errors import ConfigurationError
from reverb.collector.observation import natural_key
from reverb.collector.schema import SchemaRegistry
from reverb.store.base import StoreMetadata, StoreResult

logger = logging.getLogger(__name__)


class StoredRecord(BaseModel):
    """A persisted entity record with merge metadata."""

    id: str
    entity_type: str
    fields: dict[str, Any]
    confidence_score: float
    session_id: str
    source_type: str = "ai_inference"
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    last_updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class InMemoryStore:
    """Keeps records in a dict, deduplicated on each schema's natural key.

    On conflict the incoming non-null fields overwrite the stored ones and
    the record keeps the greater of the two confidence scores.
    """

    def __init__(self, schemas: SchemaRegistry | None = None) -> None:
        self._schemas = schemas or SchemaRegistry()
        self._records: dict[str, StoredRecord] = {}
        self._index: dict[tuple[str, tuple[Any, ...]], str] = {}

    @property
    def records(self) -> list[StoredRecord]:
        return list(self._records.values())

    def get(self, record_id: str) -> StoredRecord | None:
        return self._records.get(record_id)

    def find(self, entity_type: str, **key_values: Any) -> StoredRecord | None:
        """Look up a record by its natural key values."""
        try:
            schema = self._schemas.get(entity_type)
        except ConfigurationError:
            return None
        index_key = (
            entity_type,
            tuple(index_value(key_values.get(f)) for f in schema.natural_key),
        )
        record_id = self._index.get(index_key)
        return self._records.get(record_id) if record_id else None

    async def upsert(
        self, entity_type: str, record: dict[str, Any], metadata: StoreMetadata
    ) -> StoreResult:
        try:
            schema = self._schemas.get(entity_type)
        except ConfigurationError as exc:
            return StoreResult.failure(str(exc))

        for key_field in schema.natural_key:
            if record.get(key_field) in (None, ""):
                return StoreResult.failure(f"Missing {key_field} for {entity_type}")

        index_key = (entity_type, tuple(index_value(record[f]) for f in schema.natural_key))
        stored = self._merge(index_key, entity_type, record, metadata)
        self._before_commit(stored)
        self._records[stored.id] = stored
        self._index[index_key] = stored.id
        logger.debug(
            "store_upsert",
            extra={"entity_type": entity_type, "record_id": stored.id},
        )
        return StoreResult.success(stored.id)

    def _merge(
        self,
        index_key: tuple[str, tuple[Any, ...]],
        entity_type: str,
        record: dict[str, Any],
        metadata: StoreMetadata,
    ) -> StoredRecord:
        """Build the record an upsert would store, without storing it."""
        existing_id = self._index.get(index_key)
        existing = self._records.get(existing_id) if existing_id else None

        if existing is None:
            stored = StoredRecord(
                id=f"{entity_type}_{uuid.uuid4().hex[:12]}",
                entity_type=entity_type,
                fields=dict(record),
                confidence_score=metadata.confidence_score,
                session_id=metadata.session_id,
                source_type=metadata.source_type,
                last_updated_at=metadata.timestamp,
            )
        else:
            merged = dict(existing.fields)
            merged.update({k: v for k, v in record.items() if v is not None})
            stored = existing.model_copy(
                update={
                    "fields": merged,
                    "confidence_score": max(existing.confidence_score, metadata.confidence_score),
                    "session_id": metadata.session_id,
                    "last_updated_at": metadata.timestamp,
                }
            )

        return stored

    def _before_commit(self, stored: StoredRecord) -> None:
        """Hook for subclasses that persist a write before it becomes visible."""


def index_value(value: Any) -> Any:
    if isinstance(value, str):
        return natural_key(value)
    return value
