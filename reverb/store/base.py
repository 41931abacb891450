"""Store collaborator contract used by the Collector at flush time."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Protocol, runtime_checkable

from pydantic import BaseModel, Field


class StoreMetadata(BaseModel):
    """Provenance attached to every upserted record."""

    session_id: str
    confidence_score: float = Field(ge=0.0, le=1.0)
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    source_type: str = "ai_inference"


class StoreResult(BaseModel):
    """Outcome of a single upsert: ``ok`` with an ``id``, or an ``error``."""

    ok: bool
    id: str | None = None
    error: str | None = None

    @classmethod
    def success(cls, record_id: str) -> "StoreResult":
        return cls(ok=True, id=record_id)

    @classmethod
    def failure(cls, error: str) -> "StoreResult":
        return cls(ok=False, error=error)


@runtime_checkable
class Store(Protocol):
    """Schema-aware persistence keyed by entity type.

    Implementations map ``entity_type`` to their physical layout and handle
    natural-key conflicts themselves.
    """

    async def upsert(
        self, entity_type: str, record: dict[str, Any], metadata: StoreMetadata
    ) -> StoreResult: ...
