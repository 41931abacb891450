"""Signal type definitions for collector lifecycle events."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class SignalType(str, Enum):
    """All signal types emitted by a Collector."""

    OBSERVATION_QUEUED = "OBSERVATION_QUEUED"
    OBSERVATION_REJECTED = "OBSERVATION_REJECTED"
    BUFFER_PROMOTED = "BUFFER_PROMOTED"
    BUFFER_DEMOTED = "BUFFER_DEMOTED"
    BUFFER_FLUSHED = "BUFFER_FLUSHED"
    FLUSH_FAILED = "FLUSH_FAILED"
    BUFFER_DISCARDED = "BUFFER_DISCARDED"


class Signal(BaseModel):
    """An immutable signal emitted by a Collector.

    Buffer creation, promotion, flush and eviction each produce a Signal.
    """

    sequence: int = Field(description="Monotonic sequence number within the session")
    signal_type: SignalType
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    session_id: str
    payload: dict[str, Any] = Field(default_factory=dict)

    model_config = {"frozen": True}
