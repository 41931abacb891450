"""Structured error telemetry helpers."""

from __future__ import annotations

import logging
from enum import Enum
from typing import Any


class ErrorCode(str, Enum):
    """Canonical error codes for operational telemetry."""

    OBSERVATION_REJECTED = "OBSERVATION_REJECTED"
    UNKNOWN_ENTITY_TYPE = "UNKNOWN_ENTITY_TYPE"
    STORE_UPSERT_FAILED = "STORE_UPSERT_FAILED"
    STORE_UPSERT_TIMEOUT = "STORE_UPSERT_TIMEOUT"
    SIGNAL_SUBSCRIBER_FAILURE = "SIGNAL_SUBSCRIBER_FAILURE"


def emit_structured_error(
    logger: logging.Logger,
    *,
    code: ErrorCode,
    message: str,
    suppressed: bool,
    session_id: str | None = None,
    entity_key: str | None = None,
    details: dict[str, Any] | None = None,
) -> None:
    """Emit a structured telemetry event via logging."""
    logger.error(
        "reverb_error",
        extra={
            "error_code": code,
            "error_message": message,
            "suppressed": suppressed,
            "session_id": session_id,
            "entity_key": entity_key,
            "details": details or {},
        },
    )
