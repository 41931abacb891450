"""Collector error taxonomy."""

from __future__ import annotations


class CollectorError(Exception):
    """Base class for every error raised by the collector core."""


class ValidationError(CollectorError):
    """Raised when an observation is malformed and must not enter a buffer."""


class ConfigurationError(CollectorError):
    """Raised when an entity type has no registered schema."""


class StoreError(CollectorError):
    """Wraps a store failure for a single buffer during flush.

    Never escapes ``Collector.flush_ready``; it is reported per entity.
    """

    def __init__(self, entity_type: str, key: str, reason: str) -> None:
        super().__init__(f"{entity_type}:{key}: {reason}")
        self.entity_type = entity_type
        self.key = key
        self.reason = reason
