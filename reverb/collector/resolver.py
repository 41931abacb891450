"""Conflict resolution for observations targeting the same field."""

from __future__ import annotations

from reverb.collector.observation import Observation


def resolve(existing: Observation | None, incoming: Observation) -> Observation:
    """Return the observation to retain for a field.

    Higher confidence wins. On an exact tie the incoming observation wins,
    so replaying the same observation leaves the buffer unchanged.
    """
    if existing is None:
        return incoming
    if existing.confidence > incoming.confidence:
        return existing
    return incoming
