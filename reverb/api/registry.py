"""Session registry — one Collector per active conversation, with retention."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field

from reverb.collector.engine import Collector
from reverb.collector.schema import SchemaRegistry
from reverb.config.settings import ReverbConfig
from reverb.signals.emitter import SignalEmitter
from reverb.store.base import Store

logger = logging.getLogger(__name__)


@dataclass
class SessionEntry:
    collector: Collector
    created_at: float = field(default_factory=time.time)
    last_used_at: float = field(default_factory=time.time)

    def touch(self) -> None:
        self.last_used_at = time.time()


class CollectorRegistry:
    """Creates collectors lazily and evicts idle sessions.

    Sessions idle for longer than ``session_ttl_s`` are dropped, and only the
    ``max_sessions`` most recently used are kept. Evicting a session discards
    its un-flushed buffers.
    """

    def __init__(self, store: Store, config: ReverbConfig | None = None) -> None:
        self._store = store
        self._config = config or ReverbConfig()
        self._schemas = SchemaRegistry(self._config.schemas)
        self._sessions: dict[str, SessionEntry] = {}

    @property
    def config(self) -> ReverbConfig:
        return self._config

    @property
    def schemas(self) -> SchemaRegistry:
        return self._schemas

    async def get_or_create(self, session_id: str) -> Collector:
        entry = self._sessions.get(session_id)
        if entry is None:
            collector = Collector(
                self._store,
                session_id=session_id,
                schemas=self._schemas,
                thresholds=self._config.thresholds,
                store_timeout_s=self._config.store.timeout_s,
                signals=SignalEmitter(
                    session_id=session_id,
                    max_history=self._config.retention.signal_history,
                ),
            )
            await self._evict(reserve=1)
            entry = SessionEntry(collector=collector)
            self._sessions[session_id] = entry
        entry.touch()
        return entry.collector

    def get(self, session_id: str) -> Collector | None:
        entry = self._sessions.get(session_id)
        return entry.collector if entry else None

    async def remove(self, session_id: str, reason: str = "session_ended") -> bool:
        """End a session, discarding its un-flushed buffers."""
        entry = self._sessions.pop(session_id, None)
        if entry is None:
            return False
        dropped = await entry.collector.discard_all(reason)
        if dropped:
            logger.info(
                "session_discarded_with_buffers",
                extra={"session_id": session_id, "buffers": len(dropped), "reason": reason},
            )
        return True

    def list_sessions(self) -> list[str]:
        return list(self._sessions)

    async def _evict(self, reserve: int = 0) -> None:
        now = time.time()
        ttl = self._config.retention.session_ttl_s
        expired = [
            session_id
            for session_id, entry in self._sessions.items()
            if now - entry.last_used_at > ttl
        ]
        for session_id in expired:
            await self.remove(session_id, reason="session_expired")

        limit = max(self._config.retention.max_sessions - reserve, 0)
        by_recency = sorted(
            self._sessions.items(), key=lambda item: item[1].last_used_at, reverse=True
        )
        for session_id, _ in by_recency[limit:]:
            await self.remove(session_id, reason="session_evicted")
