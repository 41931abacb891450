"""Tests for the Signal emitter system."""

import logging

import pytest

from reverb.signals.emitter import SignalEmitter
from reverb.signals.types import SignalType


@pytest.fixture
def tmp_ledger(tmp_path):
    return tmp_path / "session_a" / "signals.jsonl"


@pytest.fixture
def emitter(tmp_ledger):
    return SignalEmitter(session_id="session_a", ledger_path=tmp_ledger)


class TestSignalEmitter:
    """Test signal emission, persistence, and broadcasting."""

    @pytest.mark.asyncio
    async def test_emit_creates_signal(self, emitter):
        signal = await emitter.emit(SignalType.OBSERVATION_QUEUED, {"key": "moi_university"})
        assert signal.sequence == 1
        assert signal.signal_type == SignalType.OBSERVATION_QUEUED
        assert signal.session_id == "session_a"
        assert signal.payload["key"] == "moi_university"

    @pytest.mark.asyncio
    async def test_monotonic_sequence(self, emitter):
        s1 = await emitter.emit(SignalType.OBSERVATION_QUEUED)
        s2 = await emitter.emit(SignalType.BUFFER_PROMOTED)
        s3 = await emitter.emit(SignalType.BUFFER_FLUSHED)
        assert [s1.sequence, s2.sequence, s3.sequence] == [1, 2, 3]

    @pytest.mark.asyncio
    async def test_signals_are_immutable(self, emitter):
        signal = await emitter.emit(SignalType.BUFFER_FLUSHED, {"key": "value"})
        with pytest.raises(Exception):
            signal.payload = {"modified": True}

    @pytest.mark.asyncio
    async def test_ledger_round_trip(self, emitter, tmp_ledger):
        await emitter.emit(SignalType.BUFFER_PROMOTED, {"key": "a"})
        await emitter.emit(SignalType.BUFFER_FLUSHED, {"key": "a"})

        loaded = SignalEmitter.load_ledger(tmp_ledger)
        assert [s.signal_type for s in loaded] == [
            SignalType.BUFFER_PROMOTED,
            SignalType.BUFFER_FLUSHED,
        ]

    @pytest.mark.asyncio
    async def test_no_ledger_keeps_memory_only(self):
        emitter = SignalEmitter(session_id="in_memory")
        await emitter.emit(SignalType.OBSERVATION_QUEUED)
        assert len(emitter.signals) == 1

    @pytest.mark.asyncio
    async def test_async_subscriber_receives_signals(self, emitter):
        received = []

        async def on_signal(signal):
            received.append(signal.signal_type)

        emitter.subscribe(on_signal)
        await emitter.emit(SignalType.OBSERVATION_QUEUED)
        emitter.unsubscribe(on_signal)
        await emitter.emit(SignalType.BUFFER_PROMOTED)

        assert received == [SignalType.OBSERVATION_QUEUED]

    @pytest.mark.asyncio
    async def test_subscriber_error_is_logged_not_raised(self, emitter, caplog):
        def bad_subscriber(signal):
            raise RuntimeError("Subscriber failure")

        emitter.subscribe(bad_subscriber)
        with caplog.at_level(logging.ERROR, logger="reverb.signals.emitter"):
            signal = await emitter.emit(SignalType.FLUSH_FAILED)

        assert signal.sequence == 1
        assert any(r.message == "reverb_error" for r in caplog.records)

    @pytest.mark.asyncio
    async def test_signals_property_returns_copy(self, emitter):
        await emitter.emit(SignalType.OBSERVATION_QUEUED)
        signals = emitter.signals
        signals.clear()
        assert len(emitter.signals) == 1

    @pytest.mark.asyncio
    async def test_history_is_bounded(self, tmp_ledger):
        emitter = SignalEmitter(session_id="session_a", ledger_path=tmp_ledger, max_history=3)
        for _ in range(5):
            await emitter.emit(SignalType.OBSERVATION_QUEUED)

        assert [s.sequence for s in emitter.signals] == [3, 4, 5]
        assert len(SignalEmitter.load_ledger(tmp_ledger)) == 5
