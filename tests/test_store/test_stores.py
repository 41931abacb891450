"""Tests for the in-memory and JSONL stores."""

from __future__ import annotations

import pytest

from reverb.collector.schema import SchemaRegistry
from reverb.config.settings import StoreConfig
from reverb.store.base import Store, StoreMetadata
from reverb.store.factory import create_store
from reverb.store.jsonl import JsonlStore
from reverb.store.memory import InMemoryStore


def metadata(confidence=0.7, session_id="session_a"):
    return StoreMetadata(session_id=session_id, confidence_score=confidence)


class TestInMemoryStore:
    def test_satisfies_store_protocol(self):
        assert isinstance(InMemoryStore(), Store)

    @pytest.mark.asyncio
    async def test_insert_returns_id(self):
        store = InMemoryStore()
        result = await store.upsert("institution", {"name": "Strathmore University"}, metadata())
        assert result.ok
        assert result.id.startswith("institution_")
        assert store.get(result.id).fields["name"] == "Strathmore University"

    @pytest.mark.asyncio
    async def test_upsert_on_natural_key_keeps_greater_confidence(self):
        store = InMemoryStore()
        first = await store.upsert(
            "institution", {"name": "Strathmore University", "county": "Nairobi"}, metadata(0.9)
        )
        second = await store.upsert(
            "institution",
            {"name": "strathmore  university", "county": None, "phone": "020"},
            metadata(0.6, session_id="session_b"),
        )
        assert first.id == second.id
        assert len(store.records) == 1

        stored = store.get(first.id)
        assert stored.confidence_score == 0.9
        assert stored.fields["county"] == "Nairobi"
        assert stored.fields["phone"] == "020"
        assert stored.session_id == "session_b"

    @pytest.mark.asyncio
    async def test_programme_natural_key_is_composite(self):
        store = InMemoryStore()
        a = await store.upsert(
            "programme", {"name": "Bachelor of Commerce", "institution_id": 1}, metadata()
        )
        b = await store.upsert(
            "programme", {"name": "Bachelor of Commerce", "institution_id": 2}, metadata()
        )
        assert a.id != b.id
        assert store.find("programme", name="Bachelor of Commerce", institution_id=2).id == b.id

    @pytest.mark.asyncio
    async def test_missing_natural_key_fails(self):
        store = InMemoryStore()
        result = await store.upsert("programme", {"name": "Bachelor of Laws"}, metadata())
        assert not result.ok
        assert result.error == "Missing institution_id for programme"

        result = await store.upsert("institution", {"county": "Nairobi"}, metadata())
        assert result.error == "Missing name for institution"

    @pytest.mark.asyncio
    async def test_unknown_entity_type_fails(self):
        result = await InMemoryStore().upsert("campus", {"name": "x"}, metadata())
        assert not result.ok
        assert "campus" in result.error


class TestJsonlStore:
    @pytest.mark.asyncio
    async def test_records_persisted_and_reloaded(self, tmp_path):
        store = JsonlStore(tmp_path)
        result = await store.upsert(
            "institution", {"name": "Kenyatta University", "county": "Kiambu"}, metadata(0.8)
        )
        assert result.ok
        assert store.ledger_path("institution").exists()
        assert not store.ledger_path("institution").with_suffix(".tmp").exists()

        reloaded = JsonlStore(tmp_path)
        stored = reloaded.find("institution", name="Kenyatta University")
        assert stored is not None
        assert stored.id == result.id
        assert stored.fields["county"] == "Kiambu"

    @pytest.mark.asyncio
    async def test_upsert_rewrites_instead_of_appending(self, tmp_path):
        store = JsonlStore(tmp_path)
        await store.upsert("institution", {"name": "Moi University"}, metadata(0.6))
        await store.upsert("institution", {"name": "Moi University", "county": "Uasin Gishu"},
                           metadata(0.8))

        lines = store.ledger_path("institution").read_text().strip().split("\n")
        assert len(lines) == 1
        loaded = JsonlStore.load_records(store.ledger_path("institution"))
        assert loaded[0].confidence_score == 0.8

    @pytest.mark.asyncio
    async def test_write_failure_reported(self, tmp_path, monkeypatch):
        store = JsonlStore(tmp_path)

        def broken(entity_type, pending=None):
            raise OSError("disk full")

        monkeypatch.setattr(store, "_persist", broken)
        result = await store.upsert("institution", {"name": "Egerton University"}, metadata())
        assert not result.ok
        assert "disk full" in result.error
        assert store.find("institution", name="Egerton University") is None
        assert store.records == []

    @pytest.mark.asyncio
    async def test_failed_update_keeps_previous_record(self, tmp_path, monkeypatch):
        store = JsonlStore(tmp_path)
        first = await store.upsert(
            "institution", {"name": "Egerton University", "county": "Nakuru"}, metadata(0.6)
        )
        assert first.ok

        def broken(entity_type, pending=None):
            raise OSError("disk full")

        monkeypatch.setattr(store, "_persist", broken)
        result = await store.upsert(
            "institution", {"name": "Egerton University", "county": "Njoro"}, metadata(0.9)
        )
        assert not result.ok

        stored = store.find("institution", name="Egerton University")
        assert stored.fields["county"] == "Nakuru"
        assert stored.confidence_score == 0.6
        on_disk = JsonlStore.load_records(store.ledger_path("institution"))
        assert [r.fields["county"] for r in on_disk] == ["Nakuru"]

    def test_load_missing_ledger(self, tmp_path):
        assert JsonlStore.load_records(tmp_path / "nothing.jsonl") == []


class TestCreateStore:
    def test_memory_backend(self, tmp_path):
        store = create_store(StoreConfig(backend="memory", data_dir=tmp_path))
        assert type(store) is InMemoryStore
        assert isinstance(store, Store)

    def test_jsonl_backend(self, tmp_path):
        store = create_store(
            StoreConfig(backend="jsonl", data_dir=tmp_path), SchemaRegistry()
        )
        assert isinstance(store, JsonlStore)
        assert isinstance(store, Store)
        assert store.data_dir == tmp_path / "records"
