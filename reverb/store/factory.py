"""Store construction from configuration."""

from __future__ import annotations

from reverb.collector.schema import SchemaRegistry
from reverb.config.settings import StoreConfig
from reverb.store.base import Store
from reverb.store.jsonl import JsonlStore
from reverb.store.memory import InMemoryStore


def create_store(config: StoreConfig, schemas: SchemaRegistry | None = None) -> Store:
    if config.backend == "jsonl":
        return JsonlStore(config.data_dir / "records", schemas)
    if config.backend == "memory":
        return InMemoryStore(schemas)
    raise ValueError(f"Unknown store backend: {config.backend}")
