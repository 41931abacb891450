"""JSONL-backed store — one ledger file per entity type.

Contract: every write is atomic. The ledger for an entity type is rewritten
to a temp file and renamed into place before the record is committed in
memory, so a failed write changes neither the file nor ``find`` results.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

from reverb.collector.schema import SchemaRegistry
from reverb.store.base import StoreMetadata, StoreResult
from reverb.store.memory import InMemoryStore, StoredRecord, index_value


class JsonlStore(InMemoryStore):
    """Natural-key upsert store persisted as ``<data_dir>/<entity_type>.jsonl``."""

    def __init__(self, data_dir: Path, schemas: SchemaRegistry | None = None) -> None:
        super().__init__(schemas)
        self._data_dir = data_dir
        self._data_dir.mkdir(parents=True, exist_ok=True)
        self._load()

    @property
    def data_dir(self) -> Path:
        return self._data_dir

    def ledger_path(self, entity_type: str) -> Path:
        return self._data_dir / f"{entity_type}.jsonl"

    async def upsert(
        self, entity_type: str, record: dict[str, Any], metadata: StoreMetadata
    ) -> StoreResult:
        try:
            return await super().upsert(entity_type, record, metadata)
        except OSError as exc:
            return StoreResult.failure(f"Write failed for {entity_type}: {exc}")

    def _before_commit(self, stored: StoredRecord) -> None:
        self._persist(stored.entity_type, pending=stored)

    def _persist(self, entity_type: str, pending: StoredRecord | None = None) -> None:
        """Rewrite the ledger for ``entity_type``, including ``pending`` if given."""
        records = {
            record_id: stored
            for record_id, stored in self._records.items()
            if stored.entity_type == entity_type
        }
        if pending is not None:
            records[pending.id] = pending

        output_path = self.ledger_path(entity_type)
        temp_path = output_path.with_suffix(".tmp")
        try:
            with open(temp_path, "w") as f:
                for stored in records.values():
                    f.write(stored.model_dump_json() + "\n")
            temp_path.rename(output_path)
        except Exception:
            if temp_path.exists():
                temp_path.unlink()
            raise

    def _load(self) -> None:
        for entity_type in self._schemas.entity_types:
            schema = self._schemas.get(entity_type)
            for stored in self.load_records(self.ledger_path(entity_type)):
                index_key = (
                    entity_type,
                    tuple(index_value(stored.fields.get(f)) for f in schema.natural_key),
                )
                self._records[stored.id] = stored
                self._index[index_key] = stored.id

    @staticmethod
    def load_records(ledger_path: Path) -> list[StoredRecord]:
        """Load persisted records from a JSONL file."""
        records = []
        if ledger_path.exists():
            with open(ledger_path) as f:
                for line in f:
                    line = line.strip()
                    if line:
                        records.append(StoredRecord.model_validate_json(line))
        return records
