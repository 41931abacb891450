"""Registry mapping entity types to their required-field schemas."""

from __future__ import annotations

from typing import Iterable

from reverb.collector.errors import ConfigurationError
from reverb.config.settings import INSTITUTION_SCHEMA, PROGRAMME_SCHEMA, EntitySchema


class SchemaRegistry:
    """Lookup of EntitySchema by entity type."""

    def __init__(self, schemas: Iterable[EntitySchema] | None = None) -> None:
        self._schemas: dict[str, EntitySchema] = {}
        for schema in schemas if schemas is not None else (INSTITUTION_SCHEMA, PROGRAMME_SCHEMA):
            self.register(schema)

    def register(self, schema: EntitySchema) -> None:
        if schema.entity_type in self._schemas:
            raise ConfigurationError(f"Schema already registered for '{schema.entity_type}'")
        self._schemas[schema.entity_type] = schema

    def get(self, entity_type: str) -> EntitySchema:
        schema = self._schemas.get(entity_type)
        if schema is None:
            raise ConfigurationError(f"No schema registered for entity type '{entity_type}'")
        return schema

    def __contains__(self, entity_type: object) -> bool:
        return entity_type in self._schemas

    @property
    def entity_types(self) -> list[str]:
        return list(self._schemas)
