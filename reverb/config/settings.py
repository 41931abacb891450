"""Reverb configuration settings."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field, field_validator, model_validator


def _float_env(var_name: str, default: str) -> float:
    raw = os.getenv(var_name, "").strip()
    return float(raw or default)


def _int_env(var_name: str, default: str) -> int:
    raw = os.getenv(var_name, "").strip()
    return int(raw or default)


class PromotionThresholds(BaseModel):
    """Tunables deciding when a buffer is complete enough to persist."""

    min_completeness_pct: float = Field(
        default_factory=lambda: _float_env("REVERB_MIN_COMPLETENESS_PCT", "70")
    )
    min_average_confidence: float = Field(
        default_factory=lambda: _float_env("REVERB_MIN_AVERAGE_CONFIDENCE", "0.6")
    )

    model_config = {"frozen": True}

    @field_validator("min_completeness_pct")
    @classmethod
    def _validate_completeness(cls, value: float) -> float:
        if not 0.0 <= value <= 100.0:
            raise ValueError("min_completeness_pct must be within [0, 100]")
        return value

    @field_validator("min_average_confidence")
    @classmethod
    def _validate_confidence(cls, value: float) -> float:
        if not 0.0 <= value <= 1.0:
            raise ValueError("min_average_confidence must be within [0, 1]")
        return value


class EntitySchema(BaseModel):
    """Required-field list for one entity type.

    Field order only affects the missing-fields report, never the
    completeness math. ``natural_key`` names the record fields a store
    deduplicates on.
    """

    entity_type: str
    required_fields: tuple[str, ...]
    natural_key: tuple[str, ...] = ("name",)

    model_config = {"frozen": True}

    @field_validator("entity_type")
    @classmethod
    def _validate_entity_type(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("entity_type cannot be empty")
        return value

    @field_validator("required_fields")
    @classmethod
    def _validate_required_fields(cls, value: tuple[str, ...]) -> tuple[str, ...]:
        if not value:
            raise ValueError("required_fields cannot be empty")
        if len(set(value)) != len(value):
            raise ValueError("required_fields cannot contain duplicates")
        if any(not name.strip() for name in value):
            raise ValueError("required_fields cannot contain blank names")
        return value

    @model_validator(mode="after")
    def _validate_natural_key(self) -> "EntitySchema":
        if not self.natural_key:
            raise ValueError("natural_key cannot be empty")
        return self


INSTITUTION_SCHEMA = EntitySchema(
    entity_type="institution",
    required_fields=(
        "name",
        "type",
        "category",
        "location",
        "county",
        "website_url",
        "email",
        "phone",
    ),
    natural_key=("name",),
)

PROGRAMME_SCHEMA = EntitySchema(
    entity_type="programme",
    required_fields=(
        "name",
        "institution_id",
        "field",
        "level",
        "duration_years",
        "minimum_grade",
        "kcse_cluster_points",
        "fees_min",
        "fees_max",
    ),
    natural_key=("institution_id", "name"),
)


class StoreConfig(BaseModel):
    """Persistence backend configuration."""

    backend: Literal["memory", "jsonl"] = Field(
        default_factory=lambda: os.getenv("REVERB_STORE_BACKEND", "memory").strip().lower()
    )
    data_dir: Path = Field(default_factory=lambda: Path(os.getenv("REVERB_DATA_DIR", "./data")))
    timeout_s: float = Field(default_factory=lambda: _float_env("REVERB_STORE_TIMEOUT_S", "5"))

    @field_validator("timeout_s")
    @classmethod
    def _validate_timeout(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("REVERB_STORE_TIMEOUT_S must be > 0")
        return value


class RetentionConfig(BaseModel):
    """Lifetime limits for per-session collectors and their buffers."""

    session_ttl_s: int = Field(default_factory=lambda: _int_env("REVERB_SESSION_TTL_S", "3600"))
    max_sessions: int = Field(default_factory=lambda: _int_env("REVERB_MAX_SESSIONS", "500"))
    buffer_max_age_s: int = Field(
        default_factory=lambda: _int_env("REVERB_BUFFER_MAX_AGE_S", "86400")
    )
    signal_history: int = Field(
        default_factory=lambda: _int_env("REVERB_SIGNAL_HISTORY", "1000")
    )

    @field_validator("session_ttl_s", "max_sessions", "buffer_max_age_s", "signal_history")
    @classmethod
    def _validate_positive(cls, value: int) -> int:
        if value < 1:
            raise ValueError("retention limits must be >= 1")
        return value


class ReverbConfig(BaseModel):
    """Root configuration for the collector service."""

    thresholds: PromotionThresholds = Field(default_factory=PromotionThresholds)
    store: StoreConfig = Field(default_factory=StoreConfig)
    retention: RetentionConfig = Field(default_factory=RetentionConfig)
    schemas: list[EntitySchema] = Field(
        default_factory=lambda: [INSTITUTION_SCHEMA, PROGRAMME_SCHEMA]
    )
    log_level: str = Field(default_factory=lambda: os.getenv("REVERB_LOG_LEVEL", "INFO"))

    @field_validator("schemas")
    @classmethod
    def _validate_unique_schemas(cls, value: list[EntitySchema]) -> list[EntitySchema]:
        names = [schema.entity_type for schema in value]
        if len(set(names)) != len(names):
            raise ValueError("schemas must have unique entity_type values")
        return value
