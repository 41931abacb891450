"""FastAPI application entry point for Reverb."""

from __future__ import annotations

import logging

from fastapi import FastAPI

from reverb.api.registry import CollectorRegistry
from reverb.api.routes import router
from reverb.collector.schema import SchemaRegistry
from reverb.config.settings import ReverbConfig
from reverb.extraction.heuristic import Extractor, heuristic_extract
from reverb.store.base import Store
from reverb.store.factory import create_store


def create_app(
    config: ReverbConfig | None = None,
    store: Store | None = None,
    extractor: Extractor | None = None,
) -> FastAPI:
    """Factory function for creating the FastAPI application."""
    config = config or ReverbConfig()
    logging.getLogger("reverb").setLevel(config.log_level.upper())
    if store is None:
        store = create_store(config.store, SchemaRegistry(config.schemas))

    app = FastAPI(
        title="Reverb",
        description="Conversational fact buffering and promotion service",
        version="1.0.0",
    )
    app.state.registry = CollectorRegistry(store, config)
    app.state.extractor = extractor or heuristic_extract
    app.include_router(router, prefix="/api/v1")

    @app.get("/health")
    async def health_check() -> dict[str, str]:
        return {"status": "healthy", "service": "reverb", "version": "1.0.0"}

    return app


app = create_app()
