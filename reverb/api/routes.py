"""REST API routes for the collector.

Provides endpoints for:
- Queueing single observations for a session
- Processing a whole conversation turn through the extractor
- Flushing ready buffers
- Viewing buffer status
"""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel, Field

from reverb.api.registry import CollectorRegistry
from reverb.collector.engine import BufferStatus, FlushContext, FlushResult
from reverb.collector.errors import ConfigurationError, ValidationError
from reverb.collector.observation import ObservationSource, Scalar
from reverb.extraction.heuristic import Extractor
from reverb.telemetry.errors import ErrorCode, emit_structured_error

router = APIRouter()
logger = logging.getLogger(__name__)


def get_registry(request: Request) -> CollectorRegistry:
    return request.app.state.registry


def get_extractor(request: Request) -> Extractor:
    return request.app.state.extractor


# --- Request/Response Models ---


class ObservationRequest(BaseModel):
    """A single observation addressed to one entity buffer."""

    entity_type: str
    key: str
    field: str
    value: Scalar = None
    confidence: float
    source: ObservationSource = ObservationSource.MODEL_INFERENCE


class QueueResponse(BaseModel):
    ready: bool
    buffer_status: list[BufferStatus]


class TurnRequest(BaseModel):
    """One conversation turn to mine for observations."""

    user_text: str
    model_text: str = ""
    reference_context: dict[str, Any] = Field(default_factory=dict)
    user_id: str | None = None


class TurnResponse(BaseModel):
    extracted: int
    rejected: int
    ready: list[str]
    stored: int
    failed: int
    buffer_status: list[BufferStatus]


class FlushResponse(BaseModel):
    results: list[FlushResult]


# --- Endpoints ---


@router.post("/sessions/{session_id}/observations", response_model=QueueResponse)
async def queue_observation(
    session_id: str,
    body: ObservationRequest,
    registry: CollectorRegistry = Depends(get_registry),
) -> QueueResponse:
    collector = await registry.get_or_create(session_id)
    observation = body.model_dump(exclude={"entity_type", "key"})
    try:
        ready = await collector.queue(body.entity_type, body.key, observation)
    except (ValidationError, ConfigurationError) as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    return QueueResponse(ready=ready, buffer_status=collector.buffer_status())


@router.post("/sessions/{session_id}/turns", response_model=TurnResponse)
async def process_turn(
    session_id: str,
    body: TurnRequest,
    registry: CollectorRegistry = Depends(get_registry),
    extract: Extractor = Depends(get_extractor),
) -> TurnResponse:
    """Extract, queue, and flush in one step, like a chat handler would per turn."""
    collector = await registry.get_or_create(session_id)
    await collector.sweep_stale(registry.config.retention.buffer_max_age_s)

    extracted = extract(body.user_text, body.model_text, body.reference_context)
    ready: list[str] = []
    rejected = 0
    for item in extracted:
        try:
            if await collector.queue(item.entity_type, item.key, item.observation):
                ready.append(item.key)
        except (ValidationError, ConfigurationError) as exc:
            rejected += 1
            code = (
                ErrorCode.UNKNOWN_ENTITY_TYPE
                if isinstance(exc, ConfigurationError)
                else ErrorCode.OBSERVATION_REJECTED
            )
            emit_structured_error(
                logger,
                code=code,
                message=str(exc),
                suppressed=True,
                session_id=session_id,
                entity_key=item.key,
                details={"entity_type": item.entity_type, "field": item.observation.field},
            )

    context = FlushContext(session_id=session_id, user_id=body.user_id)
    results = await collector.flush_ready(context)
    return TurnResponse(
        extracted=len(extracted),
        rejected=rejected,
        ready=sorted(set(ready)),
        stored=sum(1 for r in results if r.ok),
        failed=sum(1 for r in results if not r.ok),
        buffer_status=collector.buffer_status(),
    )


@router.post("/sessions/{session_id}/flush", response_model=FlushResponse)
async def flush_session(
    session_id: str,
    registry: CollectorRegistry = Depends(get_registry),
) -> FlushResponse:
    collector = registry.get(session_id)
    if collector is None:
        raise HTTPException(status_code=404, detail=f"Session {session_id} not found")
    return FlushResponse(results=await collector.flush_ready())


@router.get("/sessions/{session_id}/status", response_model=list[BufferStatus])
async def session_status(
    session_id: str,
    registry: CollectorRegistry = Depends(get_registry),
) -> list[BufferStatus]:
    collector = registry.get(session_id)
    if collector is None:
        raise HTTPException(status_code=404, detail=f"Session {session_id} not found")
    return collector.buffer_status()


@router.delete("/sessions/{session_id}")
async def end_session(
    session_id: str,
    registry: CollectorRegistry = Depends(get_registry),
) -> dict[str, str]:
    if not await registry.remove(session_id):
        raise HTTPException(status_code=404, detail=f"Session {session_id} not found")
    return {"session_id": session_id, "status": "ended"}
