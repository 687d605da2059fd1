"""
Generation API Routes.

Manual generation, engine status, session logs and the live progress
stream (Server-Sent Events and WebSocket).
"""

import asyncio
from typing import Optional

import structlog
from fastapi import APIRouter, HTTPException, Query, WebSocket, WebSocketDisconnect, status
from fastapi.responses import StreamingResponse

from ideaforge.api.deps import CurrentSubject, Services, StreamSubject, get_ws_services, subject_from_token
from ideaforge.core.errors import NotFoundError
from ideaforge.core.generation.orchestrator import GenerationResult
from ideaforge.core.generation.streaming import SSE_CONNECTED, StreamEvent, format_sse
from ideaforge.core.schemas import (
    ErrorResponse,
    GenerateRequest,
    GenerationStatusResponse,
    SuccessResponse,
)

logger = structlog.get_logger()

router = APIRouter(prefix="/generation", tags=["Generation"])

# Runs detached from their request once the client disconnects
_detached: set[asyncio.Task] = set()


# ==========================================================================
# Generation
# ==========================================================================

@router.post(
    "/generate",
    status_code=status.HTTP_201_CREATED,
    response_model=SuccessResponse,
    responses={
        404: {"model": ErrorResponse},
        409: {"model": ErrorResponse},
        422: {"model": ErrorResponse},
        502: {"model": ErrorResponse},
    },
)
async def generate_idea(
    body: GenerateRequest,
    services: Services,
    subject: CurrentSubject,
) -> SuccessResponse:
    """
    Generate one idea and return it with its log trail.

    The run is shielded from client disconnects: it always reaches a
    terminal status, observable through the stream endpoints.
    """
    request = body.to_request()
    logger.info("Generation requested", subject=subject, slot_number=request.slot_number)

    task = asyncio.create_task(services.scheduler.run_manual(request))
    _detached.add(task)
    task.add_done_callback(_detached.discard)

    result: GenerationResult = await asyncio.shield(task)
    return SuccessResponse(data=result.to_dict())


@router.get("/status", response_model=GenerationStatusResponse)
async def get_generation_status(
    services: Services,
    subject: CurrentSubject,
) -> GenerationStatusResponse:
    """Sessions currently running in this process."""
    return GenerationStatusResponse.model_validate(services.orchestrator.status())


@router.get("/active", response_model=SuccessResponse)
async def list_active_sessions(
    services: Services,
    subject: CurrentSubject,
    slot_number: Optional[int] = Query(None, alias="slotNumber", ge=1),
) -> SuccessResponse:
    """In-progress sessions recorded in the journal, optionally for one slot."""
    sessions = await services.journal.list_active(slot_number)
    return SuccessResponse(data=[snapshot.to_dict() for snapshot in sessions])


@router.get("/sessions/{session_id}", response_model=SuccessResponse, responses={404: {"model": ErrorResponse}})
async def get_session(
    session_id: str,
    services: Services,
    subject: CurrentSubject,
) -> SuccessResponse:
    snapshot = await services.journal.get_status(session_id)
    if snapshot is None:
        raise NotFoundError("Generation session", session_id)
    return SuccessResponse(data=snapshot.to_dict())


@router.get("/logs/{session_id}", response_model=SuccessResponse, responses={404: {"model": ErrorResponse}})
async def get_session_logs(
    session_id: str,
    services: Services,
    subject: CurrentSubject,
    after_id: int = Query(0, alias="afterId", ge=0),
) -> SuccessResponse:
    """Log rows of a session in id order."""
    if await services.journal.get_status(session_id) is None:
        raise NotFoundError("Generation session", session_id)
    logs = await services.journal.get_logs(session_id, after_id=after_id)
    return SuccessResponse(data=[entry.to_dict() for entry in logs])


# ==========================================================================
# Streaming
# ==========================================================================

@router.get("/stream/{session_id}")
async def stream_session(
    session_id: str,
    services: Services,
    subject: StreamSubject,
) -> StreamingResponse:
    """
    Server-Sent Events stream of a session.

    Events: ``log`` (one per new row, id order), ``status`` (each poll),
    ``complete`` (once, on terminal status, then the stream closes) and
    ``error``.
    """

    async def event_source():
        yield SSE_CONNECTED
        async for event in services.stream.events(session_id):
            yield format_sse(event)

    return StreamingResponse(
        event_source(),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        },
    )


@router.websocket("/ws/{session_id}")
async def stream_session_ws(
    websocket: WebSocket,
    session_id: str,
    token: Optional[str] = None,
):
    """
    WebSocket variant of the session stream.

    Message format:
    {
        "type": "log" | "status" | "complete" | "error",
        "data": {...}
    }
    """
    await websocket.accept()

    try:
        subject_from_token(token or "")
    except HTTPException:
        await websocket.send_json(StreamEvent("error", {"message": "Not authenticated"}).to_message())
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    services = get_ws_services(websocket)
    try:
        async for event in services.stream.events(session_id):
            await websocket.send_json(event.to_message())
    except WebSocketDisconnect:
        logger.info("Stream client disconnected", session_id=session_id)
        return

    await websocket.close()
