from __future__ import annotations

import json as _json

from fastapi import APIRouter, Depends, HTTPException
from sse_starlette.sse import EventSourceResponse

from scholarchat.agents.orchestrator import ChatOrchestrator
from scholarchat.api.deps import get_orchestrator
from scholarchat.errors import LoadMoreInProgressError
from scholarchat.models.schemas import (
    AbortResponse,
    LoadMoreResponse,
    MessageResponse,
    SubmitRequest,
    SubmitResponse,
    TranscriptResponse,
)
from scholarchat.services import logger as log_service
from scholarchat.services import streaming

router = APIRouter(prefix="/api/chat", tags=["chat"])


@router.get("", response_model=TranscriptResponse)
async def get_transcript(orchestrator: ChatOrchestrator = Depends(get_orchestrator)):
    """Return the current transcript and streaming flags."""
    return TranscriptResponse(
        messages=[MessageResponse.from_message(m) for m in orchestrator.messages],
        is_streaming=orchestrator.is_streaming,
        is_loading=orchestrator.is_loading,
        error=orchestrator.error,
    )


@router.delete("")
async def reset_transcript(orchestrator: ChatOrchestrator = Depends(get_orchestrator)):
    orchestrator.reset()
    return {"status": "reset"}


@router.post("/messages", response_model=SubmitResponse)
async def submit_message(
    request: SubmitRequest,
    orchestrator: ChatOrchestrator = Depends(get_orchestrator),
):
    """Submit a user query. Resolves once the response has settled; follow /stream for progress."""
    message_id = await orchestrator.submit(request.text)
    return SubmitResponse(message_id=message_id)


@router.post("/messages/{message_id}/more", response_model=LoadMoreResponse)
async def load_more(message_id: str, orchestrator: ChatOrchestrator = Depends(get_orchestrator)):
    if orchestrator.store.find_by_id(message_id) is None:
        raise HTTPException(status_code=404, detail="Message not found")
    try:
        loaded = await orchestrator.load_more(message_id)
    except LoadMoreInProgressError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    return LoadMoreResponse(loaded=loaded)


@router.post("/abort", response_model=AbortResponse)
async def abort(orchestrator: ChatOrchestrator = Depends(get_orchestrator)):
    return AbortResponse(aborted=orchestrator.abort())


@router.delete("/error")
async def clear_error(orchestrator: ChatOrchestrator = Depends(get_orchestrator)):
    orchestrator.clear_error()
    return {"status": "cleared"}


@router.get("/stream")
async def stream_transcript(orchestrator: ChatOrchestrator = Depends(get_orchestrator)):
    """SSE endpoint that streams transcript changes, starting with a snapshot."""
    store = orchestrator.store
    queue = store.subscribe()

    async def event_generator():
        log_service.log_event(event_type="stream_subscribed", message="Transcript subscriber connected")
        try:
            snapshot = streaming.transcript_snapshot(
                store.messages,
                is_streaming=store.is_streaming,
            )
            yield {"event": snapshot.event.value, "data": _json.dumps(snapshot.data)}
            while True:
                event = await queue.get()
                yield {"event": event.event.value, "data": _json.dumps(event.data)}
        finally:
            store.unsubscribe(queue)

    return EventSourceResponse(event_generator())
