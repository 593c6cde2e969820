"""Change event API routes."""

from __future__ import annotations

from pathlib import Path

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.concurrency import run_in_threadpool

from pet_context.api.dependencies import (
    get_app_settings,
    get_offset_store,
    get_synchronizer,
    refresh_index_size,
)
from pet_context.core.errors import MalformedEventError
from pet_context.core.logging import get_logger
from pet_context.core.metrics import SYNC_EVENTS
from pet_context.ingest.event_log import OffsetStore, replay_event_log
from pet_context.ingest.events import parse_change_event
from pet_context.ingest.synchronizer import IndexSynchronizer, SyncState
from pet_context.models.dto import EventResponse, ReplayRequest, ReplayResponse

router = APIRouter()
logger = get_logger(__name__)


@router.post("", response_model=EventResponse, summary="Apply one change event to the vector index")
async def publish_event(
    request: Request,
    synchronizer: IndexSynchronizer = Depends(get_synchronizer),
) -> EventResponse:
    body = await request.body()
    try:
        event = parse_change_event(body)
    except MalformedEventError as exc:
        logger.warning("Dropping undecodable change event: %s", exc)
        SYNC_EVENTS.labels(event_type="MALFORMED", state=SyncState.SKIPPED.value).inc()
        return EventResponse(
            record_id=None,
            event_type=None,
            state=SyncState.SKIPPED.value,
            attempts=0,
            error=str(exc),
        )
    outcome = await run_in_threadpool(synchronizer.handle, event)
    refresh_index_size()
    return EventResponse(
        record_id=outcome.record_id,
        event_type=outcome.event_type,
        state=outcome.state.value,
        attempts=outcome.attempts,
        error=outcome.error,
    )


@router.post("/replay", response_model=ReplayResponse, summary="Replay a JSON-lines event log")
def replay_events(
    request: ReplayRequest,
    synchronizer: IndexSynchronizer = Depends(get_synchronizer),
    store: OffsetStore = Depends(get_offset_store),
) -> ReplayResponse:
    path = Path(request.path).expanduser()
    if not path.is_file():
        raise HTTPException(status_code=404, detail=f"Event log not found: {request.path}")
    workers = request.workers or get_app_settings().sync_workers
    stats = replay_event_log(path, synchronizer, store, workers=workers)
    refresh_index_size()
    return ReplayResponse(path=str(path), **stats.to_dict())


__all__ = ["router"]
