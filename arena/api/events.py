"""Room status SSE endpoint."""

import asyncio
import logging

from fastapi import APIRouter, Depends, Request
from sse_starlette.sse import EventSourceResponse

from arena.api.deps import get_engine
from arena.lib.exceptions import ArenaError
from arena.lib.streaming import RoomWatcher, to_sse
from arena.orchestrator.engine import ArenaEngine

POLL_INTERVAL = 2  # seconds
HEARTBEAT_INTERVAL = 15  # seconds

router = APIRouter()
logger = logging.getLogger(__name__)


@router.get("/rooms/{room_id}/events")
async def room_events(
    room_id: str,
    request: Request,
    engine: ArenaEngine = Depends(get_engine),
) -> EventSourceResponse:
    """
    Stream room status and job status changes.

    The first events describe the current state; later events are sent only
    on change. The stream ends once the room is completed or cancelled.
    """
    await engine.store.rooms.get(room_id)
    watcher = RoomWatcher(engine.store, room_id)

    async def event_generator():
        since_last = 0.0
        while True:
            if await request.is_disconnected():
                logger.info(f"Client disconnected from room {room_id} stream")
                break

            try:
                events = await watcher.poll()
            except ArenaError as e:
                logger.error(f"Room {room_id} stream failed: {e.message}")
                yield to_sse(watcher.events.error(e.message))
                break

            for event in events:
                yield to_sse(event)
            if watcher.closed:
                break

            if events:
                since_last = 0.0
            elif since_last >= HEARTBEAT_INTERVAL:
                yield to_sse(watcher.events.heartbeat())
                since_last = 0.0

            await asyncio.sleep(POLL_INTERVAL)
            since_last += POLL_INTERVAL

    return EventSourceResponse(event_generator())
