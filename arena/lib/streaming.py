"""SSE streaming helpers for room status.

A RoomWatcher polls the store and turns changes in the room's status and
its jobs' status/progress into sequenced events.
"""

import json
from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from arena.lib.models import Job, Room
from arena.lib.repositories import Store
from arena.lib.utils import utcnow


# =============================================================================
# Event Types
# =============================================================================


class EventType:
    """SSE event type constants."""

    ROOM_STATUS = "room_status"
    JOB_STATUS = "job_status"
    ROOM_CLOSED = "room_closed"
    HEARTBEAT = "heartbeat"
    ERROR = "error"


class StreamEvent(BaseModel):
    """One event on a room's status stream."""

    sequence: int
    event_type: str
    room_id: str
    data: dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=utcnow)


# =============================================================================
# Event Builder
# =============================================================================


class EventBuilder:
    """Builder for room stream events with automatic sequencing."""

    def __init__(self, room_id: str):
        self.room_id = room_id
        self._sequence = 0

    def build(self, event_type: str, data: dict[str, Any] | None = None) -> StreamEvent:
        self._sequence += 1
        return StreamEvent(
            sequence=self._sequence,
            event_type=event_type,
            room_id=self.room_id,
            data=data or {},
        )

    def room_status(self, room: Room) -> StreamEvent:
        return self.build(
            EventType.ROOM_STATUS,
            {"status": room.status.value, "participant_id": room.participant_id},
        )

    def job_status(self, job: Job) -> StreamEvent:
        return self.build(
            EventType.JOB_STATUS,
            {
                "job_id": job.id,
                "type": job.type.value,
                "status": job.status.value,
                "progress": job.progress,
                "retry_count": job.retry_count,
                "error": job.error,
            },
        )

    def room_closed(self, room: Room) -> StreamEvent:
        return self.build(EventType.ROOM_CLOSED, {"status": room.status.value})

    def heartbeat(self) -> StreamEvent:
        return self.build(EventType.HEARTBEAT)

    def error(self, message: str) -> StreamEvent:
        return self.build(EventType.ERROR, {"error": message})


# =============================================================================
# Watcher
# =============================================================================


class RoomWatcher:
    """Emits an event whenever the room or one of its jobs changes."""

    def __init__(self, store: Store, room_id: str, job_window: int = 20):
        self.store = store
        self.room_id = room_id
        self.job_window = job_window
        self.events = EventBuilder(room_id)
        self._room_status: str | None = None
        self._jobs: dict[str, tuple[str, int]] = {}
        self.closed = False

    async def poll(self) -> list[StreamEvent]:
        room = await self.store.rooms.get(self.room_id)
        emitted: list[StreamEvent] = []

        if room.status.value != self._room_status:
            self._room_status = room.status.value
            emitted.append(self.events.room_status(room))

        jobs = await self.store.jobs.list_for_room(self.room_id, limit=self.job_window)
        for job in reversed(jobs):
            state = (job.status.value, job.progress)
            if self._jobs.get(job.id) != state:
                self._jobs[job.id] = state
                emitted.append(self.events.job_status(job))

        if room.status.is_terminal and not self.closed:
            self.closed = True
            emitted.append(self.events.room_closed(room))
        return emitted


# =============================================================================
# SSE Formatter
# =============================================================================


def to_sse(event: StreamEvent) -> dict[str, str]:
    """Shape an event for ``EventSourceResponse``."""
    return {
        "id": str(event.sequence),
        "event": event.event_type,
        "data": json.dumps(event.model_dump(mode="json")),
    }
