"""Consistency sweep for rooms whose pipeline stalled between two writes.

Completing a job and advancing its room are separate writes, as are a room
transition and the enqueue that follows it. A crash between them leaves a
room waiting for work that already happened or was never queued. The sweep
repeats the missing step; every step it takes is idempotent.
"""

import logging
from datetime import timedelta

from arena.config import Settings, get_settings
from arena.lib.exceptions import StateMachineError
from arena.lib.models import (
    AIDebatePayload,
    AIJudgePayload,
    AIJuryPayload,
    Job,
    JobStatus,
    JobType,
    Room,
    RoomEvent,
    RoomStatus,
    VoteSnapshot,
)
from arena.lib.repositories import Store
from arena.lib.utils import utcnow
from arena.orchestrator.pipeline import (
    JUDGE_DEDUPE_KEY,
    JURY_DEDUPE_KEY,
    build_debate_context,
    debate_dedupe_key,
)
from arena.orchestrator.queue import JobQueue
from arena.orchestrator.state_machine import DEBATE_ROUND, RoomStateMachine

logger = logging.getLogger(__name__)

ACTIVE_STATUSES = (*DEBATE_ROUND.keys(), RoomStatus.AI_PROCESSING)


class Reconciler:
    """
    Repairs rooms stuck in an AI stage.

    A room is repaired only when its job for the current stage succeeded
    (the transition was lost) or when no job for the stage exists at all
    (the enqueue was lost). Failed or cancelled stages are left alone for
    a manual retry.
    """

    def __init__(
        self,
        store: Store,
        queue: JobQueue,
        state_machine: RoomStateMachine,
        settings: Settings | None = None,
        grace_seconds: float = 30.0,
    ):
        self.store = store
        self.queue = queue
        self.state_machine = state_machine
        self.settings = settings or get_settings()
        self.grace = timedelta(seconds=grace_seconds)

    async def sweep(self) -> int:
        """Run one pass over active rooms. Returns the number of repairs."""
        cutoff = utcnow() - self.grace
        repaired = 0
        for room in await self.store.rooms.list_by_status(ACTIVE_STATUSES):
            if room.updated_at > cutoff:
                continue
            try:
                if await self._repair(room):
                    repaired += 1
            except StateMachineError as e:
                logger.warning(f"Room {room.id}: reconciliation skipped: {e.message}")
        return repaired

    async def _jobs(self, room_id: str, job_type: JobType, key: str) -> list[Job]:
        jobs = await self.store.jobs.list_for_room(room_id, job_type=job_type, limit=100)
        return [job for job in jobs if job.dedupe_key == key]

    async def _repair(self, room: Room) -> bool:
        if room.status in DEBATE_ROUND:
            return await self._repair_round(room, DEBATE_ROUND[room.status])
        return await self._repair_processing(room)

    async def _repair_round(self, room: Room, round_number: int) -> bool:
        key = debate_dedupe_key(round_number)
        jobs = await self._jobs(room.id, JobType.AI_DEBATE, key)

        if not jobs:
            logger.warning(f"Room {room.id}: round {round_number} job missing, enqueuing")
            await self.queue.enqueue(
                JobType.AI_DEBATE,
                room.id,
                AIDebatePayload(round_number=round_number),
                dedupe_key=key,
            )
            return True

        if any(job.status == JobStatus.SUCCEEDED for job in jobs):
            logger.warning(
                f"Room {room.id}: round {round_number} finished but room did not advance"
            )
            moved = await self.state_machine.transition(
                room.id, RoomEvent.round_complete(round_number)
            )
            if moved and round_number == self.settings.debate_rounds:
                context = await build_debate_context(self.store, room.id)
                await self.queue.enqueue(
                    JobType.AI_JURY,
                    room.id,
                    AIJuryPayload(context=context),
                    dedupe_key=JURY_DEDUPE_KEY,
                )
            return moved
        return False

    async def _repair_processing(self, room: Room) -> bool:
        judge_jobs = await self._jobs(room.id, JobType.AI_JUDGE, JUDGE_DEDUPE_KEY)
        if any(job.status == JobStatus.SUCCEEDED for job in judge_jobs):
            logger.warning(f"Room {room.id}: verdict recorded but room not completed")
            return await self.state_machine.transition(room.id, RoomEvent.JUDGE_COMPLETE)
        if judge_jobs:
            return False

        jury_jobs = await self._jobs(room.id, JobType.AI_JURY, JURY_DEDUPE_KEY)
        if not jury_jobs:
            logger.warning(f"Room {room.id}: jury job missing, enqueuing")
            context = await build_debate_context(self.store, room.id)
            await self.queue.enqueue(
                JobType.AI_JURY,
                room.id,
                AIJuryPayload(context=context),
                dedupe_key=JURY_DEDUPE_KEY,
            )
            return True

        if any(job.status == JobStatus.SUCCEEDED for job in jury_jobs):
            logger.warning(f"Room {room.id}: jury finished but judge job missing")
            await self.state_machine.transition(room.id, RoomEvent.JURY_COMPLETE)
            context = await build_debate_context(self.store, room.id)
            votes = await self.store.debate.list_votes(room.id)
            await self.queue.enqueue(
                JobType.AI_JUDGE,
                room.id,
                AIJudgePayload(
                    context=context,
                    jury_votes=[
                        VoteSnapshot(
                            juror_number=v.juror_number,
                            vote=v.vote,
                            confidence=v.confidence,
                            reasoning=v.reasoning,
                        )
                        for v in votes
                    ],
                ),
                dedupe_key=JUDGE_DEDUPE_KEY,
            )
            return True
        return False
