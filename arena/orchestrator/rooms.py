"""Room actions taken by the two human debaters.

Each action writes its submission, then fires the lifecycle event whose
guard it may have satisfied and enqueues the AI work that event unlocks.
"""

import logging

from arena.config import Settings, get_settings
from arena.lib.exceptions import (
    InvalidTransitionError,
    JobStateError,
    PermissionDeniedError,
    TransitionGuardError,
)
from arena.lib.models import (
    AIDebatePayload,
    Argument,
    CreateRoomRequest,
    Job,
    JobStatus,
    JobType,
    Motion,
    MotionStatus,
    ProposeMotionRequest,
    Rebuttal,
    Room,
    RoomDetailResponse,
    RoomEvent,
    RoomStatus,
    Side,
    SubmitArgumentRequest,
    SubmitRebuttalRequest,
)
from arena.lib.repositories import Store
from arena.orchestrator.aggregation import tally_votes
from arena.orchestrator.pipeline import debate_dedupe_key
from arena.orchestrator.queue import JobQueue
from arena.orchestrator.state_machine import REBUTTAL_ROUND, RoomStateMachine

logger = logging.getLogger(__name__)


class RoomService:
    """Create, join and drive a room through its human-gated stages."""

    def __init__(
        self,
        store: Store,
        state_machine: RoomStateMachine,
        queue: JobQueue,
        settings: Settings | None = None,
    ):
        self.store = store
        self.state_machine = state_machine
        self.queue = queue
        self.settings = settings or get_settings()

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    async def member_room(self, room_id: str, user_id: str) -> tuple[Room, Side]:
        """Load a room and the caller's side, rejecting outsiders."""
        room = await self.store.rooms.get(room_id)
        side = room.side_of(user_id)
        if side is None:
            raise PermissionDeniedError()
        return room, side

    @staticmethod
    def _require_status(room: Room, expected: RoomStatus, action: str) -> None:
        if room.status != expected:
            raise InvalidTransitionError(room.id, room.status.value, action)

    # -------------------------------------------------------------------------
    # Lobby
    # -------------------------------------------------------------------------

    async def create_room(self, user_id: str, request: CreateRoomRequest) -> Room:
        return await self.store.rooms.create(
            creator_id=user_id, title=request.title, description=request.description
        )

    async def join_room(self, user_id: str, code: str) -> Room:
        room = await self.store.rooms.get_by_code(code)
        if room.side_of(user_id) is not None:
            return room

        moved = await self.state_machine.transition(
            room.id, RoomEvent.PARTICIPANT_JOINED, participant_id=user_id
        )
        if not moved:
            raise TransitionGuardError(
                room.id, RoomEvent.PARTICIPANT_JOINED.value, "room was filled concurrently"
            )
        logger.info(f"User {user_id} joined room {room.id}")
        return await self.store.rooms.get(room.id)

    async def propose_motion(
        self, room_id: str, user_id: str, request: ProposeMotionRequest
    ) -> Motion:
        room, _ = await self.member_room(room_id, user_id)
        self._require_status(room, RoomStatus.AGENDA_NEGOTIATION, "PROPOSE_MOTION")
        return await self.store.rooms.propose_motion(
            room_id, user_id, request.title, request.description
        )

    async def agree_motion(self, room_id: str, user_id: str) -> Room:
        room, _ = await self.member_room(room_id, user_id)
        self._require_status(room, RoomStatus.AGENDA_NEGOTIATION, RoomEvent.MOTION_AGREED.value)

        if not await self.store.rooms.agree_motion(room_id, user_id):
            motion = await self.store.rooms.get_motion(room_id)
            if motion is None:
                raise TransitionGuardError(
                    room_id, RoomEvent.MOTION_AGREED.value, "no motion has been proposed"
                )
            if motion.status != MotionStatus.AGREED:
                raise TransitionGuardError(
                    room_id,
                    RoomEvent.MOTION_AGREED.value,
                    "the proposer cannot agree to their own motion",
                )

        await self.state_machine.transition(
            room_id, RoomEvent.MOTION_AGREED, expected=room.status
        )
        return await self.store.rooms.get(room_id)

    # -------------------------------------------------------------------------
    # Submissions
    # -------------------------------------------------------------------------

    async def submit_argument(
        self, room_id: str, user_id: str, request: SubmitArgumentRequest
    ) -> Argument:
        room, side = await self.member_room(room_id, user_id)
        self._require_status(room, RoomStatus.ARGUMENTS_SUBMISSION, "SUBMIT_ARGUMENT")

        argument = await self.store.debate.add_argument(
            room_id, user_id, side, request.title, request.content, request.evidence
        )
        logger.info(f"Room {room_id}: side {side.value} submitted an argument")

        if len(await self.store.debate.list_arguments(room_id)) == 2:
            if await self.state_machine.transition(
                room_id, RoomEvent.BOTH_ARGUMENTS_SUBMITTED, expected=room.status
            ):
                await self._enqueue_round(room_id, 1)
        return argument

    async def submit_rebuttal(
        self, room_id: str, user_id: str, request: SubmitRebuttalRequest
    ) -> Rebuttal:
        room, side = await self.member_room(room_id, user_id)
        round_number = REBUTTAL_ROUND.get(room.status)
        if round_number is None:
            raise InvalidTransitionError(room_id, room.status.value, "SUBMIT_REBUTTAL")

        rebuttal = await self.store.debate.add_rebuttal(
            room_id, user_id, side, round_number, request.content, request.evidence
        )
        logger.info(
            f"Room {room_id}: side {side.value} submitted rebuttal {round_number}"
        )

        if len(await self.store.debate.list_rebuttals(room_id, round_number)) >= 2:
            if await self.state_machine.transition(
                room_id, RoomEvent.BOTH_REBUTTALS_SUBMITTED, expected=room.status
            ):
                await self._enqueue_round(room_id, round_number + 1)
        return rebuttal

    async def _enqueue_round(self, room_id: str, round_number: int) -> Job:
        return await self.queue.enqueue(
            JobType.AI_DEBATE,
            room_id,
            AIDebatePayload(round_number=round_number),
            dedupe_key=debate_dedupe_key(round_number),
        )

    # -------------------------------------------------------------------------
    # Cancellation and job control
    # -------------------------------------------------------------------------

    async def cancel_room(self, room_id: str, user_id: str) -> Room:
        await self.member_room(room_id, user_id)
        await self.state_machine.transition(room_id, RoomEvent.CANCEL)

        active = await self.store.jobs.list_for_room(
            room_id, statuses=[JobStatus.QUEUED, JobStatus.RUNNING], limit=100
        )
        for job in active:
            try:
                await self.queue.cancel(job.id)
            except JobStateError as e:
                logger.debug(f"Job {job.id} finished before room cancel: {e.message}")
        return await self.store.rooms.get(room_id)

    async def member_job(self, job_id: str, user_id: str) -> Job:
        job = await self.queue.get(job_id)
        await self.member_room(job.room_id, user_id)
        return job

    async def cancel_job(self, job_id: str, user_id: str) -> Job:
        await self.member_job(job_id, user_id)
        return await self.queue.cancel(job_id)

    async def retry_job(self, job_id: str, user_id: str) -> Job:
        job = await self.member_job(job_id, user_id)
        room = await self.store.rooms.get(job.room_id)
        if room.status.is_terminal:
            raise JobStateError(
                f"Room is {room.status.value}; its jobs cannot be retried",
                job_id=job_id,
                actual_status=job.status.value,
            )
        return await self.queue.retry(job_id)

    # -------------------------------------------------------------------------
    # Views
    # -------------------------------------------------------------------------

    async def detail(self, room_id: str) -> RoomDetailResponse:
        room = await self.store.rooms.get(room_id)
        votes = await self.store.debate.list_votes(room_id)
        return RoomDetailResponse(
            room=room,
            motion=await self.store.rooms.get_motion(room_id),
            arguments=await self.store.debate.list_arguments(room_id),
            rebuttals=await self.store.debate.list_rebuttals(room_id),
            rounds=await self.store.debate.list_rounds(room_id),
            jury_votes=votes,
            jury_tally=tally_votes(votes, self.settings.jury_size) if votes else None,
            judge_decision=await self.store.debate.get_decision(room_id),
            failed_jobs=await self.store.jobs.list_for_room(
                room_id, statuses=[JobStatus.FAILED]
            ),
        )
