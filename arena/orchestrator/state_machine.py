"""Room lifecycle state machine.

The graph is fixed; every guard is evaluated against stored rows, never
against caller input, and the move itself is one conditional update keyed
on the status the guard was checked against.
"""

import logging

from arena.config import Settings, get_settings
from arena.lib.exceptions import InvalidTransitionError, TransitionGuardError
from arena.lib.models import (
    MotionStatus,
    Room,
    RoomEvent,
    RoomStatus,
    Side,
    TurnStatus,
)
from arena.lib.repositories import Store

logger = logging.getLogger(__name__)


TRANSITIONS: dict[tuple[RoomStatus, RoomEvent], RoomStatus] = {
    (RoomStatus.WAITING_PARTICIPANT, RoomEvent.PARTICIPANT_JOINED): RoomStatus.AGENDA_NEGOTIATION,
    (RoomStatus.AGENDA_NEGOTIATION, RoomEvent.MOTION_AGREED): RoomStatus.ARGUMENTS_SUBMISSION,
    (RoomStatus.ARGUMENTS_SUBMISSION, RoomEvent.BOTH_ARGUMENTS_SUBMITTED): RoomStatus.DEBATE_ROUND_1,
    (RoomStatus.DEBATE_ROUND_1, RoomEvent.ROUND_1_COMPLETE): RoomStatus.WAITING_REBUTTAL_1,
    (RoomStatus.WAITING_REBUTTAL_1, RoomEvent.BOTH_REBUTTALS_SUBMITTED): RoomStatus.DEBATE_ROUND_2,
    (RoomStatus.DEBATE_ROUND_2, RoomEvent.ROUND_2_COMPLETE): RoomStatus.WAITING_REBUTTAL_2,
    (RoomStatus.WAITING_REBUTTAL_2, RoomEvent.BOTH_REBUTTALS_SUBMITTED): RoomStatus.DEBATE_ROUND_3,
    (RoomStatus.DEBATE_ROUND_3, RoomEvent.ROUND_3_COMPLETE): RoomStatus.AI_PROCESSING,
    # Jury completion is a checkpoint inside ai_processing, not a status change.
    (RoomStatus.AI_PROCESSING, RoomEvent.JURY_COMPLETE): RoomStatus.AI_PROCESSING,
    (RoomStatus.AI_PROCESSING, RoomEvent.JUDGE_COMPLETE): RoomStatus.COMPLETED,
}

REBUTTAL_ROUND = {
    RoomStatus.WAITING_REBUTTAL_1: 1,
    RoomStatus.WAITING_REBUTTAL_2: 2,
}

DEBATE_ROUND = {
    RoomStatus.DEBATE_ROUND_1: 1,
    RoomStatus.DEBATE_ROUND_2: 2,
    RoomStatus.DEBATE_ROUND_3: 3,
}


def next_status(status: RoomStatus, event: RoomEvent) -> RoomStatus | None:
    """Target status for ``event`` from ``status``, or None if illegal."""
    if event == RoomEvent.CANCEL:
        return None if status.is_terminal else RoomStatus.CANCELLED
    return TRANSITIONS.get((status, event))


def allowed_events(status: RoomStatus) -> list[RoomEvent]:
    return [event for event in RoomEvent if next_status(status, event) is not None]


class RoomStateMachine:
    """Validates and applies room lifecycle events."""

    def __init__(self, store: Store, settings: Settings | None = None):
        self.store = store
        self.settings = settings or get_settings()

    async def transition(
        self,
        room_id: str,
        event: RoomEvent,
        participant_id: str | None = None,
        expected: RoomStatus | None = None,
    ) -> bool:
        """
        Apply ``event`` to a room.

        Args:
            room_id: Room to move
            event: Lifecycle event
            participant_id: Joining user, required for PARTICIPANT_JOINED
            expected: Status the caller acted on; if the room has already left
                it, the call is a no-op

        Returns:
            True if this call moved the room; False if a concurrent writer
            changed its status first (a benign no-op)

        Raises:
            InvalidTransitionError: If the event is not legal from the current status
            TransitionGuardError: If the stored data does not satisfy the event's guard
        """
        room = await self.store.rooms.get(room_id)
        if expected is not None and room.status != expected:
            logger.debug(
                f"Room {room_id}: {event.value} skipped, status moved from "
                f"{expected.value} to {room.status.value}"
            )
            return False

        target = next_status(room.status, event)
        if target is None:
            raise InvalidTransitionError(room_id, room.status.value, event.value)

        await self._check_guard(room, event, participant_id)

        moved = await self.store.rooms.compare_and_set_status(
            room_id,
            expected=room.status,
            new=target,
            participant_id=participant_id if event == RoomEvent.PARTICIPANT_JOINED else None,
        )
        if not moved:
            logger.debug(
                f"Room {room_id}: {event.value} lost race from {room.status.value}"
            )
            return False

        logger.info(
            f"Room {room_id}: {room.status.value} -> {target.value} ({event.value})"
        )
        return True

    # -------------------------------------------------------------------------
    # Guards
    # -------------------------------------------------------------------------

    async def _check_guard(
        self, room: Room, event: RoomEvent, participant_id: str | None
    ) -> None:
        def fail(reason: str) -> TransitionGuardError:
            return TransitionGuardError(room.id, event.value, reason)

        if event == RoomEvent.PARTICIPANT_JOINED:
            if not participant_id:
                raise fail("participant id is required")
            if room.participant_id is not None:
                raise fail("room already has a participant")
            if participant_id == room.creator_id:
                raise fail("creator cannot join as participant")

        elif event == RoomEvent.MOTION_AGREED:
            motion = await self.store.rooms.get_motion(room.id)
            if motion is None or motion.status != MotionStatus.AGREED:
                raise fail("motion has not been agreed")

        elif event == RoomEvent.BOTH_ARGUMENTS_SUBMITTED:
            arguments = await self.store.debate.list_arguments(room.id)
            sides = [argument.side for argument in arguments]
            if sorted(sides) != [Side.A, Side.B]:
                raise fail(f"expected one argument per side, found {len(arguments)}")

        elif event in (
            RoomEvent.ROUND_1_COMPLETE,
            RoomEvent.ROUND_2_COMPLETE,
            RoomEvent.ROUND_3_COMPLETE,
        ):
            round_number = DEBATE_ROUND[room.status]
            round_ = await self.store.debate.get_round(room.id, round_number)
            if round_ is None:
                raise fail(f"round {round_number} does not exist")
            sides = {turn.side for turn in round_.turns}
            if sides != {Side.A, Side.B}:
                raise fail(f"round {round_number} is missing a side's turn")
            if any(turn.status != TurnStatus.COMPLETED for turn in round_.turns):
                raise fail(f"round {round_number} has pending turns")

        elif event == RoomEvent.BOTH_REBUTTALS_SUBMITTED:
            round_number = REBUTTAL_ROUND[room.status]
            rebuttals = await self.store.debate.list_rebuttals(room.id, round_number)
            if len(rebuttals) < 2:
                raise fail(
                    f"round {round_number} has {len(rebuttals)} of 2 rebuttals"
                )

        elif event == RoomEvent.JURY_COMPLETE:
            count = await self.store.debate.count_votes(room.id)
            if count < self.settings.jury_size:
                raise fail(f"{count} of {self.settings.jury_size} jury votes recorded")

        elif event == RoomEvent.JUDGE_COMPLETE:
            if await self.store.debate.get_decision(room.id) is None:
                raise fail("no judge decision recorded")
