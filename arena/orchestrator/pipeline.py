"""Debate pipeline handlers.

One handler per job type. Handlers persist their sub-steps as they go
(turns, votes, the decision) under uniqueness keys, skip whatever an earlier
attempt already wrote, and report the outcome as a ``HandlerResult``. They
never touch job or room status themselves; the dispatcher applies the
result once the job's completion has been recorded.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

from pydantic import BaseModel

from arena.config import Settings, get_settings
from arena.lib.exceptions import (
    JobCancelledError,
    LLMError,
    PipelineError,
    RoomNotFoundError,
)
from arena.lib.generative import GenerativeClient
from arena.lib.models import (
    AdvocateContext,
    AIDebatePayload,
    AIJudgePayload,
    AIJuryPayload,
    ArgumentSnapshot,
    DebateContext,
    GenerationKind,
    Job,
    JobType,
    JudgeContext,
    JurorContext,
    MotionSnapshot,
    RebuttalSnapshot,
    RoomEvent,
    RoomStatus,
    RoundTranscript,
    Side,
    TokenUsage,
    TurnSnapshot,
    TurnStatus,
    VoteSnapshot,
)
from arena.lib.repositories import Store
from arena.orchestrator.aggregation import tally_votes
from arena.orchestrator.queue import JobQueue

logger = logging.getLogger(__name__)

TURN_ORDER: tuple[tuple[int, Side], ...] = ((1, Side.A), (2, Side.B))


# =============================================================================
# Results
# =============================================================================


@dataclass
class FollowUp:
    """A job to enqueue once the current job has completed."""

    job_type: JobType
    payload: BaseModel
    dedupe_key: str


@dataclass
class HandlerResult:
    """Explicit outcome of one handler run."""

    ok: bool
    result: dict[str, Any] = field(default_factory=dict)
    error: str | None = None
    retryable: bool = False
    cancelled: bool = False
    room_event: RoomEvent | None = None
    follow_ups: list[FollowUp] = field(default_factory=list)

    @classmethod
    def success(
        cls,
        result: dict[str, Any],
        room_event: RoomEvent | None = None,
        follow_ups: list[FollowUp] | None = None,
    ) -> "HandlerResult":
        return cls(
            ok=True, result=result, room_event=room_event, follow_ups=follow_ups or []
        )

    @classmethod
    def failure(cls, error: str, retryable: bool) -> "HandlerResult":
        return cls(ok=False, error=error, retryable=retryable)


def debate_dedupe_key(round_number: int) -> str:
    return f"{JobType.AI_DEBATE.value}:round:{round_number}"


JURY_DEDUPE_KEY = JobType.AI_JURY.value
JUDGE_DEDUPE_KEY = JobType.AI_JUDGE.value


def add_usage(totals: TokenUsage, usage: TokenUsage) -> None:
    totals.input_tokens += usage.input_tokens
    totals.output_tokens += usage.output_tokens


def usage_result(totals: TokenUsage) -> dict[str, int]:
    return {"input_tokens": totals.input_tokens, "output_tokens": totals.output_tokens}


# =============================================================================
# Context building
# =============================================================================


async def build_debate_context(store: Store, room_id: str) -> DebateContext:
    """
    Snapshot the motion, opening arguments and every round so far.

    Raises:
        PipelineError: If the motion or either opening argument is missing
    """
    motion = await store.rooms.get_motion(room_id)
    if motion is None:
        raise PipelineError(f"Room {room_id} has no motion")

    arguments = {a.side: a for a in await store.debate.list_arguments(room_id)}
    if Side.A not in arguments or Side.B not in arguments:
        raise PipelineError(f"Room {room_id} is missing an opening argument")

    rebuttals = await store.debate.list_rebuttals(room_id)
    transcripts = []
    for round_ in await store.debate.list_rounds(room_id):
        transcripts.append(
            RoundTranscript(
                round_number=round_.round_number,
                turns=[
                    TurnSnapshot(side=t.side, content=t.content, key_points=t.key_points)
                    for t in round_.turns
                    if t.status == TurnStatus.COMPLETED
                ],
                rebuttals=[
                    RebuttalSnapshot(side=r.side, content=r.content)
                    for r in rebuttals
                    if r.round_number == round_.round_number
                ],
            )
        )

    def snapshot(side: Side) -> ArgumentSnapshot:
        a = arguments[side]
        return ArgumentSnapshot(
            side=a.side, title=a.title, content=a.content, evidence=a.evidence
        )

    return DebateContext(
        room_id=room_id,
        motion=MotionSnapshot(title=motion.title, description=motion.description),
        argument_a=snapshot(Side.A),
        argument_b=snapshot(Side.B),
        rounds=transcripts,
    )


# =============================================================================
# Handlers
# =============================================================================


class JobHandler(ABC):
    """Base class: runs ``execute`` and turns exceptions into a HandlerResult."""

    job_type: JobType

    def __init__(
        self,
        store: Store,
        generative: GenerativeClient,
        queue: JobQueue,
        settings: Settings | None = None,
    ):
        self.store = store
        self.generative = generative
        self.queue = queue
        self.settings = settings or get_settings()

    @abstractmethod
    async def execute(self, job: Job, payload: Any) -> HandlerResult:
        pass

    async def handle(self, job: Job, payload: Any) -> HandlerResult:
        try:
            return await self.execute(job, payload)
        except JobCancelledError as e:
            return HandlerResult(ok=False, error=e.message, cancelled=True)
        except LLMError as e:
            return HandlerResult.failure(f"{type(e).__name__}: {e.message}", e.transient)
        except PipelineError as e:
            return HandlerResult.failure(e.message, e.retryable)
        except RoomNotFoundError as e:
            return HandlerResult.failure(e.message, retryable=False)

    async def ensure_running(self, job: Job) -> None:
        """Stop before writing if the job was cancelled or reclaimed."""
        if not await self.queue.is_running(job.id):
            raise JobCancelledError(job.id)

    async def expect_status(self, room_id: str, expected: RoomStatus) -> None:
        room = await self.store.rooms.get(room_id)
        if room.status != expected:
            raise PipelineError(
                f"Room {room_id} is {room.status.value}, expected {expected.value}"
            )


class DebateHandler(JobHandler):
    """AI_DEBATE: both advocates speak once in round N."""

    job_type = JobType.AI_DEBATE

    async def execute(self, job: Job, payload: AIDebatePayload) -> HandlerResult:
        n = payload.round_number
        await self.expect_status(job.room_id, RoomStatus(f"debate_round_{n}"))

        round_ = await self.store.debate.ensure_round(job.room_id, n)
        done = {t.turn_number for t in round_.turns if t.status == TurnStatus.COMPLETED}
        fallback_turns = sum(1 for t in round_.turns if t.is_fallback)
        usage = TokenUsage()

        for turn_number, side in TURN_ORDER:
            if turn_number in done:
                logger.debug(f"Room {job.room_id} round {n}: turn {turn_number} exists")
                continue

            debate = await build_debate_context(self.store, job.room_id)
            own, opponent = (
                (debate.argument_a, debate.argument_b)
                if side == Side.A
                else (debate.argument_b, debate.argument_a)
            )
            generation = await self.generative.generate(
                GenerationKind.ADVOCATE,
                AdvocateContext(
                    side=side,
                    round_number=n,
                    motion=debate.motion,
                    own_argument=own,
                    opponent_argument=opponent,
                    prior_rounds=debate.rounds,
                ),
            )

            await self.ensure_running(job)
            await self.store.debate.upsert_turn(
                round_.id, turn_number, side, generation.data, generation.is_fallback
            )
            fallback_turns += int(generation.is_fallback)
            add_usage(usage, generation.token_usage)
            await self.queue.set_progress(job.id, turn_number * 50)
            logger.info(f"Room {job.room_id} round {n}: side {side.value} spoke")

        await self.store.debate.complete_round(round_.id)

        follow_ups = []
        if n == self.settings.debate_rounds:
            context = await build_debate_context(self.store, job.room_id)
            follow_ups.append(
                FollowUp(JobType.AI_JURY, AIJuryPayload(context=context), JURY_DEDUPE_KEY)
            )

        return HandlerResult.success(
            {
                "round_number": n,
                "round_id": round_.id,
                "fallback_turns": fallback_turns,
                "token_usage": usage_result(usage),
            },
            room_event=RoomEvent.round_complete(n),
            follow_ups=follow_ups,
        )


class JuryHandler(JobHandler):
    """AI_JURY: every juror votes once; votes already cast are kept."""

    job_type = JobType.AI_JURY

    async def execute(self, job: Job, payload: AIJuryPayload) -> HandlerResult:
        await self.expect_status(job.room_id, RoomStatus.AI_PROCESSING)
        size = self.settings.jury_size

        voted = {v.juror_number for v in await self.store.debate.list_votes(job.room_id)}
        usage = TokenUsage()
        if voted:
            logger.info(f"Room {job.room_id}: resuming jury with {len(voted)} vote(s)")

        for juror_number in range(1, size + 1):
            if juror_number in voted:
                continue
            generation = await self.generative.generate(
                GenerationKind.JUROR,
                JurorContext(juror_number=juror_number, debate=payload.context),
            )
            await self.ensure_running(job)
            await self.store.debate.upsert_vote(
                job.room_id, juror_number, generation.data, generation.is_fallback
            )
            voted.add(juror_number)
            add_usage(usage, generation.token_usage)
            await self.queue.set_progress(job.id, len(voted) * 100 // size)

        votes = await self.store.debate.list_votes(job.room_id)
        if len(votes) < size:
            raise PipelineError(
                f"Only {len(votes)} of {size} jury votes recorded", retryable=True
            )

        tally = tally_votes(votes, size)
        snapshots = [
            VoteSnapshot(
                juror_number=v.juror_number,
                vote=v.vote,
                confidence=v.confidence,
                reasoning=v.reasoning,
            )
            for v in votes
        ]
        return HandlerResult.success(
            {
                "total_votes": tally.total_votes,
                "fallback_votes": sum(1 for v in votes if v.is_fallback),
                "tally": tally.model_dump(mode="json"),
                "token_usage": usage_result(usage),
            },
            room_event=RoomEvent.JURY_COMPLETE,
            follow_ups=[
                FollowUp(
                    JobType.AI_JUDGE,
                    AIJudgePayload(context=payload.context, jury_votes=snapshots),
                    JUDGE_DEDUPE_KEY,
                )
            ],
        )


class JudgeHandler(JobHandler):
    """AI_JUDGE: one verdict per room."""

    job_type = JobType.AI_JUDGE

    async def execute(self, job: Job, payload: AIJudgePayload) -> HandlerResult:
        await self.expect_status(job.room_id, RoomStatus.AI_PROCESSING)

        decision = await self.store.debate.get_decision(job.room_id)
        usage = TokenUsage()
        if decision is None:
            tally = tally_votes(payload.jury_votes, self.settings.jury_size)
            generation = await self.generative.generate(
                GenerationKind.JUDGE,
                JudgeContext(
                    debate=payload.context, jury_votes=payload.jury_votes, tally=tally
                ),
            )
            add_usage(usage, generation.token_usage)
            await self.ensure_running(job)
            decision = await self.store.debate.save_decision(
                job.room_id, generation.data, generation.is_fallback
            )
            logger.info(
                f"Room {job.room_id}: verdict {decision.winner.value} "
                f"({decision.score_a}-{decision.score_b})"
            )

        return HandlerResult.success(
            {
                "decision_id": decision.id,
                "winner": decision.winner.value,
                "score_a": decision.score_a,
                "score_b": decision.score_b,
                "is_fallback": decision.is_fallback,
                "token_usage": usage_result(usage),
            },
            room_event=RoomEvent.JUDGE_COMPLETE,
        )


def build_handlers(
    store: Store,
    generative: GenerativeClient,
    queue: JobQueue,
    settings: Settings | None = None,
) -> dict[JobType, JobHandler]:
    return {
        handler.job_type: handler
        for handler in (
            DebateHandler(store, generative, queue, settings),
            JuryHandler(store, generative, queue, settings),
            JudgeHandler(store, generative, queue, settings),
        )
    }
