"""Shared fixtures: a temp-file database, a scripted generative client and room builders."""

from datetime import timedelta
from typing import Any, Awaitable, Callable

import httpx
import pytest

from arena.config import Settings, reset_settings
from arena.lib.database import Database
from arena.lib.models import (
    AdvocateContext,
    AdvocateStatement,
    CreateRoomRequest,
    GenerationKind,
    GenerationResult,
    JobStatus,
    JudgeRuling,
    JurorBallot,
    JurorContext,
    ProposeMotionRequest,
    Room,
    RoomStatus,
    Side,
    SubmitArgumentRequest,
    SubmitRebuttalRequest,
    TokenUsage,
)
from arena.lib.utils import utcnow
from arena.orchestrator.engine import ArenaEngine

CREATOR = "alice"
PARTICIPANT = "bob"
OUTSIDER = "mallory"


class FakeGenerativeClient:
    """
    Scripted stand-in for GenerativeClient.

    ``failures`` maps a 1-based call number to the exception that call raises.
    ``juror_votes`` picks the side a given juror votes for (default A).
    ``hook`` is awaited on every successful call, before the result returns.
    """

    def __init__(self):
        self.calls: list[tuple[GenerationKind, Any]] = []
        self.failures: dict[int, Exception] = {}
        self.juror_votes: dict[int, Side] = {}
        self.fallback = False
        self.winner = Side.A
        self.hook: Callable[[GenerationKind, Any], Awaitable[None]] | None = None

    def calls_of(self, kind: GenerationKind) -> list[Any]:
        return [context for k, context in self.calls if k == kind]

    async def generate(self, kind: GenerationKind, context: Any) -> GenerationResult:
        self.calls.append((kind, context))
        error = self.failures.get(len(self.calls))
        if error is not None:
            raise error
        if self.hook is not None:
            await self.hook(kind, context)

        if kind == GenerationKind.ADVOCATE:
            assert isinstance(context, AdvocateContext)
            data: Any = AdvocateStatement(
                statement=(
                    f"Side {context.side.value} in round {context.round_number} "
                    "maintains its position with renewed emphasis on the evidence."
                ),
                key_points=["First point", "Second point"],
                counter_arguments=["The opponent overlooks cost"],
            )
        elif kind == GenerationKind.JUROR:
            assert isinstance(context, JurorContext)
            data = JurorBallot(
                vote=self.juror_votes.get(context.juror_number, Side.A),
                reasoning="The argument was more consistent throughout the rounds.",
                confidence=8,
                key_factors=["Consistency"],
            )
        else:
            data = JudgeRuling(
                summary="A close debate decided on the quality of rebuttals.",
                analysis_a="Side A built a coherent case from the opening.",
                analysis_b="Side B raised fair points but left gaps.",
                strengths_a=["Structure"],
                weaknesses_a=["Few sources"],
                strengths_b=["Passion"],
                weaknesses_b=["Gaps in logic"],
                reasoning=(
                    "Side A answered every objection and the jury agreed with "
                    "a clear majority in its favour."
                ),
                winner=self.winner,
                score_a=78 if self.winner == Side.A else 60,
                score_b=60 if self.winner == Side.A else 78,
            )
        return GenerationResult(
            kind=kind,
            data=data,
            is_fallback=self.fallback,
            model="fake",
            token_usage=TokenUsage(input_tokens=100, output_tokens=20, model="fake"),
        )


class RoomBuilder:
    """Drives a room through the human-gated stages."""

    def __init__(self, engine: ArenaEngine):
        self.engine = engine

    async def created(self) -> Room:
        return await self.engine.rooms.create_room(
            CREATOR, CreateRoomRequest(title="Should cities ban cars?")
        )

    async def negotiating(self) -> Room:
        room = await self.created()
        return await self.engine.rooms.join_room(PARTICIPANT, room.code)

    async def arguing(self) -> Room:
        room = await self.negotiating()
        await self.engine.rooms.propose_motion(
            room.id,
            CREATOR,
            ProposeMotionRequest(title="Cities should ban private cars downtown"),
        )
        return await self.engine.rooms.agree_motion(room.id, PARTICIPANT)

    async def debating(self) -> Room:
        room = await self.arguing()
        await self.engine.rooms.submit_argument(
            room.id,
            CREATOR,
            SubmitArgumentRequest(title="Cleaner air", content="Cars pollute city centres."),
        )
        await self.engine.rooms.submit_argument(
            room.id,
            PARTICIPANT,
            SubmitArgumentRequest(title="Mobility", content="People need to get to work."),
        )
        return await self.engine.store.rooms.get(room.id)

    async def rebut(self, room_id: str) -> Room:
        for user in (CREATOR, PARTICIPANT):
            await self.engine.rooms.submit_rebuttal(
                room_id,
                user,
                SubmitRebuttalRequest(content=f"{user} answers the last round."),
            )
        return await self.engine.store.rooms.get(room_id)

    async def processing(self) -> Room:
        """Room in ai_processing with its jury job queued."""
        room = await self.debating()
        for _ in range(2):
            await self.engine.dispatcher.drain()
            await self.rebut(room.id)
        await self.engine.dispatcher.drain()
        return await self.engine.store.rooms.get(room.id)

    async def run_to_completion(self, room_id: str) -> Room:
        """Drain and rebut until the room leaves the pipeline."""
        for _ in range(12):
            room = await self.engine.store.rooms.get(room_id)
            if room.status.is_terminal:
                return room
            if room.status in (RoomStatus.WAITING_REBUTTAL_1, RoomStatus.WAITING_REBUTTAL_2):
                await self.rebut(room_id)
            else:
                await self.engine.dispatcher.drain()
        return await self.engine.store.rooms.get(room_id)


async def make_due(engine: ArenaEngine, job_id: str) -> None:
    """Pull a backed-off job's schedule into the past."""
    await engine.store.jobs.compare_and_set(
        job_id, [JobStatus.QUEUED], {"scheduled_at": utcnow() - timedelta(seconds=1)}
    )


@pytest.fixture(autouse=True)
def clean_settings():
    reset_settings()
    yield
    reset_settings()


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        _env_file=None,
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'arena.db'}",
        jury_size=7,
        job_max_retries=3,
        job_backoff_base_seconds=60.0,
        job_stale_after_seconds=900.0,
        drain_batch_size=5,
        drain_concurrency=3,
        drain_secret="drain-secret",
        worker_enabled=False,
        llm_allow_fallback=False,
    )


@pytest.fixture
def generative() -> FakeGenerativeClient:
    return FakeGenerativeClient()


@pytest.fixture
async def engine(settings, generative):
    arena_engine = ArenaEngine(
        Database(settings=settings), generative, settings, reconcile_grace_seconds=0
    )
    await arena_engine.start(run_worker=False)
    yield arena_engine
    await arena_engine.stop()


@pytest.fixture
def rooms(engine) -> RoomBuilder:
    return RoomBuilder(engine)


@pytest.fixture
async def client(engine):
    from arena.main import create_app

    app = create_app(engine)
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as http:
        yield http
