"""Repositories over the relational store.

Every public method is one short transaction. Status columns are changed
only with ``UPDATE ... WHERE status = expected`` and callers learn from the
returned boolean whether their write won.
"""

import logging
from datetime import datetime
from typing import Any, Iterable

from sqlalchemy import and_, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import selectinload

from arena.lib.database import (
    ArgumentRow,
    Database,
    DebateTurnRow,
    JobRow,
    JudgeDecisionRow,
    JuryVoteRow,
    MotionRow,
    RebuttalRow,
    RoomRow,
    RoundRow,
    new_id,
)
from arena.lib.exceptions import (
    DuplicateSubmissionError,
    JobNotFoundError,
    RoomNotFoundError,
    StoreError,
)
from arena.lib.models import (
    AdvocateStatement,
    Argument,
    DebateTurn,
    Job,
    JobStats,
    JobStatus,
    JobType,
    JudgeDecision,
    JudgeRuling,
    JurorBallot,
    JuryVote,
    Motion,
    MotionStatus,
    Rebuttal,
    Room,
    RoomStatus,
    Round,
    RoundStatus,
    Side,
    TurnStatus,
)
from arena.lib.utils import generate_room_code, utcnow

logger = logging.getLogger(__name__)

CODE_GENERATION_MAX_ATTEMPTS = 100


def _insert_for(dialect: str) -> Any:
    """Dialect-specific INSERT supporting ON CONFLICT clauses."""
    if dialect == "postgresql":
        from sqlalchemy.dialects.postgresql import insert
    elif dialect == "sqlite":
        from sqlalchemy.dialects.sqlite import insert
    else:
        raise StoreError(f"Upserts are not supported on dialect {dialect!r}")
    return insert


def _round_record(row: RoundRow) -> Round:
    return Round(
        id=row.id,
        room_id=row.room_id,
        round_number=row.round_number,
        status=row.status,
        completed_at=row.completed_at,
        turns=[DebateTurn.model_validate(turn) for turn in row.turns],
    )


# =============================================================================
# Rooms
# =============================================================================


class RoomRepository:
    """Rooms and their motion."""

    def __init__(self, db: Database):
        self.db = db

    async def create(
        self, creator_id: str, title: str, description: str | None = None
    ) -> Room:
        """Create a room with a fresh unique code."""
        for _ in range(CODE_GENERATION_MAX_ATTEMPTS):
            now = utcnow()
            row = RoomRow(
                code=generate_room_code(),
                title=title,
                description=description,
                creator_id=creator_id,
                status=RoomStatus.WAITING_PARTICIPANT.value,
                created_at=now,
                updated_at=now,
            )
            try:
                async with self.db.session() as session, session.begin():
                    session.add(row)
            except IntegrityError:
                logger.debug("Room code collision, regenerating")
                continue
            logger.info(f"Created room {row.id} ({row.code})")
            return Room.model_validate(row)
        raise StoreError("Could not generate a unique room code")

    async def get(self, room_id: str) -> Room:
        async with self.db.session() as session:
            row = await session.get(RoomRow, room_id)
            if row is None:
                raise RoomNotFoundError(room_id)
            return Room.model_validate(row)

    async def get_by_code(self, code: str) -> Room:
        async with self.db.session() as session:
            row = (
                await session.execute(select(RoomRow).where(RoomRow.code == code))
            ).scalar_one_or_none()
            if row is None:
                raise RoomNotFoundError(code)
            return Room.model_validate(row)

    async def list_by_status(self, statuses: Iterable[RoomStatus]) -> list[Room]:
        values = [s.value for s in statuses]
        async with self.db.session() as session:
            rows = (
                await session.execute(select(RoomRow).where(RoomRow.status.in_(values)))
            ).scalars()
            return [Room.model_validate(r) for r in rows]

    async def compare_and_set_status(
        self,
        room_id: str,
        expected: RoomStatus,
        new: RoomStatus,
        participant_id: str | None = None,
    ) -> bool:
        """
        Move a room from ``expected`` to ``new`` in a single conditional update.

        When ``participant_id`` is given the update also claims the empty
        participant seat, so the seat can only ever be filled once.

        Returns:
            True if this call changed the row, False if another writer got there first
        """
        conditions = [RoomRow.id == room_id, RoomRow.status == expected.value]
        values: dict[str, Any] = {"status": new.value, "updated_at": utcnow()}
        if participant_id is not None:
            conditions.append(RoomRow.participant_id.is_(None))
            values["participant_id"] = participant_id

        async with self.db.session() as session, session.begin():
            result = await session.execute(
                update(RoomRow)
                .where(and_(*conditions))
                .values(**values)
                .execution_options(synchronize_session=False)
            )
        return result.rowcount == 1

    # -------------------------------------------------------------------------
    # Motion
    # -------------------------------------------------------------------------

    async def get_motion(self, room_id: str) -> Motion | None:
        async with self.db.session() as session:
            row = (
                await session.execute(select(MotionRow).where(MotionRow.room_id == room_id))
            ).scalar_one_or_none()
            return Motion.model_validate(row) if row else None

    async def propose_motion(
        self, room_id: str, proposer_id: str, title: str, description: str
    ) -> Motion:
        """Insert or replace the room's motion while it is still only proposed."""
        insert = _insert_for(self.db.dialect)
        stmt = insert(MotionRow).values(
            id=new_id(),
            room_id=room_id,
            title=title,
            description=description,
            proposer_id=proposer_id,
            status=MotionStatus.PROPOSED.value,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[MotionRow.room_id],
            set_={
                "title": stmt.excluded.title,
                "description": stmt.excluded.description,
                "proposer_id": stmt.excluded.proposer_id,
            },
            where=MotionRow.status == MotionStatus.PROPOSED.value,
        )
        async with self.db.session() as session, session.begin():
            await session.execute(stmt)
        motion = await self.get_motion(room_id)
        assert motion is not None
        if motion.status != MotionStatus.PROPOSED:
            raise DuplicateSubmissionError("Motion has already been agreed")
        return motion

    async def agree_motion(self, room_id: str, agreer_id: str) -> bool:
        """Mark the proposed motion agreed; the proposer cannot agree to their own."""
        async with self.db.session() as session, session.begin():
            result = await session.execute(
                update(MotionRow)
                .where(
                    MotionRow.room_id == room_id,
                    MotionRow.status == MotionStatus.PROPOSED.value,
                    MotionRow.proposer_id != agreer_id,
                )
                .values(status=MotionStatus.AGREED.value, agreed_at=utcnow())
                .execution_options(synchronize_session=False)
            )
        return result.rowcount == 1


# =============================================================================
# Debate artifacts
# =============================================================================


class DebateRepository:
    """Arguments, rebuttals, rounds, turns, jury votes and the judge decision."""

    def __init__(self, db: Database):
        self.db = db

    # -------------------------------------------------------------------------
    # Human submissions
    # -------------------------------------------------------------------------

    async def add_argument(
        self,
        room_id: str,
        user_id: str,
        side: Side,
        title: str,
        content: str,
        evidence: list[str],
    ) -> Argument:
        row = ArgumentRow(
            room_id=room_id,
            user_id=user_id,
            side=side.value,
            title=title,
            content=content,
            evidence=list(evidence),
            created_at=utcnow(),
        )
        try:
            async with self.db.session() as session, session.begin():
                session.add(row)
        except IntegrityError as e:
            raise DuplicateSubmissionError(
                f"Side {side.value} has already submitted an argument"
            ) from e
        return Argument.model_validate(row)

    async def list_arguments(self, room_id: str) -> list[Argument]:
        async with self.db.session() as session:
            rows = (
                await session.execute(
                    select(ArgumentRow)
                    .where(ArgumentRow.room_id == room_id)
                    .order_by(ArgumentRow.side)
                )
            ).scalars()
            return [Argument.model_validate(r) for r in rows]

    async def add_rebuttal(
        self,
        room_id: str,
        user_id: str,
        side: Side,
        round_number: int,
        content: str,
        evidence: list[str],
    ) -> Rebuttal:
        row = RebuttalRow(
            room_id=room_id,
            user_id=user_id,
            side=side.value,
            round_number=round_number,
            content=content,
            evidence=list(evidence),
            created_at=utcnow(),
        )
        try:
            async with self.db.session() as session, session.begin():
                session.add(row)
        except IntegrityError as e:
            raise DuplicateSubmissionError(
                f"Rebuttal for round {round_number} already submitted"
            ) from e
        return Rebuttal.model_validate(row)

    async def list_rebuttals(
        self, room_id: str, round_number: int | None = None
    ) -> list[Rebuttal]:
        query = select(RebuttalRow).where(RebuttalRow.room_id == room_id)
        if round_number is not None:
            query = query.where(RebuttalRow.round_number == round_number)
        query = query.order_by(RebuttalRow.round_number, RebuttalRow.side)
        async with self.db.session() as session:
            rows = (await session.execute(query)).scalars()
            return [Rebuttal.model_validate(r) for r in rows]

    # -------------------------------------------------------------------------
    # Rounds and turns
    # -------------------------------------------------------------------------

    async def ensure_round(self, room_id: str, round_number: int) -> Round:
        """Return round N of a room, creating it on first use."""
        insert = _insert_for(self.db.dialect)
        stmt = (
            insert(RoundRow)
            .values(
                id=new_id(),
                room_id=room_id,
                round_number=round_number,
                status=RoundStatus.IN_PROGRESS.value,
                created_at=utcnow(),
            )
            .on_conflict_do_nothing(
                index_elements=[RoundRow.room_id, RoundRow.round_number]
            )
        )
        async with self.db.session() as session, session.begin():
            await session.execute(stmt)
        round_ = await self.get_round(room_id, round_number)
        assert round_ is not None
        return round_

    async def get_round(self, room_id: str, round_number: int) -> Round | None:
        async with self.db.session() as session:
            row = (
                await session.execute(
                    select(RoundRow)
                    .where(
                        RoundRow.room_id == room_id,
                        RoundRow.round_number == round_number,
                    )
                    .options(selectinload(RoundRow.turns))
                )
            ).scalar_one_or_none()
            return _round_record(row) if row else None

    async def list_rounds(self, room_id: str) -> list[Round]:
        async with self.db.session() as session:
            rows = (
                await session.execute(
                    select(RoundRow)
                    .where(RoundRow.room_id == room_id)
                    .order_by(RoundRow.round_number)
                    .options(selectinload(RoundRow.turns))
                )
            ).scalars()
            return [_round_record(r) for r in rows]

    async def upsert_turn(
        self,
        round_id: str,
        turn_number: int,
        side: Side,
        statement: AdvocateStatement,
        is_fallback: bool = False,
    ) -> None:
        """Write a completed turn keyed on (round_id, turn_number)."""
        insert = _insert_for(self.db.dialect)
        now = utcnow()
        stmt = insert(DebateTurnRow).values(
            id=new_id(),
            round_id=round_id,
            turn_number=turn_number,
            side=side.value,
            content=statement.statement,
            key_points=statement.key_points,
            counter_arguments=statement.counter_arguments,
            evidence_references=statement.evidence_references,
            status=TurnStatus.COMPLETED.value,
            is_fallback=is_fallback,
            completed_at=now,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[DebateTurnRow.round_id, DebateTurnRow.turn_number],
            set_={
                "content": stmt.excluded.content,
                "key_points": stmt.excluded.key_points,
                "counter_arguments": stmt.excluded.counter_arguments,
                "evidence_references": stmt.excluded.evidence_references,
                "status": stmt.excluded.status,
                "is_fallback": stmt.excluded.is_fallback,
                "completed_at": stmt.excluded.completed_at,
            },
        )
        async with self.db.session() as session, session.begin():
            await session.execute(stmt)

    async def complete_round(self, round_id: str) -> bool:
        """Mark a round completed once every one of its turns is completed."""
        pending = (
            select(func.count())
            .select_from(DebateTurnRow)
            .where(
                DebateTurnRow.round_id == round_id,
                DebateTurnRow.status != TurnStatus.COMPLETED.value,
            )
            .scalar_subquery()
        )
        async with self.db.session() as session, session.begin():
            result = await session.execute(
                update(RoundRow)
                .where(
                    RoundRow.id == round_id,
                    RoundRow.status == RoundStatus.IN_PROGRESS.value,
                    pending == 0,
                )
                .values(status=RoundStatus.COMPLETED.value, completed_at=utcnow())
                .execution_options(synchronize_session=False)
            )
        return result.rowcount == 1

    # -------------------------------------------------------------------------
    # Jury
    # -------------------------------------------------------------------------

    async def list_votes(self, room_id: str) -> list[JuryVote]:
        async with self.db.session() as session:
            rows = (
                await session.execute(
                    select(JuryVoteRow)
                    .where(JuryVoteRow.room_id == room_id)
                    .order_by(JuryVoteRow.juror_number)
                )
            ).scalars()
            return [JuryVote.model_validate(r) for r in rows]

    async def count_votes(self, room_id: str) -> int:
        async with self.db.session() as session:
            return (
                await session.execute(
                    select(func.count())
                    .select_from(JuryVoteRow)
                    .where(JuryVoteRow.room_id == room_id)
                )
            ).scalar_one()

    async def upsert_vote(
        self,
        room_id: str,
        juror_number: int,
        ballot: JurorBallot,
        is_fallback: bool = False,
    ) -> None:
        """Record juror N's vote keyed on (room_id, juror_number)."""
        insert = _insert_for(self.db.dialect)
        stmt = insert(JuryVoteRow).values(
            id=new_id(),
            room_id=room_id,
            juror_number=juror_number,
            vote=ballot.vote.value,
            confidence=ballot.confidence,
            reasoning=ballot.reasoning,
            key_factors=ballot.key_factors,
            is_fallback=is_fallback,
            created_at=utcnow(),
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[JuryVoteRow.room_id, JuryVoteRow.juror_number],
            set_={
                "vote": stmt.excluded.vote,
                "confidence": stmt.excluded.confidence,
                "reasoning": stmt.excluded.reasoning,
                "key_factors": stmt.excluded.key_factors,
                "is_fallback": stmt.excluded.is_fallback,
            },
        )
        async with self.db.session() as session, session.begin():
            await session.execute(stmt)

    # -------------------------------------------------------------------------
    # Judge
    # -------------------------------------------------------------------------

    async def get_decision(self, room_id: str) -> JudgeDecision | None:
        async with self.db.session() as session:
            row = (
                await session.execute(
                    select(JudgeDecisionRow).where(JudgeDecisionRow.room_id == room_id)
                )
            ).scalar_one_or_none()
            return JudgeDecision.model_validate(row) if row else None

    async def save_decision(
        self, room_id: str, ruling: JudgeRuling, is_fallback: bool = False
    ) -> JudgeDecision:
        """Persist the room's single verdict; an existing one is kept as-is."""
        insert = _insert_for(self.db.dialect)
        stmt = (
            insert(JudgeDecisionRow)
            .values(
                id=new_id(),
                room_id=room_id,
                winner=ruling.winner.value,
                reasoning=ruling.reasoning,
                score_a=ruling.score_a,
                score_b=ruling.score_b,
                content=ruling.model_dump(mode="json"),
                is_fallback=is_fallback,
                created_at=utcnow(),
            )
            .on_conflict_do_nothing(index_elements=[JudgeDecisionRow.room_id])
        )
        async with self.db.session() as session, session.begin():
            await session.execute(stmt)
        decision = await self.get_decision(room_id)
        assert decision is not None
        return decision


# =============================================================================
# Jobs
# =============================================================================


LIVE_JOB_STATUSES = (JobStatus.QUEUED, JobStatus.RUNNING, JobStatus.SUCCEEDED)


class JobRepository:
    """Row-level access to the jobs table. Queue policy lives in JobQueue."""

    def __init__(self, db: Database):
        self.db = db

    async def insert(
        self,
        job_type: JobType,
        room_id: str,
        payload: dict[str, Any],
        max_retries: int,
        scheduled_at: datetime,
        dedupe_key: str | None = None,
    ) -> Job:
        row = JobRow(
            type=job_type.value,
            status=JobStatus.QUEUED.value,
            room_id=room_id,
            payload=payload,
            retry_count=0,
            max_retries=max_retries,
            dedupe_key=dedupe_key,
            progress=0,
            scheduled_at=scheduled_at,
            created_at=utcnow(),
        )
        try:
            async with self.db.session() as session, session.begin():
                session.add(row)
        except IntegrityError:
            if dedupe_key is None:
                raise
            existing = await self.find_live(room_id, dedupe_key)
            if existing is None:
                raise
            logger.debug(
                f"Job {dedupe_key} for room {room_id} inserted concurrently, "
                f"reusing {existing.id}"
            )
            return existing
        return Job.model_validate(row)

    async def get(self, job_id: str) -> Job:
        async with self.db.session() as session:
            row = await session.get(JobRow, job_id)
            if row is None:
                raise JobNotFoundError(job_id)
            return Job.model_validate(row)

    async def select_due(self, now: datetime, limit: int) -> list[Job]:
        async with self.db.session() as session:
            rows = (
                await session.execute(
                    select(JobRow)
                    .where(
                        JobRow.status == JobStatus.QUEUED.value,
                        JobRow.scheduled_at <= now,
                    )
                    .order_by(JobRow.scheduled_at.asc(), JobRow.created_at.asc())
                    .limit(limit)
                )
            ).scalars()
            return [Job.model_validate(r) for r in rows]

    async def select_running_before(self, cutoff: datetime) -> list[Job]:
        async with self.db.session() as session:
            rows = (
                await session.execute(
                    select(JobRow).where(
                        JobRow.status == JobStatus.RUNNING.value,
                        JobRow.started_at < cutoff,
                    )
                )
            ).scalars()
            return [Job.model_validate(r) for r in rows]

    async def compare_and_set(
        self,
        job_id: str,
        expected: Iterable[JobStatus],
        values: dict[str, Any],
        extra_conditions: Iterable[Any] = (),
    ) -> bool:
        """Apply ``values`` only if the job's status is one of ``expected``."""
        expected_values = [s.value for s in expected]
        async with self.db.session() as session, session.begin():
            result = await session.execute(
                update(JobRow)
                .where(
                    JobRow.id == job_id,
                    JobRow.status.in_(expected_values),
                    *extra_conditions,
                )
                .values(**values)
                .execution_options(synchronize_session=False)
            )
        return result.rowcount == 1

    async def find_live(self, room_id: str, dedupe_key: str) -> Job | None:
        """A queued, running or succeeded job for the same unit of work."""
        async with self.db.session() as session:
            row = (
                await session.execute(
                    select(JobRow)
                    .where(
                        JobRow.room_id == room_id,
                        JobRow.dedupe_key == dedupe_key,
                        JobRow.status.in_([s.value for s in LIVE_JOB_STATUSES]),
                    )
                    .order_by(JobRow.created_at.desc())
                    .limit(1)
                )
            ).scalar_one_or_none()
            return Job.model_validate(row) if row else None

    async def list_for_room(
        self,
        room_id: str,
        job_type: JobType | None = None,
        statuses: Iterable[JobStatus] | None = None,
        limit: int = 20,
        offset: int = 0,
    ) -> list[Job]:
        query = select(JobRow).where(JobRow.room_id == room_id)
        if job_type is not None:
            query = query.where(JobRow.type == job_type.value)
        if statuses is not None:
            query = query.where(JobRow.status.in_([s.value for s in statuses]))
        query = query.order_by(JobRow.created_at.desc()).offset(offset).limit(limit)
        async with self.db.session() as session:
            rows = (await session.execute(query)).scalars()
            return [Job.model_validate(r) for r in rows]

    async def stats(self, room_id: str | None = None) -> JobStats:
        query = select(JobRow.status, JobRow.started_at, JobRow.completed_at)
        if room_id is not None:
            query = query.where(JobRow.room_id == room_id)
        async with self.db.session() as session:
            rows = (await session.execute(query)).all()

        stats = JobStats(total=len(rows))
        durations: list[float] = []
        for status, started_at, completed_at in rows:
            if status in (JobStatus.QUEUED.value, JobStatus.RETRYING.value):
                stats.queued += 1
            elif status == JobStatus.RUNNING.value:
                stats.running += 1
            elif status == JobStatus.SUCCEEDED.value:
                stats.succeeded += 1
                if started_at and completed_at:
                    durations.append((completed_at - started_at).total_seconds())
            elif status == JobStatus.FAILED.value:
                stats.failed += 1
            elif status == JobStatus.CANCELLED.value:
                stats.cancelled += 1

        if durations:
            stats.average_execution_seconds = round(sum(durations) / len(durations), 1)
        return stats


# =============================================================================
# Store
# =============================================================================


class Store:
    """Bundle of repositories sharing one database."""

    def __init__(self, db: Database):
        self.db = db
        self.rooms = RoomRepository(db)
        self.debate = DebateRepository(db)
        self.jobs = JobRepository(db)
