"""Job queue: claiming, backoff, terminal failure, cancellation and validation."""

import asyncio
from datetime import timedelta

import pytest

from arena.lib.exceptions import JobStateError, PayloadValidationError, RoomNotFoundError
from arena.lib.models import AIDebatePayload, JobStatus, JobType
from arena.lib.utils import utcnow

from conftest import make_due


@pytest.fixture
async def room(rooms):
    return await rooms.created()


async def enqueue_round(engine, room_id, round_number=1, dedupe_key=None):
    return await engine.queue.enqueue(
        JobType.AI_DEBATE,
        room_id,
        AIDebatePayload(round_number=round_number),
        dedupe_key=dedupe_key,
    )


class TestEnqueue:
    async def test_enqueue_stores_validated_payload(self, engine, room):
        job = await enqueue_round(engine, room.id, 2)
        assert job.status == JobStatus.QUEUED
        assert job.payload == {"type": "ai_debate", "round_number": 2}
        assert job.retry_count == 0
        assert job.max_retries == 3

    async def test_enqueue_sets_wake_event(self, engine, room):
        engine.queue.wake_event.clear()
        await enqueue_round(engine, room.id)
        assert engine.queue.wake_event.is_set()

    async def test_dedupe_key_reuses_live_job(self, engine, room):
        first = await enqueue_round(engine, room.id, dedupe_key="ai_debate:round:1")
        second = await enqueue_round(engine, room.id, dedupe_key="ai_debate:round:1")
        assert first.id == second.id

    async def test_dedupe_holds_when_lookups_race(self, engine, room, monkeypatch):
        find_live = engine.store.jobs.find_live
        lookups = []

        async def missed_twice(room_id, dedupe_key):
            lookups.append(dedupe_key)
            if len(lookups) <= 2:
                return None
            return await find_live(room_id, dedupe_key)

        monkeypatch.setattr(engine.store.jobs, "find_live", missed_twice)

        first = await enqueue_round(engine, room.id, dedupe_key="ai_jury")
        second = await enqueue_round(engine, room.id, dedupe_key="ai_jury")
        assert second.id == first.id
        assert len(await engine.store.jobs.list_for_room(room.id)) == 1

    async def test_retry_refused_while_stage_is_live(self, engine, room):
        failed = await enqueue_round(engine, room.id, dedupe_key="k")
        [claimed] = await engine.queue.claim_next(5)
        await engine.queue.fail(claimed, "bad", retryable=False)
        replacement = await enqueue_round(engine, room.id, dedupe_key="k")
        assert replacement.id != failed.id

        with pytest.raises(JobStateError):
            await engine.queue.retry(failed.id)
        assert (await engine.queue.get(failed.id)).status == JobStatus.FAILED

    async def test_dedupe_ignores_cancelled_jobs(self, engine, room):
        first = await enqueue_round(engine, room.id, dedupe_key="k")
        await engine.queue.cancel(first.id)
        second = await enqueue_round(engine, room.id, dedupe_key="k")
        assert second.id != first.id

    async def test_unknown_room(self, engine):
        with pytest.raises(RoomNotFoundError):
            await enqueue_round(engine, "missing-room")

    @pytest.mark.parametrize(
        "job_type,payload",
        [
            (JobType.AI_DEBATE, {"type": "ai_debate", "round_number": 4}),
            (JobType.AI_DEBATE, {"type": "ai_debate"}),
            (JobType.AI_DEBATE, {"type": "ai_debate", "round_number": 1, "extra": 1}),
            (JobType.AI_JURY, {"type": "ai_debate", "round_number": 1}),
            (JobType.AI_JUDGE, {"type": "ai_judge"}),
        ],
    )
    async def test_rejects_invalid_payload(self, engine, room, job_type, payload):
        with pytest.raises(PayloadValidationError):
            await engine.queue.enqueue(job_type, room.id, payload)
        assert await engine.store.jobs.list_for_room(room.id) == []

    async def test_explicit_single_attempt_is_kept(self, engine, room):
        job = await engine.queue.enqueue(
            JobType.AI_DEBATE, room.id, AIDebatePayload(round_number=1), max_retries=1
        )
        assert job.max_retries == 1

        [claimed] = await engine.queue.claim_next(5)
        assert await engine.queue.fail(claimed, "timeout") == JobStatus.FAILED

    @pytest.mark.parametrize("max_retries", [0, -1])
    async def test_rejects_max_retries_below_one(self, engine, room, max_retries):
        with pytest.raises(PayloadValidationError):
            await engine.queue.enqueue(
                JobType.AI_DEBATE,
                room.id,
                AIDebatePayload(round_number=1),
                max_retries=max_retries,
            )
        assert await engine.store.jobs.list_for_room(room.id) == []


class TestClaim:
    async def test_concurrent_claims_never_share_a_job(self, engine, room):
        for n in (1, 2, 3):
            await enqueue_round(engine, room.id, n)

        batches = await asyncio.gather(
            engine.queue.claim_next(5), engine.queue.claim_next(5)
        )
        ids = [job.id for batch in batches for job in batch]
        assert len(ids) == 3
        assert len(set(ids)) == 3

    async def test_claim_marks_running(self, engine, room):
        await enqueue_round(engine, room.id)
        [job] = await engine.queue.claim_next(5)
        stored = await engine.queue.get(job.id)
        assert stored.status == JobStatus.RUNNING
        assert stored.started_at is not None

    async def test_future_jobs_are_not_due(self, engine, room):
        job = await enqueue_round(engine, room.id)
        await engine.store.jobs.compare_and_set(
            job.id, [JobStatus.QUEUED], {"scheduled_at": utcnow() + timedelta(minutes=5)}
        )
        assert await engine.queue.claim_next(5) == []


class TestFailure:
    async def test_retryable_failure_backs_off_exponentially(self, engine, room):
        job = await enqueue_round(engine, room.id)

        [claimed] = await engine.queue.claim_next(5)
        before = utcnow()
        assert await engine.queue.fail(claimed, "timeout") == JobStatus.QUEUED
        stored = await engine.queue.get(job.id)
        assert stored.retry_count == 1
        assert stored.error == "timeout"
        delay = (stored.scheduled_at - before).total_seconds()
        assert 59 <= delay <= 61

        await make_due(engine, job.id)
        [claimed] = await engine.queue.claim_next(5)
        before = utcnow()
        assert await engine.queue.fail(claimed, "timeout") == JobStatus.QUEUED
        stored = await engine.queue.get(job.id)
        assert stored.retry_count == 2
        delay = (stored.scheduled_at - before).total_seconds()
        assert 119 <= delay <= 121

        await make_due(engine, job.id)
        [claimed] = await engine.queue.claim_next(5)
        assert await engine.queue.fail(claimed, "timeout") == JobStatus.FAILED
        stored = await engine.queue.get(job.id)
        assert stored.status == JobStatus.FAILED
        assert stored.completed_at is not None

    async def test_non_retryable_failure_is_terminal(self, engine, room):
        await enqueue_round(engine, room.id)
        [claimed] = await engine.queue.claim_next(5)
        assert await engine.queue.fail(claimed, "bad", retryable=False) == JobStatus.FAILED

    async def test_stale_failure_is_ignored(self, engine, room):
        job = await enqueue_round(engine, room.id)
        [claimed] = await engine.queue.claim_next(5)
        await engine.queue.fail(claimed, "first")
        await make_due(engine, job.id)
        await engine.queue.claim_next(5)

        # The first attempt's snapshot still says retry_count=0.
        assert await engine.queue.fail(claimed, "late") is None
        stored = await engine.queue.get(job.id)
        assert stored.status == JobStatus.RUNNING
        assert stored.retry_count == 1

    async def test_recover_stale_running_job(self, engine, room, settings):
        job = await enqueue_round(engine, room.id)
        await engine.queue.claim_next(5)

        assert await engine.queue.recover_stale() == 0
        later = utcnow() + timedelta(seconds=settings.job_stale_after_seconds + 1)
        assert await engine.queue.recover_stale(now=later) == 1

        stored = await engine.queue.get(job.id)
        assert stored.status == JobStatus.QUEUED
        assert stored.retry_count == 1
        assert "abandoned" in stored.error


class TestCancelAndRetry:
    async def test_cancel_then_complete_loses(self, engine, room):
        job = await enqueue_round(engine, room.id)
        await engine.queue.claim_next(5)

        cancelled = await engine.queue.cancel(job.id)
        assert cancelled.status == JobStatus.CANCELLED
        assert await engine.queue.complete(job.id, {"ok": True}) is False
        assert (await engine.queue.get(job.id)).status == JobStatus.CANCELLED

    async def test_complete_then_cancel_is_rejected(self, engine, room):
        job = await enqueue_round(engine, room.id)
        await engine.queue.claim_next(5)
        assert await engine.queue.complete(job.id, {"ok": True})

        with pytest.raises(JobStateError):
            await engine.queue.cancel(job.id)
        stored = await engine.queue.get(job.id)
        assert stored.status == JobStatus.SUCCEEDED
        assert stored.progress == 100

    async def test_retry_failed_job(self, engine, room):
        job = await enqueue_round(engine, room.id)
        [claimed] = await engine.queue.claim_next(5)
        await engine.queue.fail(claimed, "bad", retryable=False)

        retried = await engine.queue.retry(job.id)
        assert retried.status == JobStatus.QUEUED
        assert retried.retry_count == 0
        assert retried.error is None

    async def test_retry_requires_failed(self, engine, room):
        job = await enqueue_round(engine, room.id)
        with pytest.raises(JobStateError):
            await engine.queue.retry(job.id)
