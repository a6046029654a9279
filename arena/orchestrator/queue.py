"""Durable job queue.

Every status change is a compare-and-set on the job row. Losing a CAS is
normal under concurrent drains and is reported to the caller as ``False``
or ``None`` rather than as an error.
"""

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Any

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.exc import IntegrityError

from arena.config import Settings, get_settings
from arena.lib.database import JobRow
from arena.lib.exceptions import JobStateError, PayloadValidationError
from arena.lib.models import Job, JobStatus, JobType, job_payload_adapter
from arena.lib.repositories import Store
from arena.lib.utils import truncate, utcnow

logger = logging.getLogger(__name__)

CANCELLABLE = (JobStatus.QUEUED, JobStatus.RUNNING)


def validate_payload(job_type: JobType, payload: dict[str, Any] | BaseModel) -> BaseModel:
    """
    Validate a payload against the schema for ``job_type``.

    Raises:
        PayloadValidationError: If the payload is malformed or tagged with another type
    """
    raw = payload.model_dump(mode="json") if isinstance(payload, BaseModel) else payload
    try:
        parsed = job_payload_adapter.validate_python(raw)
    except PydanticValidationError as e:
        raise PayloadValidationError(
            f"Invalid {job_type.value} payload: {e.error_count()} error(s)",
            field="payload",
            value=raw,
        ) from e
    if parsed.type != job_type:
        raise PayloadValidationError(
            f"Payload tagged {parsed.type.value} cannot be enqueued as {job_type.value}",
            field="type",
            value=parsed.type.value,
        )
    return parsed


class JobQueue:
    """Enqueue, claim, complete, fail, cancel and retry jobs."""

    def __init__(self, store: Store, settings: Settings | None = None):
        self.store = store
        self.settings = settings or get_settings()
        self.wake_event = asyncio.Event()

    def backoff_delay(self, retry_count: int) -> timedelta:
        """Delay before attempt ``retry_count + 1`` is eligible."""
        return timedelta(
            seconds=self.settings.job_backoff_base_seconds * (2**retry_count)
        )

    async def enqueue(
        self,
        job_type: JobType,
        room_id: str,
        payload: dict[str, Any] | BaseModel,
        max_retries: int | None = None,
        dedupe_key: str | None = None,
    ) -> Job:
        """
        Validate and insert a queued job.

        With a ``dedupe_key``, an existing queued, running or succeeded job
        for the same room and key is returned instead of inserting a new one.
        """
        parsed = validate_payload(job_type, payload)
        if max_retries is None:
            max_retries = self.settings.job_max_retries
        if max_retries < 1:
            raise PayloadValidationError(
                "max_retries must allow at least one attempt",
                field="max_retries",
                value=max_retries,
            )
        await self.store.rooms.get(room_id)

        if dedupe_key is not None:
            existing = await self.store.jobs.find_live(room_id, dedupe_key)
            if existing is not None:
                logger.debug(
                    f"Reusing job {existing.id} for {dedupe_key} in room {room_id}"
                )
                return existing

        job = await self.store.jobs.insert(
            job_type=job_type,
            room_id=room_id,
            payload=parsed.model_dump(mode="json"),
            max_retries=max_retries,
            scheduled_at=utcnow(),
            dedupe_key=dedupe_key,
        )
        logger.info(f"Enqueued {job_type.value} job {job.id} for room {room_id}")
        self.wake_event.set()
        return job

    async def get(self, job_id: str) -> Job:
        return await self.store.jobs.get(job_id)

    async def claim_next(self, limit: int) -> list[Job]:
        """Claim up to ``limit`` due jobs; jobs claimed elsewhere are skipped."""
        now = utcnow()
        candidates = await self.store.jobs.select_due(now, limit)
        claimed: list[Job] = []
        for job in candidates:
            won = await self.store.jobs.compare_and_set(
                job.id,
                [JobStatus.QUEUED],
                {"status": JobStatus.RUNNING.value, "started_at": now},
            )
            if not won:
                logger.debug(f"Job {job.id} already claimed elsewhere")
                continue
            claimed.append(
                job.model_copy(update={"status": JobStatus.RUNNING, "started_at": now})
            )
        if claimed:
            logger.info(f"Claimed {len(claimed)} job(s)")
        return claimed

    async def complete(self, job_id: str, result: dict[str, Any]) -> bool:
        """Mark a running job succeeded. False means it was cancelled or reclaimed."""
        won = await self.store.jobs.compare_and_set(
            job_id,
            [JobStatus.RUNNING],
            {
                "status": JobStatus.SUCCEEDED.value,
                "completed_at": utcnow(),
                "result": result,
                "progress": 100,
                "error": None,
            },
        )
        if won:
            logger.info(f"Job {job_id} succeeded")
        else:
            logger.debug(f"Job {job_id} no longer running, result discarded")
        return won

    async def fail(
        self, job: Job, error: str, retryable: bool = True
    ) -> JobStatus | None:
        """
        Record a failed attempt of a running job.

        Retryable failures with attempts left go back to ``queued`` with an
        exponentially later ``scheduled_at``; everything else is terminal.

        Returns:
            The new status, or None if the job was no longer ours
        """
        now = utcnow()
        error = truncate(error, 2000)
        guard = (JobRow.retry_count == job.retry_count,)

        if retryable and job.retry_count + 1 < job.max_retries:
            won = await self.store.jobs.compare_and_set(
                job.id,
                [JobStatus.RUNNING],
                {
                    "status": JobStatus.QUEUED.value,
                    "retry_count": job.retry_count + 1,
                    "scheduled_at": now + self.backoff_delay(job.retry_count),
                    "started_at": None,
                    "error": error,
                },
                extra_conditions=guard,
            )
            if won:
                logger.warning(
                    f"Job {job.id} ({job.type.value}, room {job.room_id}) attempt "
                    f"{job.retry_count + 1}/{job.max_retries} failed, requeued: {error}"
                )
                return JobStatus.QUEUED
            return None

        won = await self.store.jobs.compare_and_set(
            job.id,
            [JobStatus.RUNNING],
            {"status": JobStatus.FAILED.value, "completed_at": now, "error": error},
            extra_conditions=guard,
        )
        if won:
            logger.error(
                f"Job {job.id} ({job.type.value}, room {job.room_id}) failed: {error}"
            )
            return JobStatus.FAILED
        return None

    async def cancel(self, job_id: str) -> Job:
        """
        Cancel a queued or running job.

        Raises:
            JobStateError: If the job is already terminal
        """
        job = await self.store.jobs.get(job_id)
        if job.status not in CANCELLABLE:
            raise JobStateError(
                f"Job in status {job.status.value} cannot be cancelled",
                job_id=job_id,
                actual_status=job.status.value,
            )
        won = await self.store.jobs.compare_and_set(
            job_id,
            CANCELLABLE,
            {"status": JobStatus.CANCELLED.value, "completed_at": utcnow()},
        )
        job = await self.store.jobs.get(job_id)
        if not won:
            raise JobStateError(
                f"Job finished as {job.status.value} before it could be cancelled",
                job_id=job_id,
                actual_status=job.status.value,
            )
        logger.info(f"Job {job_id} cancelled")
        return job

    async def retry(self, job_id: str) -> Job:
        """
        Re-queue a failed job from scratch.

        Raises:
            JobStateError: If the job is not failed, or another job for the
                same stage is already live
        """
        try:
            won = await self.store.jobs.compare_and_set(
                job_id,
                [JobStatus.FAILED],
                {
                    "status": JobStatus.QUEUED.value,
                    "retry_count": 0,
                    "error": None,
                    "progress": 0,
                    "scheduled_at": utcnow(),
                    "started_at": None,
                    "completed_at": None,
                },
            )
        except IntegrityError as e:
            raise JobStateError(
                "Another job for this stage is already queued, running or done",
                job_id=job_id,
                actual_status=JobStatus.FAILED.value,
            ) from e
        job = await self.store.jobs.get(job_id)
        if not won:
            raise JobStateError(
                f"Only failed jobs can be retried (status is {job.status.value})",
                job_id=job_id,
                actual_status=job.status.value,
            )
        logger.info(f"Job {job_id} manually re-queued")
        self.wake_event.set()
        return job

    async def set_progress(self, job_id: str, progress: int) -> bool:
        return await self.store.jobs.compare_and_set(
            job_id, [JobStatus.RUNNING], {"progress": max(0, min(100, progress))}
        )

    async def is_running(self, job_id: str) -> bool:
        job = await self.store.jobs.get(job_id)
        return job.status == JobStatus.RUNNING

    async def recover_stale(self, now: datetime | None = None) -> int:
        """Send running jobs abandoned by a crashed worker through ``fail``."""
        now = now or utcnow()
        cutoff = now - timedelta(seconds=self.settings.job_stale_after_seconds)
        recovered = 0
        for job in await self.store.jobs.select_running_before(cutoff):
            status = await self.fail(
                job, f"Worker abandoned job (running since {job.started_at})"
            )
            if status is not None:
                recovered += 1
        if recovered:
            logger.warning(f"Recovered {recovered} stale running job(s)")
        return recovered
