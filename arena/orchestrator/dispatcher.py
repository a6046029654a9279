"""Job dispatcher and worker loop.

A drain cycle recovers stale jobs, runs the reconciliation sweep, claims a
batch of due jobs and runs them concurrently. Each job is isolated: whatever
its handler does, the cycle carries on with the rest of the batch.
"""

import asyncio
import logging
from typing import Literal

from arena.config import Settings, get_settings
from arena.lib.exceptions import ArenaError, PayloadValidationError, StateMachineError
from arena.lib.models import DrainReport, Job, JobStatus, JobType
from arena.lib.repositories import Store
from arena.orchestrator.pipeline import HandlerResult, JobHandler
from arena.orchestrator.queue import JobQueue, validate_payload
from arena.orchestrator.reconcile import Reconciler
from arena.orchestrator.state_machine import RoomStateMachine

logger = logging.getLogger(__name__)

Outcome = Literal["succeeded", "retried", "failed", "discarded"]


class JobDispatcher:
    """Routes claimed jobs to handlers and applies their results."""

    def __init__(
        self,
        store: Store,
        queue: JobQueue,
        state_machine: RoomStateMachine,
        handlers: dict[JobType, JobHandler],
        reconciler: Reconciler | None = None,
        settings: Settings | None = None,
    ):
        self.store = store
        self.queue = queue
        self.state_machine = state_machine
        self.handlers = handlers
        self.reconciler = reconciler
        self.settings = settings or get_settings()
        self._drain_lock = asyncio.Lock()

    async def drain(self, limit: int | None = None) -> DrainReport:
        """
        Run one drain cycle.

        Safe to call concurrently from any number of processes; in-process
        callers are serialised so a manual trigger and the worker loop do
        not interleave their sweeps.
        """
        async with self._drain_lock:
            report = DrainReport()
            report.recovered = await self.queue.recover_stale()
            if self.reconciler is not None:
                report.repaired = await self.reconciler.sweep()

            jobs = await self.queue.claim_next(limit or self.settings.drain_batch_size)
            report.claimed = len(jobs)
            if not jobs:
                return report

            semaphore = asyncio.Semaphore(self.settings.drain_concurrency)

            async def run(job: Job) -> Outcome:
                async with semaphore:
                    return await self.process(job)

            for outcome in await asyncio.gather(*(run(job) for job in jobs)):
                setattr(report, outcome, getattr(report, outcome) + 1)

            logger.info(
                f"Drain: claimed={report.claimed} succeeded={report.succeeded} "
                f"retried={report.retried} failed={report.failed} "
                f"discarded={report.discarded}"
            )
            return report

    async def process(self, job: Job) -> Outcome:
        """Run one claimed job to a complete/fail decision."""
        logger.info(
            f"Running {job.type.value} job {job.id} for room {job.room_id} "
            f"(attempt {job.retry_count + 1}/{job.max_retries})"
        )

        handler: JobHandler | None = self.handlers.get(job.type)
        if handler is None:
            return await self._fail(job, HandlerResult.failure(
                f"No handler for job type {job.type.value}", retryable=False
            ))

        try:
            payload = validate_payload(job.type, job.payload)
        except PayloadValidationError as e:
            return await self._fail(job, HandlerResult.failure(e.message, retryable=False))

        try:
            result = await handler.handle(job, payload)
        except ArenaError as e:
            logger.exception(f"Job {job.id} raised {type(e).__name__}")
            result = HandlerResult.failure(e.message, retryable=True)
        except Exception as e:
            logger.exception(f"Job {job.id} crashed")
            result = HandlerResult.failure(f"{type(e).__name__}: {e}", retryable=True)

        if result.cancelled:
            logger.info(f"Job {job.id} was cancelled mid-flight, output dropped")
            return "discarded"
        if not result.ok:
            return await self._fail(job, result)

        if not await self.queue.complete(job.id, result.result):
            return "discarded"
        try:
            await self.apply(job, result)
        except Exception:
            # Job stays succeeded; the reconciliation sweep finishes the step.
            logger.exception(f"Job {job.id}: applying result to room {job.room_id} failed")
        return "succeeded"

    async def _fail(self, job: Job, result: HandlerResult) -> Outcome:
        status = await self.queue.fail(
            job, result.error or "unknown error", retryable=result.retryable
        )
        if status == JobStatus.QUEUED:
            return "retried"
        if status == JobStatus.FAILED:
            return "failed"
        return "discarded"

    async def apply(self, job: Job, result: HandlerResult) -> None:
        """Advance the room and enqueue follow-on jobs for a completed job."""
        if result.room_event is not None:
            try:
                await self.state_machine.transition(job.room_id, result.room_event)
            except StateMachineError as e:
                # Left for the reconciliation sweep.
                logger.warning(
                    f"Job {job.id}: could not apply {result.room_event.value} "
                    f"to room {job.room_id}: {e.message}"
                )
                return

        for follow_up in result.follow_ups:
            await self.queue.enqueue(
                follow_up.job_type,
                job.room_id,
                follow_up.payload,
                dedupe_key=follow_up.dedupe_key,
            )


class Worker:
    """Long-lived drain loop woken by the poll interval or by an enqueue."""

    def __init__(self, dispatcher: JobDispatcher, settings: Settings | None = None):
        self.dispatcher = dispatcher
        self.settings = settings or get_settings()
        self._task: asyncio.Task | None = None
        self._stopping = asyncio.Event()

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def run(self) -> None:
        wake = self.dispatcher.queue.wake_event
        logger.info(
            f"Worker started (poll every {self.settings.worker_poll_interval_seconds}s)"
        )
        while not self._stopping.is_set():
            wake.clear()
            try:
                report = await self.dispatcher.drain()
            except Exception:
                logger.exception("Drain cycle failed")
                report = None

            # A full batch may mean more jobs are due right away.
            if report is not None and report.claimed >= self.settings.drain_batch_size:
                continue

            waiters = [
                asyncio.ensure_future(wake.wait()),
                asyncio.ensure_future(self._stopping.wait()),
            ]
            try:
                await asyncio.wait(
                    waiters,
                    timeout=self.settings.worker_poll_interval_seconds,
                    return_when=asyncio.FIRST_COMPLETED,
                )
            finally:
                for waiter in waiters:
                    waiter.cancel()
        logger.info("Worker stopped")

    def start(self) -> None:
        if not self.running:
            self._stopping.clear()
            self._task = asyncio.create_task(self.run())

    async def stop(self) -> None:
        self._stopping.set()
        if self._task is not None:
            await self._task
            self._task = None
