"""Job inspection, control and the drain trigger."""

import logging
import secrets

from fastapi import APIRouter, Depends, Header, HTTPException, Query

from arena.api.deps import get_engine, get_user_id
from arena.lib.models import DrainReport, Job, JobStats, JobStatus, JobType
from arena.orchestrator.engine import ArenaEngine

router = APIRouter()
logger = logging.getLogger(__name__)

ACTIVE_STATUSES = [JobStatus.QUEUED, JobStatus.RUNNING]


@router.get("/rooms/{room_id}/jobs", response_model=list[Job])
async def list_room_jobs(
    room_id: str,
    type: JobType | None = Query(default=None),
    status: list[JobStatus] | None = Query(default=None),
    active: bool = Query(default=False, description="Only queued or running jobs"),
    limit: int = Query(default=20, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
    engine: ArenaEngine = Depends(get_engine),
) -> list[Job]:
    await engine.store.rooms.get(room_id)
    return await engine.store.jobs.list_for_room(
        room_id,
        job_type=type,
        statuses=ACTIVE_STATUSES if active else status,
        limit=limit,
        offset=offset,
    )


@router.get("/rooms/{room_id}/jobs/stats", response_model=JobStats)
async def room_job_stats(
    room_id: str,
    engine: ArenaEngine = Depends(get_engine),
) -> JobStats:
    await engine.store.rooms.get(room_id)
    return await engine.store.jobs.stats(room_id)


@router.post("/jobs/drain", response_model=DrainReport)
async def drain_jobs(
    x_drain_secret: str | None = Header(default=None),
    engine: ArenaEngine = Depends(get_engine),
) -> DrainReport:
    """
    Run one drain cycle.

    Authenticated by the shared ``X-Drain-Secret`` header. Idempotent: with
    nothing due it reports zero processed jobs.
    """
    expected = engine.settings.drain_secret
    if not expected:
        raise HTTPException(status_code=404, detail="Drain trigger is disabled")
    if not x_drain_secret or not secrets.compare_digest(x_drain_secret, expected):
        raise HTTPException(status_code=403, detail="Invalid drain secret")
    return await engine.dispatcher.drain()


@router.get("/jobs/{job_id}", response_model=Job)
async def get_job(
    job_id: str,
    engine: ArenaEngine = Depends(get_engine),
) -> Job:
    return await engine.queue.get(job_id)


@router.post("/jobs/{job_id}/cancel", response_model=Job)
async def cancel_job(
    job_id: str,
    user_id: str = Depends(get_user_id),
    engine: ArenaEngine = Depends(get_engine),
) -> Job:
    """Cancel a queued or running job of one of the caller's rooms."""
    return await engine.rooms.cancel_job(job_id, user_id)


@router.post("/jobs/{job_id}/retry", response_model=Job)
async def retry_job(
    job_id: str,
    user_id: str = Depends(get_user_id),
    engine: ArenaEngine = Depends(get_engine),
) -> Job:
    """Re-queue a failed job of one of the caller's rooms."""
    return await engine.rooms.retry_job(job_id, user_id)
