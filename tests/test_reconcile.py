"""Reconciliation sweep for rooms stalled between two writes."""

from arena.lib.exceptions import LLMAuthenticationError
from arena.lib.models import JobStatus, JobType, RoomStatus
from arena.orchestrator.reconcile import Reconciler


async def broken_transition(*args, **kwargs):
    raise RuntimeError("database went away")


async def test_lost_round_transition_is_repaired(engine, rooms, monkeypatch):
    room = await rooms.debating()
    monkeypatch.setattr(engine.state_machine, "transition", broken_transition)

    report = await engine.dispatcher.drain()
    assert report.succeeded == 1
    assert (await engine.store.rooms.get(room.id)).status == RoomStatus.DEBATE_ROUND_1

    monkeypatch.undo()
    assert await engine.reconciler.sweep() == 1
    assert (await engine.store.rooms.get(room.id)).status == RoomStatus.WAITING_REBUTTAL_1
    assert await engine.reconciler.sweep() == 0


async def test_lost_round_enqueue_is_repaired(engine, rooms):
    room = await rooms.debating()
    await engine.dispatcher.drain()
    await engine.store.rooms.compare_and_set_status(
        room.id, RoomStatus.WAITING_REBUTTAL_1, RoomStatus.DEBATE_ROUND_2
    )

    assert await engine.reconciler.sweep() == 1
    [job] = await engine.store.jobs.list_for_room(
        room.id, job_type=JobType.AI_DEBATE, statuses=[JobStatus.QUEUED]
    )
    assert job.payload["round_number"] == 2
    assert await engine.reconciler.sweep() == 0


async def test_lost_judge_enqueue_is_repaired(engine, rooms, monkeypatch):
    room = await rooms.processing()
    monkeypatch.setattr(engine.state_machine, "transition", broken_transition)
    await engine.dispatcher.drain()
    monkeypatch.undo()

    assert await engine.store.jobs.list_for_room(room.id, job_type=JobType.AI_JUDGE) == []
    assert await engine.reconciler.sweep() == 1

    [judge] = await engine.store.jobs.list_for_room(room.id, job_type=JobType.AI_JUDGE)
    assert judge.status == JobStatus.QUEUED
    assert len(judge.payload["jury_votes"]) == 7


async def test_lost_completion_is_repaired(engine, rooms, monkeypatch):
    room = await rooms.processing()
    await engine.dispatcher.drain()
    monkeypatch.setattr(engine.state_machine, "transition", broken_transition)
    await engine.dispatcher.drain()
    monkeypatch.undo()

    assert (await engine.store.rooms.get(room.id)).status == RoomStatus.AI_PROCESSING
    assert await engine.reconciler.sweep() == 1
    assert (await engine.store.rooms.get(room.id)).status == RoomStatus.COMPLETED


async def test_failed_stage_is_left_for_manual_retry(engine, rooms, generative):
    generative.failures[1] = LLMAuthenticationError("bad key")
    room = await rooms.debating()
    await engine.dispatcher.drain()

    assert await engine.reconciler.sweep() == 0
    jobs = await engine.store.jobs.list_for_room(room.id)
    assert [job.status for job in jobs] == [JobStatus.FAILED]


async def test_recent_rooms_are_within_grace(engine, rooms, settings, monkeypatch):
    room = await rooms.debating()
    monkeypatch.setattr(engine.state_machine, "transition", broken_transition)
    await engine.dispatcher.drain()
    monkeypatch.undo()

    patient = Reconciler(
        engine.store, engine.queue, engine.state_machine, settings, grace_seconds=3600
    )
    assert await patient.sweep() == 0
    assert (await engine.store.rooms.get(room.id)).status == RoomStatus.DEBATE_ROUND_1


async def test_drain_runs_the_sweep(engine, rooms, monkeypatch):
    room = await rooms.debating()
    monkeypatch.setattr(engine.state_machine, "transition", broken_transition)
    await engine.dispatcher.drain()
    monkeypatch.undo()

    report = await engine.dispatcher.drain()
    assert report.repaired == 1
    assert (await engine.store.rooms.get(room.id)).status == RoomStatus.WAITING_REBUTTAL_1
