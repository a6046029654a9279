"""
End-to-end debate through the HTTP API with a scripted generative client.

Covers the full lifecycle: lobby, motion, arguments, three AI rounds with
rebuttals between them, the jury, the verdict and the status stream.
"""

import json

from arena.lib.models import GenerationKind, RoomStatus, Side
from arena.lib.streaming import EventType, RoomWatcher, to_sse

from conftest import CREATOR, PARTICIPANT

DRAIN = {"X-Drain-Secret": "drain-secret"}


def as_user(user_id: str) -> dict[str, str]:
    return {"X-User-Id": user_id}


async def status_of(client, room_id: str) -> str:
    return (await client.get(f"/api/rooms/{room_id}")).json()["room"]["status"]


async def test_full_debate(client, generative):
    generative.juror_votes = {6: Side.B, 7: Side.B}

    # Lobby
    r = await client.post(
        "/api/rooms",
        json={"title": "Four-day work week", "description": "Friday off for everyone"},
        headers=as_user(CREATOR),
    )
    room = r.json()
    room_id = room["id"]
    await client.post("/api/rooms/join", json={"code": room["code"]}, headers=as_user(PARTICIPANT))

    # Motion
    await client.post(
        f"/api/rooms/{room_id}/motion",
        json={"title": "Companies should adopt a four-day week"},
        headers=as_user(PARTICIPANT),
    )
    r = await client.post(f"/api/rooms/{room_id}/motion/agree", headers=as_user(CREATOR))
    assert r.json()["status"] == "arguments_submission"

    # Opening arguments
    for user, title in ((CREATOR, "Productivity"), (PARTICIPANT, "Coverage")):
        r = await client.post(
            f"/api/rooms/{room_id}/arguments",
            json={"title": title, "content": f"{title} is what matters most here."},
            headers=as_user(user),
        )
        assert r.status_code == 201
    assert await status_of(client, room_id) == "debate_round_1"

    # Three rounds with rebuttals in between
    for round_number in (1, 2, 3):
        r = await client.post("/api/jobs/drain", headers=DRAIN)
        assert r.json()["succeeded"] == 1
        if round_number < 3:
            assert await status_of(client, room_id) == f"waiting_rebuttal_{round_number}"
            for user in (CREATOR, PARTICIPANT):
                r = await client.post(
                    f"/api/rooms/{room_id}/rebuttals",
                    json={"content": f"Rebuttal {round_number} from {user}."},
                    headers=as_user(user),
                )
                assert r.status_code == 201
                assert r.json()["round_number"] == round_number
            assert await status_of(client, room_id) == f"debate_round_{round_number + 1}"

    assert await status_of(client, room_id) == "ai_processing"

    # Jury, then judge
    await client.post("/api/jobs/drain", headers=DRAIN)
    assert await status_of(client, room_id) == "ai_processing"
    await client.post("/api/jobs/drain", headers=DRAIN)

    detail = (await client.get(f"/api/rooms/{room_id}")).json()
    assert detail["room"]["status"] == "completed"
    assert [r["round_number"] for r in detail["rounds"]] == [1, 2, 3]
    assert all(len(r["turns"]) == 2 for r in detail["rounds"])
    assert len(detail["rebuttals"]) == 4
    assert len(detail["jury_votes"]) == 7
    assert detail["jury_tally"]["majority_side"] == "A"
    assert detail["jury_tally"]["consensus_level"] == "medium"
    assert detail["jury_tally"]["average_confidence"] == 8.0
    assert detail["judge_decision"]["winner"] == "A"
    assert detail["failed_jobs"] == []

    assert len(generative.calls_of(GenerationKind.ADVOCATE)) == 6
    assert len(generative.calls_of(GenerationKind.JUROR)) == 7
    [judge_context] = generative.calls_of(GenerationKind.JUDGE)
    assert judge_context.tally.votes_b == 2

    stats = (await client.get(f"/api/rooms/{room_id}/jobs/stats")).json()
    assert stats["succeeded"] == 5
    assert stats["failed"] == 0

    # Finished rooms no longer accept work
    r = await client.post(f"/api/rooms/{room_id}/cancel", headers=as_user(CREATOR))
    assert r.status_code == 409


async def test_engine_level_run(engine, rooms):
    room = await rooms.debating()
    final = await rooms.run_to_completion(room.id)
    assert final.status == RoomStatus.COMPLETED
    assert await engine.store.debate.get_decision(room.id) is not None


async def test_status_stream(engine, rooms):
    room = await rooms.debating()
    watcher = RoomWatcher(engine.store, room.id)

    first = await watcher.poll()
    assert [e.event_type for e in first] == [EventType.ROOM_STATUS, EventType.JOB_STATUS]
    assert first[0].data["status"] == "debate_round_1"
    assert await watcher.poll() == []

    await engine.dispatcher.drain()
    changed = await watcher.poll()
    assert {e.event_type for e in changed} == {EventType.ROOM_STATUS, EventType.JOB_STATUS}
    assert [e.sequence for e in first + changed] == list(range(1, 5))

    await rooms.run_to_completion(room.id)
    last = await watcher.poll()
    assert last[-1].event_type == EventType.ROOM_CLOSED
    assert watcher.closed

    frame = to_sse(last[-1])
    assert frame["event"] == "room_closed"
    assert json.loads(frame["data"])["data"]["status"] == "completed"
