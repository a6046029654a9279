"""HTTP surface: status codes, auth headers and job control."""

import pytest

from arena.lib.exceptions import LLMAuthenticationError

from conftest import CREATOR, OUTSIDER, PARTICIPANT


def as_user(user_id: str) -> dict[str, str]:
    return {"X-User-Id": user_id}


@pytest.fixture
async def room_id(client) -> str:
    r = await client.post(
        "/api/rooms", json={"title": "Is pineapple pizza?"}, headers=as_user(CREATOR)
    )
    assert r.status_code == 201
    return r.json()["id"]


async def test_health(client):
    r = await client.get("/health")
    assert r.status_code == 200
    assert r.json()["status"] == "ok"


class TestRooms:
    async def test_identity_header_required(self, client):
        r = await client.post("/api/rooms", json={"title": "No header here"})
        assert r.status_code == 401

    async def test_request_validation(self, client):
        r = await client.post("/api/rooms", json={"title": "x"}, headers=as_user(CREATOR))
        assert r.status_code == 422

    async def test_create_and_join(self, client, room_id):
        r = await client.get(f"/api/rooms/{room_id}")
        room = r.json()["room"]
        assert room["status"] == "waiting_participant"
        assert room["creator_id"] == CREATOR

        r = await client.post(
            "/api/rooms/join", json={"code": room["code"]}, headers=as_user(PARTICIPANT)
        )
        assert r.status_code == 200
        assert r.json()["status"] == "agenda_negotiation"
        assert r.json()["participant_id"] == PARTICIPANT

        r = await client.post(
            "/api/rooms/join", json={"code": room["code"]}, headers=as_user(OUTSIDER)
        )
        assert r.status_code == 409

    async def test_unknown_room(self, client):
        r = await client.get("/api/rooms/does-not-exist")
        assert r.status_code == 404
        assert r.json()["room_id"] == "does-not-exist"

    async def test_outsider_cannot_propose(self, client, engine, room_id):
        room = await engine.store.rooms.get(room_id)
        await engine.rooms.join_room(PARTICIPANT, room.code)
        r = await client.post(
            f"/api/rooms/{room_id}/motion",
            json={"title": "Pineapple belongs on pizza"},
            headers=as_user(OUTSIDER),
        )
        assert r.status_code == 403

    async def test_proposer_cannot_agree(self, client, engine, room_id):
        room = await engine.store.rooms.get(room_id)
        await engine.rooms.join_room(PARTICIPANT, room.code)
        r = await client.post(
            f"/api/rooms/{room_id}/motion",
            json={"title": "Pineapple belongs on pizza"},
            headers=as_user(CREATOR),
        )
        assert r.status_code == 200

        r = await client.post(f"/api/rooms/{room_id}/motion/agree", headers=as_user(CREATOR))
        assert r.status_code == 409
        assert r.json()["code"] == "GUARD_FAILED"

        r = await client.post(
            f"/api/rooms/{room_id}/motion/agree", headers=as_user(PARTICIPANT)
        )
        assert r.status_code == 200
        assert r.json()["status"] == "arguments_submission"

    async def test_duplicate_argument(self, client, rooms):
        room = await rooms.arguing()
        body = {"title": "Taste", "content": "Sweet and savoury works."}
        r = await client.post(
            f"/api/rooms/{room.id}/arguments", json=body, headers=as_user(CREATOR)
        )
        assert r.status_code == 201
        assert r.json()["side"] == "A"

        r = await client.post(
            f"/api/rooms/{room.id}/arguments", json=body, headers=as_user(CREATOR)
        )
        assert r.status_code == 409

    async def test_rebuttal_outside_window(self, client, rooms):
        room = await rooms.debating()
        r = await client.post(
            f"/api/rooms/{room.id}/rebuttals",
            json={"content": "Too early to rebut anything."},
            headers=as_user(CREATOR),
        )
        assert r.status_code == 409

    async def test_cancel_room_cancels_jobs(self, client, rooms):
        room = await rooms.debating()
        r = await client.post(f"/api/rooms/{room.id}/cancel", headers=as_user(PARTICIPANT))
        assert r.status_code == 200
        assert r.json()["status"] == "cancelled"

        r = await client.get(f"/api/rooms/{room.id}/jobs")
        assert [job["status"] for job in r.json()] == ["cancelled"]

        r = await client.post(f"/api/rooms/{room.id}/cancel", headers=as_user(CREATOR))
        assert r.status_code == 409


class TestJobs:
    async def test_list_and_stats(self, client, rooms):
        room = await rooms.debating()
        r = await client.get(f"/api/rooms/{room.id}/jobs", params={"active": "true"})
        [job] = r.json()
        assert job["type"] == "ai_debate"
        assert job["payload"]["round_number"] == 1

        r = await client.get(f"/api/rooms/{room.id}/jobs/stats")
        assert r.json()["queued"] == 1

        r = await client.get(f"/api/jobs/{job['id']}")
        assert r.status_code == 200

    async def test_unknown_job(self, client):
        r = await client.get("/api/jobs/nope")
        assert r.status_code == 404

    async def test_cancel_job_permissions(self, client, rooms):
        room = await rooms.debating()
        [job] = (await client.get(f"/api/rooms/{room.id}/jobs")).json()

        r = await client.post(f"/api/jobs/{job['id']}/cancel", headers=as_user(OUTSIDER))
        assert r.status_code == 403

        r = await client.post(f"/api/jobs/{job['id']}/cancel", headers=as_user(CREATOR))
        assert r.status_code == 200
        assert r.json()["status"] == "cancelled"

        r = await client.post(f"/api/jobs/{job['id']}/cancel", headers=as_user(CREATOR))
        assert r.status_code == 409

    async def test_retry_requires_failed_job(self, client, rooms):
        room = await rooms.debating()
        [job] = (await client.get(f"/api/rooms/{room.id}/jobs")).json()
        r = await client.post(f"/api/jobs/{job['id']}/retry", headers=as_user(CREATOR))
        assert r.status_code == 409
        assert r.json()["status"] == "queued"

    async def test_retry_failed_job(self, client, rooms, generative):
        generative.failures[1] = LLMAuthenticationError("bad key")
        room = await rooms.debating()
        await client.post("/api/jobs/drain", headers={"X-Drain-Secret": "drain-secret"})

        detail = (await client.get(f"/api/rooms/{room.id}")).json()
        [failed] = detail["failed_jobs"]

        r = await client.post(f"/api/jobs/{failed['id']}/retry", headers=as_user(PARTICIPANT))
        assert r.status_code == 200
        assert r.json()["status"] == "queued"

        r = await client.post("/api/jobs/drain", headers={"X-Drain-Secret": "drain-secret"})
        assert r.json()["succeeded"] == 1


class TestDrainTrigger:
    async def test_requires_secret(self, client):
        r = await client.post("/api/jobs/drain")
        assert r.status_code == 403
        r = await client.post("/api/jobs/drain", headers={"X-Drain-Secret": "wrong"})
        assert r.status_code == 403

    async def test_disabled_without_configured_secret(self, client, engine):
        engine.settings.drain_secret = ""
        r = await client.post("/api/jobs/drain", headers={"X-Drain-Secret": "anything"})
        assert r.status_code == 404

    async def test_idempotent_when_idle(self, client):
        headers = {"X-Drain-Secret": "drain-secret"}
        for _ in range(2):
            r = await client.post("/api/jobs/drain", headers=headers)
            assert r.status_code == 200
            assert r.json()["processed"] == 0


async def test_events_for_unknown_room(client):
    r = await client.get("/api/rooms/missing/events")
    assert r.status_code == 404
