from __future__ import annotations

from collections.abc import Generator

import fakeredis
import pytest
from fastapi.testclient import TestClient

from planning_poker.api.deps import get_redis
from planning_poker.clock import ManualClock
from planning_poker.main import app
from planning_poker.websocket_hub import hub


@pytest.fixture()
def client(client_and_redis: tuple[TestClient, fakeredis.FakeRedis]) -> TestClient:
    return client_and_redis[0]


@pytest.fixture()
def broadcasts(monkeypatch: pytest.MonkeyPatch) -> list[tuple[str, dict]]:
    sent: list[tuple[str, dict]] = []

    async def _record(room_code: str, payload: dict) -> int:
        sent.append((room_code, payload))
        return 0

    monkeypatch.setattr(hub, "broadcast", _record)
    return sent


def _create(client: TestClient, name: str = "Sprint Demo") -> str:
    resp = client.post("/rooms", json={"roomName": name})
    assert resp.status_code == 201
    return resp.json()["roomCode"]


def _cmd(client: TestClient, type_: str, code: str, client_id: str = "c1", **extra: object):  # type: ignore[no-untyped-def]
    return client.post("/commands", json={"type": type_, "roomCode": code, "clientId": client_id, **extra})


def test_create_and_poll_room(client: TestClient) -> None:
    code = _create(client)

    resp = client.get(f"/rooms/{code.lower()}")
    assert resp.status_code == 200
    snap = resp.json()["snapshot"]
    assert snap["meta"]["roomName"] == "Sprint Demo"
    assert snap["meta"]["revealed"] is False
    assert snap["meta"]["storyTitle"] == ""
    assert len(snap["meta"]["deck"]) == 13
    assert snap["version"] == 0
    assert snap["members"] == {}
    assert snap["votes"] == {}


@pytest.mark.parametrize("name", ["", "x" * 101])
def test_create_room_rejects_bad_names(client: TestClient, name: str) -> None:
    resp = client.post("/rooms", json={"roomName": name})
    assert resp.status_code == 422


def test_poll_missing_room_404(client: TestClient) -> None:
    resp = client.get("/rooms/ZZZZ9999")
    assert resp.status_code == 404
    assert resp.json()["detail"] == "Room not found"


def test_full_round_over_commands(client: TestClient, broadcasts: list[tuple[str, dict]]) -> None:
    code = _create(client)

    assert _cmd(client, "JOIN_ROOM", code.lower(), "c1", name="Alice").json() == {"ok": True}
    assert _cmd(client, "JOIN_ROOM", code, "c2", name="Bob").status_code == 200
    assert _cmd(client, "CAST_VOTE", code, "c1", vote="5").status_code == 200
    assert _cmd(client, "UPDATE_STORY", code, "c2", storyTitle="Checkout flow").status_code == 200
    assert _cmd(client, "REVEAL", code, "c2").status_code == 200

    snap = client.get(f"/rooms/{code}").json()["snapshot"]
    assert set(snap["members"]) == {"c1", "c2"}
    assert snap["members"]["c1"]["name"] == "Alice"
    assert snap["votes"] == {"c1": "5"}
    assert snap["meta"]["revealed"] is True
    assert snap["meta"]["storyTitle"] == "Checkout flow"
    assert snap["version"] == 2

    assert _cmd(client, "RESET", code, "c1").status_code == 200
    snap = client.get(f"/rooms/{code}").json()["snapshot"]
    assert snap["votes"] == {}
    assert snap["meta"]["revealed"] is False
    assert snap["version"] == 3

    assert _cmd(client, "LEAVE_ROOM", code, "c2").status_code == 200
    snap = client.get(f"/rooms/{code}").json()["snapshot"]
    assert list(snap["members"]) == ["c1"]

    # One full-snapshot broadcast per room-affecting command, keyed by the normalized code.
    assert len(broadcasts) == 7
    assert all(room == code for room, _ in broadcasts)
    assert all(p["type"] == "ROOM_SNAPSHOT" and p["roomCode"] == code for _, p in broadcasts)
    assert broadcasts[-1][1]["snapshot"]["members"].keys() == {"c1"}


def test_heartbeat_acks_without_broadcast(
    client_and_redis: tuple[TestClient, fakeredis.FakeRedis],
    clock: ManualClock,
    broadcasts: list[tuple[str, dict]],
) -> None:
    client, _ = client_and_redis
    code = _create(client)
    _cmd(client, "JOIN_ROOM", code, "c1", name="Alice")
    broadcasts.clear()

    clock.advance(minutes=4)
    assert _cmd(client, "HEARTBEAT", code, "c1").json() == {"ok": True}
    clock.advance(minutes=4)

    assert broadcasts == []
    snap = client.get(f"/rooms/{code}").json()["snapshot"]
    assert "c1" in snap["members"]

    # Heartbeats for unknown rooms or members are still acknowledged.
    assert _cmd(client, "HEARTBEAT", "NOPE0000", "c9").status_code == 200


def test_commands_for_missing_room_404(client: TestClient, broadcasts: list[tuple[str, dict]]) -> None:
    for type_, extra in [
        ("JOIN_ROOM", {"name": "Alice"}),
        ("CAST_VOTE", {"vote": "3"}),
        ("REVEAL", {}),
        ("RESET", {}),
        ("UPDATE_STORY", {"storyTitle": "x"}),
        ("LEAVE_ROOM", {}),
    ]:
        resp = _cmd(client, type_, "NOPE0000", **extra)
        assert resp.status_code == 404, type_
        assert resp.json()["detail"] == "Room not found"

    assert broadcasts == []


@pytest.mark.parametrize(
    "body",
    [
        {"type": "SHUFFLE", "roomCode": "ABCD1234", "clientId": "c1"},
        {"roomCode": "ABCD1234", "clientId": "c1"},
        {"type": "CAST_VOTE", "roomCode": "ABCD1234", "clientId": "c1", "vote": "7"},
        {"type": "JOIN_ROOM", "roomCode": "ABCD1234", "clientId": "c1"},
        {"type": "REVEAL", "clientId": "c1"},
    ],
)
def test_invalid_commands_rejected_before_store(
    client_and_redis: tuple[TestClient, fakeredis.FakeRedis], body: dict
) -> None:
    client, r = client_and_redis
    resp = client.post("/commands", json=body)
    assert resp.status_code == 422
    assert r.keys("*") == []


def test_empty_vote_is_allowed(client: TestClient) -> None:
    code = _create(client)
    _cmd(client, "JOIN_ROOM", code, "c1", name="Alice")

    assert _cmd(client, "CAST_VOTE", code, "c1", vote="☕").status_code == 200
    assert _cmd(client, "CAST_VOTE", code, "c1", vote="").status_code == 200
    assert client.get(f"/rooms/{code}").json()["snapshot"]["votes"] == {"c1": ""}


def test_stale_expected_version_is_conflict(client: TestClient, broadcasts: list[tuple[str, dict]]) -> None:
    code = _create(client)

    assert _cmd(client, "REVEAL", code, expectedVersion=0).status_code == 200
    resp = _cmd(client, "RESET", code, expectedVersion=0)
    assert resp.status_code == 409

    snap = client.get(f"/rooms/{code}").json()["snapshot"]
    assert snap["version"] == 1
    assert snap["meta"]["revealed"] is True
    assert len(broadcasts) == 1


def test_inactive_member_disappears_from_poll(
    client_and_redis: tuple[TestClient, fakeredis.FakeRedis], clock: ManualClock
) -> None:
    client, r = client_and_redis
    code = _create(client)
    _cmd(client, "JOIN_ROOM", code, "c1", name="Alice")
    _cmd(client, "CAST_VOTE", code, "c1", vote="8")

    clock.advance(minutes=5)
    snap = client.get(f"/rooms/{code}").json()["snapshot"]
    assert snap["members"] == {}
    assert snap["votes"] == {}
    assert r.hlen(f"room:{code}:members") == 0


def test_store_failure_is_generic_500() -> None:
    server = fakeredis.FakeServer()
    server.connected = False
    broken = fakeredis.FakeRedis(server=server, decode_responses=True)

    def _override() -> Generator[fakeredis.FakeRedis, None, None]:
        yield broken

    app.dependency_overrides[get_redis] = _override
    try:
        with TestClient(app) as c:
            resp = c.get("/rooms/ABCD1234")
            assert resp.status_code == 500
            assert resp.json() == {"detail": "Internal server error"}

            resp2 = c.post("/commands", json={"type": "REVEAL", "roomCode": "ABCD1234", "clientId": "c1"})
            assert resp2.status_code == 500
    finally:
        app.dependency_overrides.clear()


def test_healthcheck_and_info(client: TestClient) -> None:
    assert client.get("/healthcheck").json() == {"status": "ok"}
    assert client.get("/info").json()["name"] == "planning-poker"
