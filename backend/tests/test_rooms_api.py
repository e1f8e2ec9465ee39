# tests/test_rooms_api.py: Rooms router tests
import pytest
from httpx import AsyncClient

from tests.conftest import get_auth_headers

ROOMS = "/api/v1/rooms"


async def _create_room(client: AsyncClient, user_id: str = "u1", **body) -> str:
    body.setdefault("name", "Demo")
    resp = await client.post(ROOMS, json=body, headers=get_auth_headers(user_id, "Una"))
    assert resp.status_code == 201
    return resp.json()["room_id"]


@pytest.mark.asyncio
async def test_requires_authentication(client: AsyncClient):
    resp = await client.get(ROOMS)
    assert resp.status_code == 401
    data = resp.json()
    assert data["error"] == "ROOM-AUTH-001"
    assert "request_id" in data


@pytest.mark.asyncio
async def test_rejects_invalid_token(client: AsyncClient):
    resp = await client.get(ROOMS, headers={"Authorization": "Bearer not-a-jwt"})
    assert resp.status_code == 401
    assert resp.json()["detail"] == "Invalid token"


@pytest.mark.asyncio
async def test_create_and_get_room(client: AsyncClient):
    room_id = await _create_room(client, description="Final round")

    resp = await client.get(f"{ROOMS}/{room_id}", headers=get_auth_headers("u1"))
    assert resp.status_code == 200
    data = resp.json()
    assert data["name"] == "Demo"
    assert data["description"] == "Final round"
    assert [(p["user_id"], p["role"], p["display_name"]) for p in data["participants"]] == [("u1", "admin", "Una")]
    assert data["participants"][0]["capabilities"] == ["all"]
    assert data["settings"]["max_participants"] == 100
    assert resp.headers["X-Request-ID"]


@pytest.mark.asyncio
async def test_create_room_validation(client: AsyncClient):
    resp = await client.post(ROOMS, json={"name": ""}, headers=get_auth_headers("u1"))
    assert resp.status_code == 400
    assert resp.json()["error"] == "ROOM-REQ-001"


@pytest.mark.asyncio
async def test_create_room_conflict(client: AsyncClient):
    await _create_room(client, id="weekly-sync")
    resp = await client.post(ROOMS, json={"id": "weekly-sync", "name": "Dup"}, headers=get_auth_headers("u2"))
    assert resp.status_code == 409


@pytest.mark.asyncio
async def test_list_rooms(client: AsyncClient):
    a = await _create_room(client, name="A", type="private")
    b = await _create_room(client, "u2", name="B")

    resp = await client.get(ROOMS, headers=get_auth_headers("u3"))
    assert resp.status_code == 200
    data = resp.json()
    assert data["count"] == 2
    assert {r["id"] for r in data["rooms"]} == {a, b}

    resp = await client.get(ROOMS, params={"type": "private"}, headers=get_auth_headers("u3"))
    assert [r["id"] for r in resp.json()["rooms"]] == [a]


@pytest.mark.asyncio
async def test_get_missing_room(client: AsyncClient):
    resp = await client.get(f"{ROOMS}/nope", headers=get_auth_headers("u1"))
    assert resp.status_code == 404
    assert resp.json()["error"] == "ROOM-ROOM-001"


@pytest.mark.asyncio
async def test_update_room(client: AsyncClient):
    room_id = await _create_room(client)
    resp = await client.put(f"{ROOMS}/{room_id}", json={"name": "Renamed"}, headers=get_auth_headers("u1"))
    assert resp.status_code == 200
    assert resp.json()["name"] == "Renamed"


@pytest.mark.asyncio
async def test_update_room_forbidden(client: AsyncClient):
    room_id = await _create_room(client)
    await client.post(f"{ROOMS}/{room_id}/join", headers=get_auth_headers("u2"))

    resp = await client.put(f"{ROOMS}/{room_id}", json={"name": "Mine now"}, headers=get_auth_headers("u2"))
    assert resp.status_code == 403
    assert resp.json()["error"] == "ROOM-AUTH-002"

    room = (await client.get(f"{ROOMS}/{room_id}", headers=get_auth_headers("u1"))).json()
    assert room["name"] == "Demo"


@pytest.mark.asyncio
async def test_delete_room(client: AsyncClient):
    room_id = await _create_room(client)

    resp = await client.delete(f"{ROOMS}/{room_id}", headers=get_auth_headers("u2"))
    assert resp.status_code == 403

    resp = await client.delete(f"{ROOMS}/{room_id}", headers=get_auth_headers("u1"))
    assert resp.status_code == 200
    assert resp.json() == {"success": True}

    assert (await client.get(f"{ROOMS}/{room_id}", headers=get_auth_headers("u1"))).status_code == 404
    assert (await client.get(ROOMS, headers=get_auth_headers("u1"))).json()["count"] == 0


@pytest.mark.asyncio
async def test_join_and_leave(client: AsyncClient):
    room_id = await _create_room(client)
    headers = get_auth_headers("u2", "Bo")

    resp = await client.post(f"{ROOMS}/{room_id}/join", headers=headers)
    assert resp.status_code == 200
    assert resp.json()["role"] == "participant"
    assert resp.json()["display_name"] == "Bo"

    resp = await client.get(f"{ROOMS}/{room_id}/participants", headers=headers)
    assert [p["user_id"] for p in resp.json()["participants"]] == ["u1", "u2"]

    resp = await client.post(f"{ROOMS}/{room_id}/leave", headers=headers)
    assert resp.json() == {"success": True, "was_active": True}

    resp = await client.get(f"{ROOMS}/{room_id}/participants", headers=headers)
    assert resp.json()["count"] == 1


@pytest.mark.asyncio
async def test_join_restrictions(client: AsyncClient):
    room_id = await _create_room(client, settings={"max_participants": 2})

    resp = await client.post(f"{ROOMS}/{room_id}/join", json={"role": "admin"}, headers=get_auth_headers("u2"))
    assert resp.status_code == 400

    resp = await client.post(f"{ROOMS}/{room_id}/join", json={"role": "guest"}, headers=get_auth_headers("u2"))
    assert resp.status_code == 200

    resp = await client.post(f"{ROOMS}/{room_id}/join", headers=get_auth_headers("u3"))
    assert resp.status_code == 409
    assert resp.json()["context"]["reason"] == "RoomFull"

    resp = await client.post(f"{ROOMS}/missing/join", headers=get_auth_headers("u3"))
    assert resp.status_code == 404


@pytest.mark.asyncio
async def test_update_participant_role(client: AsyncClient):
    room_id = await _create_room(client)
    await client.post(f"{ROOMS}/{room_id}/join", headers=get_auth_headers("u2"))
    admin = get_auth_headers("u1")

    resp = await client.put(f"{ROOMS}/{room_id}/participants/u2", json={}, headers=admin)
    assert resp.status_code == 400

    resp = await client.put(f"{ROOMS}/{room_id}/participants/u2", json={"role": "moderator"}, headers=admin)
    assert resp.status_code == 200
    assert "kick_users" in resp.json()["capabilities"]

    resp = await client.get(f"{ROOMS}/{room_id}/permissions", headers=get_auth_headers("u2"))
    assert resp.json()["permissions"]["kick_users"] is True
    assert resp.json()["permissions"]["manage_room"] is False


@pytest.mark.asyncio
async def test_kick_and_refresh(client: AsyncClient):
    room_id = await _create_room(client)
    await client.post(f"{ROOMS}/{room_id}/join", headers=get_auth_headers("u2"))
    admin = get_auth_headers("u1")

    resp = await client.post(f"{ROOMS}/{room_id}/participants/u2/refresh-capabilities", headers=admin)
    assert resp.status_code == 200

    resp = await client.delete(f"{ROOMS}/{room_id}/participants/u1", headers=admin)
    assert resp.status_code == 403

    resp = await client.delete(f"{ROOMS}/{room_id}/participants/u2", headers=admin)
    assert resp.status_code == 200
    assert resp.json()["is_active"] is False


@pytest.mark.asyncio
async def test_heartbeat(client: AsyncClient):
    room_id = await _create_room(client)
    resp = await client.post(f"{ROOMS}/{room_id}/heartbeat", headers=get_auth_headers("u1"))
    assert resp.status_code == 200
    assert resp.json()["last_seen"]

    resp = await client.post(f"{ROOMS}/{room_id}/heartbeat", headers=get_auth_headers("u9"))
    assert resp.status_code == 404


@pytest.mark.asyncio
async def test_settings_merge(client: AsyncClient):
    room_id = await _create_room(client)
    admin = get_auth_headers("u1")

    before = (await client.get(f"{ROOMS}/{room_id}/settings", headers=admin)).json()
    resp = await client.put(f"{ROOMS}/{room_id}/settings", json={"require_approval": True}, headers=admin)
    assert resp.status_code == 200
    after = resp.json()
    assert after["require_approval"] is True
    assert after["max_participants"] == before["max_participants"]
    assert after["welcome_message"] == before["welcome_message"]

    resp = await client.put(f"{ROOMS}/{room_id}/settings", json={"max_participants": 0}, headers=admin)
    assert resp.status_code == 400

    resp = await client.put(f"{ROOMS}/{room_id}/settings", json={"is_public": False}, headers=get_auth_headers("u2"))
    assert resp.status_code == 403


@pytest.mark.asyncio
async def test_stats_reset(client: AsyncClient):
    room_id = await _create_room(client)
    resp = await client.post(f"{ROOMS}/{room_id}/stats/reset", headers=get_auth_headers("u1"))
    assert resp.status_code == 200
    assert resp.json()["total_messages"] == 0
    assert resp.json()["peak_concurrent_users"] == 1
