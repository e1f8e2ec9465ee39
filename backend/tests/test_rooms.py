# tests/test_rooms.py: Room registry tests
import pytest

from entities import RoomStatus
from errors import ConflictError, NotFoundError, PermissionDeniedError, ValidationError
from room_events import RoomEventType
from room_registry import ROOMS_COLLECTION


@pytest.mark.asyncio
async def test_creator_becomes_admin(core, room):
    """The creator is the only participant, as admin with {all}"""
    participants = await core.participants.list_participants(room)
    assert [(p.user_id, p.role) for p in participants] == [("u1", "admin")]
    assert participants[0].capabilities == ["all"]
    assert participants[0].display_name == "Una"


@pytest.mark.asyncio
async def test_create_room_generates_id(core):
    room_id = await core.rooms.create_room({"name": "  Panel  "}, "u1")
    assert room_id.startswith("room_")
    room = await core.rooms.get_room_record(room_id)
    assert room.name == "Panel"
    assert room.type.value == "public"
    assert room.stats.total_participants == 1


@pytest.mark.asyncio
@pytest.mark.parametrize("fields", [{}, {"name": ""}, {"name": "   "}, {"name": 42}])
async def test_create_room_requires_name(core, fields):
    with pytest.raises(ValidationError):
        await core.rooms.create_room(fields, "u1")


@pytest.mark.asyncio
async def test_create_room_rejects_bad_type_and_id(core):
    with pytest.raises(ValidationError):
        await core.rooms.create_room({"name": "X", "type": "secret"}, "u1")
    with pytest.raises(ValidationError):
        await core.rooms.create_room({"name": "X", "id": "../etc"}, "u1")


@pytest.mark.asyncio
async def test_invalid_initial_settings_leave_no_room(core):
    with pytest.raises(ValidationError):
        await core.rooms.create_room({"id": "panel", "name": "X", "settings": {"max_participants": 0}}, "u1")

    assert await core.store.get(ROOMS_COLLECTION, "panel") is None
    assert await core.rooms.list_rooms() == []
    assert await core.participants.active_members("panel") == []

    # The id is still free
    await core.rooms.create_room({"id": "panel", "name": "X", "settings": {"max_participants": 5}}, "u1")
    assert (await core.rooms.get_room("panel"))["settings"]["max_participants"] == 5


@pytest.mark.asyncio
async def test_duplicate_room_id_conflicts(core):
    await core.rooms.create_room({"id": "standup", "name": "Standup"}, "u1")
    with pytest.raises(ConflictError):
        await core.rooms.create_room({"id": "standup", "name": "Again"}, "u2")


@pytest.mark.asyncio
async def test_deleted_room_id_stays_reserved(core):
    await core.rooms.create_room({"id": "standup", "name": "Standup"}, "u1")
    await core.rooms.delete_room("standup", "u1")
    with pytest.raises(ConflictError):
        await core.rooms.create_room({"id": "standup", "name": "Again"}, "u1")


@pytest.mark.asyncio
async def test_get_room_includes_participants_and_settings(core, room):
    data = await core.rooms.get_room(room)
    assert data["id"] == room
    assert data["is_active"] is True
    assert [p["user_id"] for p in data["participants"]] == ["u1"]
    assert data["settings"]["max_participants"] == 100
    assert data["stats"]["active_participants"] == 1


@pytest.mark.asyncio
async def test_get_missing_room(core):
    with pytest.raises(NotFoundError):
        await core.rooms.get_room("nope")


@pytest.mark.asyncio
async def test_soft_delete_hides_room(core, room):
    await core.participants.add_participant(room, "u2", "Bo")
    assert await core.rooms.delete_room(room, "u1") is True

    assert room not in [r.id for r in await core.rooms.list_rooms()]
    with pytest.raises(NotFoundError):
        await core.rooms.get_room(room)

    # Record survives for audit, with explicit status
    stored = await core.store.get(ROOMS_COLLECTION, room)
    assert stored["status"] == RoomStatus.DELETED.value
    assert stored["deleted_by"] == "u1"
    assert stored["deleted_at"] is not None

    member = await core.participants.get(room, "u2")
    assert member.is_active is False


@pytest.mark.asyncio
async def test_delete_requires_creator_or_admin(core, room):
    await core.participants.add_participant(room, "u2", "Bo")
    with pytest.raises(PermissionDeniedError):
        await core.rooms.delete_room(room, "u2")
    assert (await core.rooms.get_room_record(room)).is_active


@pytest.mark.asyncio
async def test_update_room_requires_manage_room(core, room):
    """A plain participant cannot update the room"""
    await core.participants.add_participant(room, "u2", "Bo")
    with pytest.raises(PermissionDeniedError):
        await core.rooms.update_room(room, {"name": "Hijacked"}, "u2")
    assert (await core.rooms.get_room_record(room)).name == "Demo"


@pytest.mark.asyncio
async def test_update_room_ignores_unknown_fields(core, room):
    updated = await core.rooms.update_room(
        room,
        {"name": "Renamed", "type": "private", "created_by": "mallory", "stats": {}},
        "u1",
    )
    assert updated.name == "Renamed"
    assert updated.type.value == "private"
    assert updated.created_by == "u1"


@pytest.mark.asyncio
async def test_list_rooms_filters(core):
    a = await core.rooms.create_room({"name": "A", "type": "private", "content_id": "c1"}, "u1")
    b = await core.rooms.create_room({"name": "B", "content_id": "c2"}, "u2")

    assert {r.id for r in await core.rooms.list_rooms()} == {a, b}
    assert [r.id for r in await core.rooms.list_rooms({"type": "private"})] == [a]
    assert [r.id for r in await core.rooms.list_rooms({"created_by": "u2"})] == [b]
    assert [r.id for r in await core.rooms.list_rooms({"content_id": "c1"})] == [a]
    assert [r.id for r in await core.rooms.list_rooms({"type": None, "content_id": "c2"})] == [b]


@pytest.mark.asyncio
async def test_stats_track_membership(core, room):
    await core.participants.add_participant(room, "u2", "Bo")
    await core.participants.add_participant(room, "u3", "Cy")
    await core.participants.remove_participant(room, "u3")

    stats = (await core.rooms.get_room_record(room)).stats
    assert stats.total_participants == 2
    assert stats.peak_concurrent_users == 3
    assert stats.last_activity is not None


@pytest.mark.asyncio
async def test_record_messages_and_reset_stats(core, room):
    await core.participants.add_participant(room, "u2", "Bo")
    await core.participants.remove_participant(room, "u2")
    await core.rooms.record_messages(room, 4)

    with pytest.raises(ValidationError):
        await core.rooms.record_messages(room, -1)

    stats = (await core.rooms.get_room_record(room)).stats
    assert stats.total_messages == 4
    assert stats.peak_concurrent_users == 2

    with pytest.raises(PermissionDeniedError):
        await core.rooms.reset_stats(room, "u2")

    reset = await core.rooms.reset_stats(room, "u1")
    assert reset.stats.total_messages == 0
    assert reset.stats.peak_concurrent_users == 1


@pytest.mark.asyncio
async def test_events_are_audited_and_published(core, hub, room):
    received = []
    hub.subscribe(received.append)

    await core.rooms.update_room(room, {"description": "Final round"}, "u1")

    assert [e.type for e in received] == [RoomEventType.ROOM_UPDATED]
    history = await core.events.history(room)
    types = [e["type"] for e in history]
    assert types[0] == RoomEventType.PARTICIPANT_JOINED.value
    assert RoomEventType.ROOM_CREATED.value in types
    assert types[-1] == RoomEventType.ROOM_UPDATED.value


@pytest.mark.asyncio
async def test_failing_subscriber_does_not_break_operation(core, hub, room):
    async def broken(event):
        raise RuntimeError("delivery failed")

    hub.subscribe(broken)
    updated = await core.rooms.update_room(room, {"name": "Still works"}, "u1")
    assert updated.name == "Still works"
    assert hub.recent(room)[-1].type is RoomEventType.ROOM_UPDATED
