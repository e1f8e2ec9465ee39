# tests/test_participants.py: Participant directory tests
import pytest

from entities import Participant, Role, participant_key
from errors import NotFoundError, PermissionDeniedError, RoomFullError, ValidationError
from permissions import PARTICIPANTS_COLLECTION


@pytest.mark.asyncio
async def test_add_participant_defaults(core, room):
    p = await core.participants.add_participant(room, "u2", "Bo")
    assert p.role == "participant"
    assert p.capabilities == ["join_room", "send_messages", "view_messages"]
    assert p.is_active is True
    assert p.id == f"{room}_u2"


@pytest.mark.asyncio
async def test_readding_active_participant_is_a_no_op(core, room):
    first = await core.participants.add_participant(room, "u2", "Bo")
    again = await core.participants.add_participant(room, "u2", "Someone else", Role.MODERATOR)
    assert again.display_name == "Bo"
    assert again.role == "participant"
    assert again.joined_at == first.joined_at
    assert (await core.rooms.get_room_record(room)).stats.total_participants == 2


@pytest.mark.asyncio
async def test_remove_then_rejoin_reactivates_row(core, room):
    await core.participants.add_participant(room, "u2", "Bo")
    assert await core.participants.remove_participant(room, "u2") is True
    assert await core.participants.remove_participant(room, "u2") is False
    assert await core.participants.remove_participant(room, "ghost") is False

    left = await core.participants.get(room, "u2")
    assert left.is_active is False
    assert left.left_at is not None

    back = await core.participants.add_participant(room, "u2", "Bo", "guest")
    assert back.is_active is True
    assert back.left_at is None
    assert back.role == "guest"
    assert [p.user_id for p in await core.participants.list_participants(room)] == ["u1", "u2"]


@pytest.mark.asyncio
async def test_participants_ordered_by_role_then_join_time(core, room):
    await core.participants.add_participant(room, "g1", "Guest", "guest")
    await core.participants.add_participant(room, "p1", "First", "participant")
    await core.participants.add_participant(room, "m1", "Mod", "moderator")
    await core.participants.add_participant(room, "p2", "Second", "participant")

    ordered = [p.user_id for p in await core.participants.list_participants(room)]
    assert ordered == ["u1", "m1", "p1", "p2", "g1"]


@pytest.mark.asyncio
async def test_unknown_stored_role_sorts_last(core, room):
    await core.participants.add_participant(room, "g1", "Guest", "guest")
    legacy = Participant(room_id=room, user_id="legacy", display_name="Old", role="observer", capabilities=[])
    await core.store.put(PARTICIPANTS_COLLECTION, legacy.id, legacy.to_dict())

    ordered = [p.user_id for p in await core.participants.list_participants(room)]
    assert ordered == ["u1", "g1", "legacy"]


@pytest.mark.asyncio
@pytest.mark.parametrize("role", ["", None, "owner", "ADMIN"])
async def test_invalid_roles_rejected(core, room, role):
    with pytest.raises(ValidationError):
        await core.participants.add_participant(room, "u2", "Bo", role)
    assert await core.participants.get(room, "u2") is None


@pytest.mark.asyncio
async def test_user_id_cannot_escape_collection(core, room):
    with pytest.raises(ValidationError):
        await core.participants.add_participant(room, "../u2", "Bo")
    assert await core.permissions.has_capability(room, "a/b", "view_messages") is False


@pytest.mark.asyncio
async def test_list_participants_of_missing_room(core):
    with pytest.raises(NotFoundError):
        await core.participants.list_participants("missing")


@pytest.mark.asyncio
async def test_add_to_deleted_room(core, room):
    await core.rooms.delete_room(room, "u1")
    with pytest.raises(NotFoundError):
        await core.participants.add_participant(room, "u2", "Bo")


@pytest.mark.asyncio
async def test_capacity_checked_before_write(core, room):
    await core.participants.add_participant(room, "u2", "Bo", max_participants=2)
    with pytest.raises(RoomFullError) as exc:
        await core.participants.add_participant(room, "u3", "Cy", max_participants=2)

    assert exc.value.reason == "RoomFull"
    assert exc.value.status_code == 409
    assert await core.participants.get(room, "u3") is None
    assert await core.participants.count_active(room) == 2


@pytest.mark.asyncio
async def test_update_role_requires_manage_participants(core, room):
    await core.participants.add_participant(room, "u2", "Bo")
    await core.participants.add_participant(room, "u3", "Cy")
    with pytest.raises(PermissionDeniedError):
        await core.participants.update_participant_role(room, "u3", "moderator", "u2")
    assert (await core.participants.get(room, "u3")).role == "participant"


@pytest.mark.asyncio
async def test_moderator_cannot_grant_admin(core, room):
    await core.participants.add_participant(room, "m1", "Mod", "moderator")
    await core.participants.add_participant(room, "u2", "Bo")

    with pytest.raises(PermissionDeniedError):
        await core.participants.update_participant_role(room, "m1", "admin", "m1")
    with pytest.raises(PermissionDeniedError):
        await core.participants.update_participant_role(room, "u2", "admin", "m1")
    assert (await core.participants.get(room, "m1")).role == "moderator"

    promoted = await core.participants.update_participant_role(room, "u2", "moderator", "m1")
    assert promoted.role == "moderator"
    promoted = await core.participants.update_participant_role(room, "u2", "admin", "u1")
    assert promoted.capabilities == ["all"]


@pytest.mark.asyncio
async def test_demoted_moderator_loses_kick(core, room):
    await core.participants.add_participant(room, "m1", "Mod", "moderator")
    assert await core.permissions.has_capability(room, "m1", "kick_users") is True

    demoted = await core.participants.update_participant_role(room, "m1", "guest", "u1")
    assert demoted.capabilities == ["view_messages"]
    assert await core.permissions.has_capability(room, "m1", "kick_users") is False


@pytest.mark.asyncio
async def test_update_role_of_inactive_participant(core, room):
    await core.participants.add_participant(room, "u2", "Bo")
    await core.participants.remove_participant(room, "u2")
    with pytest.raises(NotFoundError):
        await core.participants.update_participant_role(room, "u2", "moderator", "u1")


@pytest.mark.asyncio
async def test_update_role_requires_role(core, room):
    await core.participants.add_participant(room, "u2", "Bo")
    with pytest.raises(ValidationError):
        await core.participants.update_participant_role(room, "u2", None, "u1")


@pytest.mark.asyncio
async def test_refresh_capabilities_resnapshots(core, room):
    await core.participants.add_participant(room, "u2", "Bo")
    key = participant_key(room, "u2")
    doc = await core.store.get(PARTICIPANTS_COLLECTION, key)
    doc["capabilities"] = []
    await core.store.put(PARTICIPANTS_COLLECTION, key, doc)
    assert await core.permissions.has_capability(room, "u2", "send_messages") is False

    refreshed = await core.participants.refresh_capabilities(room, "u2", "u1")
    assert "send_messages" in refreshed.capabilities
    assert await core.permissions.has_capability(room, "u2", "send_messages") is True


@pytest.mark.asyncio
async def test_kick_participant(core, room):
    await core.participants.add_participant(room, "m1", "Mod", "moderator")
    await core.participants.add_participant(room, "u2", "Bo")

    kicked = await core.participants.kick_participant(room, "u2", "m1")
    assert kicked.is_active is False
    assert [p.user_id for p in await core.participants.list_participants(room)] == ["u1", "m1"]


@pytest.mark.asyncio
async def test_kick_rules(core, room):
    await core.participants.add_participant(room, "m1", "Mod", "moderator")
    await core.participants.add_participant(room, "u2", "Bo")

    with pytest.raises(PermissionDeniedError):
        await core.participants.kick_participant(room, "m1", "u2")
    with pytest.raises(PermissionDeniedError):
        await core.participants.kick_participant(room, "u1", "m1")
    with pytest.raises(NotFoundError):
        await core.participants.kick_participant(room, "ghost", "m1")


@pytest.mark.asyncio
async def test_touch_refreshes_last_seen(core, room):
    before = await core.participants.get(room, "u1")
    touched = await core.participants.touch(room, "u1")
    assert touched.last_seen >= before.last_seen

    with pytest.raises(NotFoundError):
        await core.participants.touch(room, "ghost")
