# tests/test_settings.py: Room settings tests
import pytest

from errors import PermissionDeniedError, ValidationError
from settings_store import DEFAULT_ROOM_SETTINGS, SETTINGS_COLLECTION


def test_default_template_is_read_only():
    with pytest.raises(TypeError):
        DEFAULT_ROOM_SETTINGS["max_participants"] = 5


@pytest.mark.asyncio
async def test_new_room_gets_defaults(core, room):
    settings = await core.settings.get_settings(room)
    for key, value in DEFAULT_ROOM_SETTINGS.items():
        assert settings[key] == value
    assert settings["created_at"] is not None


@pytest.mark.asyncio
async def test_initial_overrides_are_sparse(core):
    room_id = await core.rooms.create_room(
        {"name": "Small", "settings": {"max_participants": 5, "bogus": True}}, "u1"
    )
    stored = await core.store.get(SETTINGS_COLLECTION, room_id)
    assert stored["max_participants"] == 5
    assert "bogus" not in stored
    assert "profanity_filter" not in stored
    assert (await core.settings.get_settings(room_id))["profanity_filter"] is True


@pytest.mark.asyncio
async def test_single_key_patch_merges(core, room):
    before = await core.settings.get_settings(room)
    after = await core.settings.update_settings(room, {"enable_file_sharing": True}, "u1")

    assert after["enable_file_sharing"] is True
    for key in DEFAULT_ROOM_SETTINGS:
        if key != "enable_file_sharing":
            assert after[key] == before[key]
    assert after["updated_by"] == "u1"
    assert after["created_at"] == before["created_at"]


@pytest.mark.asyncio
async def test_successive_patches_accumulate(core, room):
    await core.settings.update_settings(room, {"max_participants": 8}, "u1")
    await core.settings.update_settings(room, {"welcome_message": "Hi"}, "u1")
    settings = await core.settings.get_settings(room)
    assert settings["max_participants"] == 8
    assert settings["welcome_message"] == "Hi"


@pytest.mark.asyncio
async def test_unknown_keys_ignored(core, room):
    settings = await core.settings.update_settings(room, {"theme": "dark"}, "u1")
    assert "theme" not in settings


@pytest.mark.asyncio
@pytest.mark.parametrize("value", [0, -3, "ten", True, 2.5])
async def test_max_participants_must_be_positive_int(core, room, value):
    with pytest.raises(ValidationError):
        await core.settings.update_settings(room, {"max_participants": value}, "u1")
    assert (await core.settings.get_settings(room))["max_participants"] == 100


@pytest.mark.asyncio
async def test_update_settings_requires_manage_room(core, room):
    await core.participants.add_participant(room, "m1", "Mod", "moderator")
    with pytest.raises(PermissionDeniedError):
        await core.settings.update_settings(room, {"require_approval": True}, "m1")
    with pytest.raises(PermissionDeniedError):
        await core.settings.update_settings(room, {"require_approval": True}, "stranger")
    assert (await core.settings.get_settings(room))["require_approval"] is False


@pytest.mark.asyncio
async def test_returned_settings_are_copies(core, room):
    settings = await core.settings.get_settings(room)
    settings["max_participants"] = 1
    assert (await core.settings.get_settings(room))["max_participants"] == 100
