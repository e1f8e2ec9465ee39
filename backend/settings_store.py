# settings_store.py - Per-room configuration merged over a default template
import logging
from types import MappingProxyType
from typing import Any, Dict, Optional

from entities import Capability
from errors import ValidationError
from models import utcnow
from permissions import PermissionResolver
from record_store import RecordStore, RoomLocks
from room_events import RoomEventLog, RoomEventType

logger = logging.getLogger("interview-rooms.settings")

SETTINGS_COLLECTION = "rooms/settings"

DEFAULT_ROOM_SETTINGS = MappingProxyType({
    "max_participants": 100,
    "allow_guest_messages": True,
    "require_approval": False,
    "enable_typing_indicators": True,
    "enable_file_sharing": False,
    "message_retention_days": 30,
    "profanity_filter": True,
    "rate_limit_messages": 10,  # messages per minute
    "auto_moderation": False,
    "welcome_message": "",
    "room_password": None,
    "is_public": True,
})

METADATA_KEYS = ("created_at", "updated_at", "updated_by")


def _validate_value(key: str, value: Any) -> None:
    default = DEFAULT_ROOM_SETTINGS[key]
    if key == "max_participants":
        if isinstance(value, bool) or not isinstance(value, int) or value < 1:
            raise ValidationError("max_participants must be a positive integer", key=key)
    elif key == "room_password":
        if value is not None and not isinstance(value, str):
            raise ValidationError("room_password must be a string or null", key=key)
    elif isinstance(default, bool):
        if not isinstance(value, bool):
            raise ValidationError(f"{key} must be a boolean", key=key)
    elif isinstance(default, int):
        if isinstance(value, bool) or not isinstance(value, int) or value < 0:
            raise ValidationError(f"{key} must be a non-negative integer", key=key)
    elif isinstance(default, str) and not isinstance(value, str):
        raise ValidationError(f"{key} must be a string", key=key)


def _known_overrides(patch: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """Keep template keys only; anything else is ignored"""
    overrides = {}
    for key, value in (patch or {}).items():
        if key in DEFAULT_ROOM_SETTINGS:
            _validate_value(key, value)
            overrides[key] = value
    return overrides


class SettingsStore:
    """Stores sparse overrides; reads always merge them over DEFAULT_ROOM_SETTINGS"""

    def __init__(self, store: RecordStore, permissions: PermissionResolver, locks: RoomLocks, events: RoomEventLog):
        self.store = store
        self.permissions = permissions
        self.locks = locks
        self.events = events

    def validate(self, overrides: Optional[Dict[str, Any]]) -> Dict[str, Any]:
        """Check overrides without storing anything"""
        return _known_overrides(overrides)

    async def initialize(self, room_id: str, overrides: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        document = _known_overrides(overrides)
        document["created_at"] = utcnow().isoformat()
        await self.store.put(SETTINGS_COLLECTION, room_id, document)
        return await self.get_settings(room_id)

    async def get_settings(self, room_id: str) -> Dict[str, Any]:
        merged = dict(DEFAULT_ROOM_SETTINGS)
        stored = await self.store.get(SETTINGS_COLLECTION, room_id)
        if stored:
            merged.update({k: v for k, v in stored.items() if k in DEFAULT_ROOM_SETTINGS})
            for key in METADATA_KEYS:
                if stored.get(key) is not None:
                    merged[key] = stored[key]
        return merged

    async def update_settings(self, room_id: str, patch: Dict[str, Any], actor_id: str) -> Dict[str, Any]:
        await self.permissions.require(room_id, actor_id, Capability.MANAGE_ROOM)
        overrides = _known_overrides(patch)

        async with self.locks.hold(room_id):
            document = await self.store.get(SETTINGS_COLLECTION, room_id) or {}
            document.update(overrides)
            document["updated_at"] = utcnow().isoformat()
            document["updated_by"] = actor_id
            await self.store.put(SETTINGS_COLLECTION, room_id, document)

        await self.events.emit(
            RoomEventType.SETTINGS_UPDATED, room_id, actor_id,
            changed=sorted(overrides.keys()),
        )
        logger.info(f"Settings updated: room={room_id} keys={sorted(overrides.keys())} by={actor_id}")
        return await self.get_settings(room_id)
