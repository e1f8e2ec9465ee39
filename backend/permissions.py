# permissions.py - Role to capability mapping for room participants
# - Fixed role table (admin, moderator, participant, guest)
# - Capability snapshots taken at role-assignment time
# - O(1) membership checks against the snapshot

from typing import Dict, FrozenSet, List, Optional, Union

from entities import Capability, Participant, Role, participant_key
from errors import PermissionDeniedError
from record_store import RecordStore, is_valid_key

PARTICIPANTS_COLLECTION = "rooms/participants"

# ============================================================
# ROLE TABLE
# ============================================================

ROLE_CAPABILITIES: Dict[Role, FrozenSet[Capability]] = {
    Role.ADMIN: frozenset({Capability.ALL}),
    Role.MODERATOR: frozenset({
        Capability.MANAGE_PARTICIPANTS,
        Capability.DELETE_MESSAGES,
        Capability.MUTE_USERS,
        Capability.KICK_USERS,
        Capability.MANAGE_ROOM_SETTINGS,
    }),
    Role.PARTICIPANT: frozenset({
        Capability.SEND_MESSAGES,
        Capability.VIEW_MESSAGES,
        Capability.JOIN_ROOM,
    }),
    Role.GUEST: frozenset({Capability.VIEW_MESSAGES}),
}

# Capabilities reported by the permission-check endpoint
CHECKED_CAPABILITIES = [
    Capability.MANAGE_ROOM,
    Capability.MANAGE_PARTICIPANTS,
    Capability.DELETE_MESSAGES,
    Capability.MUTE_USERS,
    Capability.KICK_USERS,
    Capability.SEND_MESSAGES,
    Capability.VIEW_MESSAGES,
]

ROLE_PRIORITY = {
    Role.ADMIN.value: 1,
    Role.MODERATOR.value: 2,
    Role.PARTICIPANT.value: 3,
    Role.GUEST.value: 4,
}
UNKNOWN_ROLE_PRIORITY = 5


def parse_role(role: Optional[Union[str, Role]]) -> Role:
    """Unknown or missing roles resolve to guest"""
    try:
        return Role(role)
    except ValueError:
        return Role.GUEST


def capabilities_for(role: Optional[Union[str, Role]]) -> FrozenSet[Capability]:
    return ROLE_CAPABILITIES[parse_role(role)]


def snapshot_for(role: Optional[Union[str, Role]]) -> List[str]:
    """Serialisable capability snapshot stored on the participant record"""
    return sorted(c.value for c in capabilities_for(role))


def role_priority(role: str) -> int:
    return ROLE_PRIORITY.get(role, UNKNOWN_ROLE_PRIORITY)


def snapshot_allows(snapshot: List[str], capability: Union[str, Capability]) -> bool:
    held = frozenset(snapshot)
    value = capability.value if isinstance(capability, Capability) else capability
    return value in held or Capability.ALL.value in held


class PermissionResolver:
    """Answers capability questions from the stored participant snapshot"""

    def __init__(self, store: RecordStore):
        self.store = store

    async def has_capability(self, room_id: str, user_id: str, capability: Union[str, Capability]) -> bool:
        key = participant_key(room_id, user_id)
        if not user_id or not is_valid_key(key):
            return False
        data = await self.store.get(PARTICIPANTS_COLLECTION, key)
        if not data:
            return False
        participant = Participant.from_dict(data)
        if not participant.is_active:
            return False
        return snapshot_allows(participant.capabilities, capability)

    async def require(self, room_id: str, user_id: str, capability: Union[str, Capability]) -> None:
        if not await self.has_capability(room_id, user_id, capability):
            value = capability.value if isinstance(capability, Capability) else capability
            raise PermissionDeniedError(
                f"Missing required capability: {value}",
                room_id=room_id,
                capability=value,
            )

    async def require_any(self, room_id: str, user_id: str, *capabilities: Capability) -> None:
        for capability in capabilities:
            if await self.has_capability(room_id, user_id, capability):
                return
        raise PermissionDeniedError(
            "Missing required capability: " + " or ".join(c.value for c in capabilities),
            room_id=room_id,
        )

    async def check_permissions(self, room_id: str, user_id: str) -> Dict[str, bool]:
        return {
            capability.value: await self.has_capability(room_id, user_id, capability)
            for capability in CHECKED_CAPABILITIES
        }
