"""
Interview Rooms - Participant directory

Owns (room, user) membership records: who is in a room, with which role and
which capability snapshot. Leaving is a soft state change; rows are kept for
history and re-adding a user reactivates the same row.
"""

import logging
from typing import List, Optional, Union

from entities import Capability, Participant, Role, participant_key
from errors import NotFoundError, PermissionDeniedError, ValidationError
from models import utcnow
from permissions import PARTICIPANTS_COLLECTION, PermissionResolver, role_priority, snapshot_for
from record_store import RecordStore, RoomLocks, is_valid_key
from room_events import RoomEventLog, RoomEventType

logger = logging.getLogger("interview-rooms.participants")


def validate_role(role: Union[str, Role, None]) -> Role:
    if not role:
        raise ValidationError("Role is required")
    try:
        return Role(role)
    except ValueError:
        raise ValidationError(f"Invalid role: {role}", role=str(role))


class ParticipantDirectory:

    def __init__(self, store: RecordStore, rooms, permissions: PermissionResolver, locks: RoomLocks, events: RoomEventLog):
        self.store = store
        self.rooms = rooms
        self.permissions = permissions
        self.locks = locks
        self.events = events

    async def get(self, room_id: str, user_id: str) -> Optional[Participant]:
        key = participant_key(room_id, user_id)
        if not is_valid_key(key):
            return None
        data = await self.store.get(PARTICIPANTS_COLLECTION, key)
        return Participant.from_dict(data) if data else None

    async def _require_active_member(self, room_id: str, user_id: str) -> Participant:
        participant = await self.get(room_id, user_id)
        if not participant or not participant.is_active:
            raise NotFoundError("Participant not found", code="ROOM-PART-001", room_id=room_id, user_id=user_id)
        return participant

    async def _save(self, participant: Participant) -> None:
        await self.store.put(PARTICIPANTS_COLLECTION, participant.id, participant.to_dict())

    async def active_members(self, room_id: str) -> List[Participant]:
        """Active rows ordered by role priority, then by join time"""
        members = [
            Participant.from_dict(d)
            for d in await self.store.list(PARTICIPANTS_COLLECTION)
            if d.get("room_id") == room_id and d.get("is_active")
        ]
        return sorted(members, key=lambda p: (role_priority(p.role), p.joined_at))

    async def count_active(self, room_id: str) -> int:
        return len(await self.active_members(room_id))

    # ------------------------------------------------------------
    # Membership
    # ------------------------------------------------------------

    async def add_participant(
        self,
        room_id: str,
        user_id: str,
        display_name: str,
        role: Union[str, Role] = Role.PARTICIPANT,
        max_participants: Optional[int] = None,
    ) -> Participant:
        """Insert or reactivate a membership row.

        With ``max_participants`` the capacity check and the slot claim happen
        atomically for the room; a full room raises RoomFullError and nothing
        is written.
        """
        role = validate_role(role)
        if not user_id or not is_valid_key(participant_key(room_id, user_id)):
            raise ValidationError("user_id is required and may not contain path separators")

        async with self.locks.hold(room_id):
            await self.rooms.get_room_record(room_id)

            existing = await self.get(room_id, user_id)
            if existing and existing.is_active:
                return existing

            await self.rooms.claim_slot(room_id, max_participants)

            now = utcnow()
            participant = existing or Participant(
                room_id=room_id,
                user_id=user_id,
                display_name=display_name,
                role=role.value,
                capabilities=snapshot_for(role),
            )
            participant.display_name = display_name or participant.display_name
            participant.role = role.value
            participant.capabilities = snapshot_for(role)
            participant.joined_at = now
            participant.last_seen = now
            participant.left_at = None
            participant.is_active = True
            participant.updated_at = now
            await self._save(participant)

        await self.events.emit(
            RoomEventType.PARTICIPANT_JOINED, room_id, user_id,
            display_name=participant.display_name, role=participant.role,
            rejoined=existing is not None,
        )
        logger.info(f"Participant joined: room={room_id} user={user_id} role={participant.role}")
        return participant

    async def remove_participant(self, room_id: str, user_id: str) -> bool:
        """Soft-remove; returns False when there was no active row (still a success)"""
        async with self.locks.hold(room_id):
            participant = await self.get(room_id, user_id)
            if not participant or not participant.is_active:
                return False

            now = utcnow()
            participant.is_active = False
            participant.left_at = now
            participant.updated_at = now
            await self._save(participant)
            await self.rooms.release_slot(room_id)

        await self.events.emit(
            RoomEventType.PARTICIPANT_LEFT, room_id, user_id,
            display_name=participant.display_name,
        )
        logger.info(f"Participant left: room={room_id} user={user_id}")
        return True

    async def list_participants(self, room_id: str) -> List[Participant]:
        await self.rooms.get_room_record(room_id)
        return await self.active_members(room_id)

    # ------------------------------------------------------------
    # Roles & capabilities
    # ------------------------------------------------------------

    async def update_participant_role(
        self, room_id: str, user_id: str, new_role: Union[str, Role], actor_id: str
    ) -> Participant:
        role = validate_role(new_role)
        await self.permissions.require(room_id, actor_id, Capability.MANAGE_PARTICIPANTS)
        if role is Role.ADMIN:
            # Only admins hand out "all"
            await self.permissions.require(room_id, actor_id, Capability.ALL)

        async with self.locks.hold(room_id):
            participant = await self._require_active_member(room_id, user_id)
            old_role = participant.role
            participant.role = role.value
            participant.capabilities = snapshot_for(role)
            participant.updated_at = utcnow()
            await self._save(participant)

        await self.events.emit(
            RoomEventType.PARTICIPANT_ROLE_CHANGED, room_id, actor_id,
            user_id=user_id, old_role=old_role, new_role=role.value,
        )
        logger.info(f"Role changed: room={room_id} user={user_id} {old_role} -> {role.value} by={actor_id}")
        return participant

    async def refresh_capabilities(self, room_id: str, user_id: str, actor_id: str) -> Participant:
        """Re-snapshot capabilities from the current role table"""
        await self.permissions.require(room_id, actor_id, Capability.MANAGE_PARTICIPANTS)

        async with self.locks.hold(room_id):
            participant = await self._require_active_member(room_id, user_id)
            participant.capabilities = snapshot_for(participant.role)
            participant.updated_at = utcnow()
            await self._save(participant)
        return participant

    async def kick_participant(self, room_id: str, user_id: str, actor_id: str) -> Participant:
        await self.permissions.require(room_id, actor_id, Capability.KICK_USERS)
        room = await self.rooms.get_room_record(room_id)
        if user_id == room.created_by:
            raise PermissionDeniedError("The room creator cannot be removed", room_id=room_id)

        await self._require_active_member(room_id, user_id)
        await self.remove_participant(room_id, user_id)
        await self.events.emit(RoomEventType.PARTICIPANT_KICKED, room_id, actor_id, user_id=user_id)
        logger.warning(f"Participant kicked: room={room_id} user={user_id} by={actor_id}")
        return await self.get(room_id, user_id)

    async def touch(self, room_id: str, user_id: str) -> Participant:
        """Presence heartbeat: refresh last_seen"""
        async with self.locks.hold(room_id):
            participant = await self._require_active_member(room_id, user_id)
            participant.last_seen = utcnow()
            await self._save(participant)
        return participant
