"""
Interview Rooms - Room registry

Owns the Room lifecycle: create, read, update, soft-delete and list. The
room record also carries the live participant counter; membership changes
claim and release slots through compare-and-swap writes on that record, so
capacity holds even when several workers share one store.
"""

import os
import re
import secrets
import logging
from typing import Any, Callable, Dict, List, Optional

from entities import Capability, Role, Room, RoomType, WaitingParticipant, WaitingStatus
from errors import (
    ConflictError, NotFoundError, PermissionDeniedError, RoomFullError,
    StaleRecordError, ValidationError,
)
from models import utcnow
from permissions import PermissionResolver
from record_store import RecordStore, RoomLocks
from room_events import RoomEventLog, RoomEventType
from settings_store import SettingsStore

logger = logging.getLogger("interview-rooms.rooms")

ROOMS_COLLECTION = "rooms"
WAITING_COLLECTION = "rooms/waiting"
ROOM_ID_PATTERN = re.compile(r"^[A-Za-z0-9_-]{1,64}$")
ROOM_CAS_RETRIES = int(os.getenv("ROOM_CAS_RETRIES", "5"))

# Only these fields may change through update_room; anything else is ignored
MUTABLE_ROOM_FIELDS = ("name", "description", "type")


def _clean_name(name: Any) -> str:
    if not isinstance(name, str) or not name.strip():
        raise ValidationError("Room name is required")
    return name.strip()


def _parse_type(value: Any) -> RoomType:
    try:
        return RoomType(value or RoomType.PUBLIC.value)
    except ValueError:
        raise ValidationError(f"Invalid room type: {value}", type=str(value))


class RoomRegistry:

    def __init__(
        self,
        store: RecordStore,
        permissions: PermissionResolver,
        settings: SettingsStore,
        locks: RoomLocks,
        events: RoomEventLog,
        cas_retries: int = ROOM_CAS_RETRIES,
    ):
        self.store = store
        self.permissions = permissions
        self.settings = settings
        self.locks = locks
        self.events = events
        self.cas_retries = cas_retries
        self.participants = None

    def attach_participants(self, participants) -> None:
        """Participant directory used for the creator and for deletion cleanup"""
        self.participants = participants

    # ------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------

    async def _load(self, room_id: str):
        if not room_id or not ROOM_ID_PATTERN.match(room_id):
            return None
        return await self.store.get_record(ROOMS_COLLECTION, room_id)

    async def get_room_record(self, room_id: str) -> Room:
        """The bare Room; NotFoundError when missing or soft-deleted"""
        record = await self._load(room_id)
        if not record:
            raise NotFoundError("Room not found", room_id=room_id)
        room = Room.from_dict(record.document)
        if not room.is_active:
            raise NotFoundError("Room not found", room_id=room_id)
        return room

    async def get_room(self, room_id: str) -> Dict[str, Any]:
        room = await self.get_room_record(room_id)
        participants = await self.participants.active_members(room_id)
        data = room.to_dict()
        data["participants"] = [p.to_dict() for p in participants]
        data["settings"] = await self.settings.get_settings(room_id)
        data["stats"]["active_participants"] = len(participants)
        return data

    async def list_rooms(self, filters: Optional[Dict[str, Any]] = None) -> List[Room]:
        filters = {k: v for k, v in (filters or {}).items() if v is not None}
        rooms = []
        for document in await self.store.list(ROOMS_COLLECTION):
            room = Room.from_dict(document)
            if not room.is_active:
                continue
            if "type" in filters and room.type.value != filters["type"]:
                continue
            if "created_by" in filters and room.created_by != filters["created_by"]:
                continue
            if "content_id" in filters and room.content_id != filters["content_id"]:
                continue
            rooms.append(room)
        # sorted() is stable with reverse=True, so equal timestamps keep insertion order
        return sorted(rooms, key=lambda r: r.created_at, reverse=True)

    # ------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------

    async def create_room(self, fields: Dict[str, Any], creator_id: str) -> str:
        name = _clean_name(fields.get("name"))
        room_type = _parse_type(fields.get("type"))
        if not creator_id:
            raise ValidationError("creator_id is required")

        room_id = fields.get("id") or f"room_{secrets.token_hex(8)}"
        if not isinstance(room_id, str) or not ROOM_ID_PATTERN.match(room_id):
            raise ValidationError("Room id may only contain letters, digits, '_' and '-'", id=str(room_id))
        overrides = self.settings.validate(fields.get("settings"))

        async with self.locks.hold(room_id):
            # Soft-deleted rooms keep their id reserved
            if await self.store.get_record(ROOMS_COLLECTION, room_id):
                raise ConflictError("Room already exists", room_id=room_id)

            now = utcnow()
            room = Room(
                id=room_id,
                name=name,
                created_by=creator_id,
                description=fields.get("description") or "",
                type=room_type,
                content_id=fields.get("content_id"),
                created_at=now,
                updated_at=now,
            )
            room.stats.touch(now)
            try:
                await self.store.put(ROOMS_COLLECTION, room_id, room.to_dict(), expected_version=0)
            except StaleRecordError:
                raise ConflictError("Room already exists", room_id=room_id)

            await self.settings.initialize(room_id, overrides)
            await self.participants.add_participant(
                room_id, creator_id, fields.get("creator_name") or "Admin", Role.ADMIN
            )

        await self.events.emit(RoomEventType.ROOM_CREATED, room_id, creator_id, name=name, type=room_type.value)
        logger.info(f"Room created: {room_id} '{name}' by={creator_id}")
        return room_id

    async def update_room(self, room_id: str, patch: Dict[str, Any], actor_id: str) -> Room:
        await self.get_room_record(room_id)
        await self.permissions.require(room_id, actor_id, Capability.MANAGE_ROOM)

        changes: Dict[str, Any] = {}
        for field in MUTABLE_ROOM_FIELDS:
            if patch.get(field) is None:
                continue
            if field == "name":
                changes["name"] = _clean_name(patch["name"])
            elif field == "type":
                changes["type"] = _parse_type(patch["type"])
            else:
                changes[field] = str(patch[field])

        def apply(room: Room) -> None:
            for key, value in changes.items():
                setattr(room, key, value)
            room.updated_at = utcnow()

        room = await self._mutate(room_id, apply)
        await self.events.emit(RoomEventType.ROOM_UPDATED, room_id, actor_id, changed=sorted(changes.keys()))
        logger.info(f"Room updated: {room_id} fields={sorted(changes.keys())} by={actor_id}")
        return room

    async def delete_room(self, room_id: str, actor_id: str) -> bool:
        room = await self.get_room_record(room_id)
        if room.created_by != actor_id and not await self.permissions.has_capability(
            room_id, actor_id, Capability.DELETE_ROOM
        ):
            raise PermissionDeniedError("Only the creator or an admin can delete this room", room_id=room_id)

        async with self.locks.hold(room_id):
            now = utcnow()
            await self._mutate(room_id, lambda r: r.mark_deleted(actor_id, now))
            for participant in await self.participants.active_members(room_id):
                await self.participants.remove_participant(room_id, participant.user_id)
            closed = await self._close_waiting(room_id, actor_id)

        await self.events.emit(RoomEventType.ROOM_DELETED, room_id, actor_id, closed_waiting=closed)
        logger.info(f"Room deleted: {room_id} by={actor_id}")
        return True

    async def _close_waiting(self, room_id: str, actor_id: str) -> int:
        """Reject guests still parked in the waiting room of a deleted room"""
        closed = 0
        for record in await self.store.list_records(WAITING_COLLECTION):
            waiting = WaitingParticipant.from_dict(record.document)
            if waiting.room_id != room_id or waiting.status is not WaitingStatus.WAITING:
                continue
            waiting.status = WaitingStatus.REJECTED
            waiting.decided_by = actor_id
            waiting.updated_at = utcnow()
            await self.store.put(WAITING_COLLECTION, record.key, waiting.to_dict(), expected_version=record.version)
            closed += 1
        return closed

    # ------------------------------------------------------------
    # Stats & capacity
    # ------------------------------------------------------------

    async def _mutate(self, room_id: str, fn: Callable[[Room], None], allow_deleted: bool = False) -> Room:
        """Read-modify-write the room record with compare-and-swap, retrying on conflicts"""
        for attempt in range(self.cas_retries):
            record = await self._load(room_id)
            if not record:
                raise NotFoundError("Room not found", room_id=room_id)
            room = Room.from_dict(record.document)
            if not room.is_active and not allow_deleted:
                raise NotFoundError("Room not found", room_id=room_id)
            fn(room)
            try:
                await self.store.put(ROOMS_COLLECTION, room_id, room.to_dict(), expected_version=record.version)
                return room
            except StaleRecordError:
                logger.debug(f"Room {room_id} changed concurrently (attempt {attempt + 1})")
        raise ConflictError("Room is being modified concurrently, retry later", code="ROOM-STORE-001", room_id=room_id)

    async def claim_slot(self, room_id: str, max_participants: Optional[int] = None) -> Room:
        def claim(room: Room) -> None:
            if max_participants is not None and room.stats.total_participants >= max_participants:
                raise RoomFullError(room_id, max_participants)
            room.stats.record_membership(room.stats.total_participants + 1, utcnow())

        return await self._mutate(room_id, claim)

    async def release_slot(self, room_id: str) -> Optional[Room]:
        def release(room: Room) -> None:
            room.stats.record_membership(max(0, room.stats.total_participants - 1), utcnow())

        try:
            return await self._mutate(room_id, release, allow_deleted=True)
        except NotFoundError:
            return None

    async def record_messages(self, room_id: str, count: int = 1) -> Room:
        if count < 0:
            raise ValidationError("Message count cannot be negative")

        def bump(room: Room) -> None:
            room.stats.total_messages += count
            room.stats.touch(utcnow())

        return await self._mutate(room_id, bump)

    async def reset_stats(self, room_id: str, actor_id: str) -> Room:
        await self.get_room_record(room_id)
        await self.permissions.require(room_id, actor_id, Capability.MANAGE_ROOM)

        def reset(room: Room) -> None:
            now = utcnow()
            room.stats.total_messages = 0
            room.stats.peak_concurrent_users = room.stats.total_participants
            room.stats.last_activity = now
            room.updated_at = now

        room = await self._mutate(room_id, reset)
        await self.events.emit(RoomEventType.ROOM_STATS_RESET, room_id, actor_id)
        return room
