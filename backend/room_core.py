"""
Interview Rooms - Service wiring

Builds the room services over one record store. Locks and the event hub are
process-wide; the store is per request for the SQL backend (bound to the
request's session) and shared for the file and memory backends.
"""

import os
import logging
from dataclasses import dataclass
from typing import Callable, Optional

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db_session
from guest_invitations import GuestInvitationManager
from models import utcnow
from participant_directory import ParticipantDirectory
from permissions import PermissionResolver
from record_store import FileRecordStore, MemoryRecordStore, RecordStore, RoomLocks, SQLRecordStore
from room_events import RoomEventHub, RoomEventLog
from room_registry import RoomRegistry
from settings_store import SettingsStore

logger = logging.getLogger("interview-rooms.core")

ROOM_STORE_BACKEND = os.getenv("ROOM_STORE_BACKEND", "sql").lower()
ROOM_DATA_DIR = os.getenv("ROOM_DATA_DIR", "./data/rooms")

room_locks = RoomLocks()
event_hub = RoomEventHub()

_shared_store: Optional[RecordStore] = None


@dataclass
class RoomCore:
    store: RecordStore
    events: RoomEventLog
    permissions: PermissionResolver
    settings: SettingsStore
    rooms: RoomRegistry
    participants: ParticipantDirectory
    guests: GuestInvitationManager


def build_room_core(
    store: RecordStore,
    locks: Optional[RoomLocks] = None,
    hub: Optional[RoomEventHub] = None,
    clock: Optional[Callable] = None,
) -> RoomCore:
    if locks is None:
        locks = room_locks
    if hub is None:
        hub = event_hub

    events = RoomEventLog(store, hub)
    permissions = PermissionResolver(store)
    settings = SettingsStore(store, permissions, locks, events)
    rooms = RoomRegistry(store, permissions, settings, locks, events)
    participants = ParticipantDirectory(store, rooms, permissions, locks, events)
    rooms.attach_participants(participants)
    guests = GuestInvitationManager(
        store, rooms, participants, settings, permissions, locks, events,
        clock=clock or utcnow,
    )
    return RoomCore(
        store=store,
        events=events,
        permissions=permissions,
        settings=settings,
        rooms=rooms,
        participants=participants,
        guests=guests,
    )


def shared_store() -> RecordStore:
    """Process-wide store for the file and memory backends"""
    global _shared_store
    if _shared_store is None:
        if ROOM_STORE_BACKEND == "file":
            _shared_store = FileRecordStore(ROOM_DATA_DIR)
        elif ROOM_STORE_BACKEND == "memory":
            _shared_store = MemoryRecordStore()
        else:
            raise ValueError(f"Unknown ROOM_STORE_BACKEND: {ROOM_STORE_BACKEND}")
        logger.info(f"Using {_shared_store.backend} record store")
    return _shared_store


async def get_room_core(db: AsyncSession = Depends(get_db_session)) -> RoomCore:
    """FastAPI dependency returning the wired room services"""
    if ROOM_STORE_BACKEND == "sql":
        return build_room_core(SQLRecordStore(db))
    return build_room_core(shared_store())


def reset_runtime() -> None:
    """Drop process-wide state (locks, event history, shared store)"""
    global _shared_store, room_locks
    _shared_store = None
    room_locks = RoomLocks()
    event_hub.clear()
