"""
Interview Rooms - Domain events and audit history

Every state change in the room subsystem produces a RoomEvent. RoomEventLog
persists it to the ``audit_log`` collection and hands it to the process-wide
RoomEventHub, which keeps a bounded history and fans out to subscribers
(notification delivery, websocket broadcasters). Delivery itself happens
outside this service.
"""

import inspect
import logging
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from models import new_uuid, utcnow
from record_store import RecordStore

logger = logging.getLogger("interview-rooms.events")

AUDIT_COLLECTION = "audit_log"


class RoomEventType(str, Enum):
    ROOM_CREATED = "room.created"
    ROOM_UPDATED = "room.updated"
    ROOM_DELETED = "room.deleted"
    ROOM_STATS_RESET = "room.stats_reset"
    PARTICIPANT_JOINED = "participant.joined"
    PARTICIPANT_LEFT = "participant.left"
    PARTICIPANT_ROLE_CHANGED = "participant.role_changed"
    PARTICIPANT_KICKED = "participant.kicked"
    SETTINGS_UPDATED = "settings.updated"
    INVITATION_CREATED = "invitation.created"
    INVITATION_ACCEPTED = "invitation.accepted"
    INVITATION_DECLINED = "invitation.declined"
    INVITATION_EXPIRED = "invitation.expired"
    GUEST_WAITING = "guest.waiting"
    GUEST_ADMITTED = "guest.admitted"
    GUEST_REJECTED = "guest.rejected"


@dataclass
class RoomEvent:
    type: RoomEventType
    room_id: str
    actor_id: Optional[str] = None
    payload: Dict[str, Any] = field(default_factory=dict)
    id: str = field(default_factory=new_uuid)
    occurred_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type.value,
            "room_id": self.room_id,
            "actor_id": self.actor_id,
            "payload": self.payload,
            "occurred_at": self.occurred_at.isoformat(),
            "created_at": self.occurred_at.isoformat(),
            "updated_at": self.occurred_at.isoformat(),
        }


Subscriber = Callable[[RoomEvent], Any]


class RoomEventHub:
    """In-process fan-out of room events with a bounded recent-history buffer"""

    def __init__(self, max_history: int = 1000):
        self._history: deque = deque(maxlen=max_history)
        self._subscribers: List[Subscriber] = []

    def subscribe(self, callback: Subscriber) -> None:
        self._subscribers.append(callback)

    def unsubscribe(self, callback: Subscriber) -> None:
        if callback in self._subscribers:
            self._subscribers.remove(callback)

    async def publish(self, event: RoomEvent) -> None:
        self._history.append(event)
        for callback in list(self._subscribers):
            try:
                result = callback(event)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                # State is already persisted; subscriber failures are only logged
                logger.exception(f"Event subscriber failed for {event.type.value}")

    def recent(self, room_id: Optional[str] = None, limit: int = 100) -> List[RoomEvent]:
        events = [e for e in self._history if room_id is None or e.room_id == room_id]
        return events[-limit:]

    def clear(self) -> None:
        self._history.clear()


class RoomEventLog:
    """Persists events as audit history, then publishes them"""

    def __init__(self, store: RecordStore, hub: RoomEventHub):
        self.store = store
        self.hub = hub

    async def emit(
        self,
        event_type: RoomEventType,
        room_id: str,
        actor_id: Optional[str] = None,
        **payload: Any,
    ) -> RoomEvent:
        event = RoomEvent(type=event_type, room_id=room_id, actor_id=actor_id, payload=payload)
        await self.store.put(AUDIT_COLLECTION, event.id, event.to_dict())
        logger.debug(f"{event_type.value} room={room_id} actor={actor_id}")
        await self.hub.publish(event)
        return event

    async def history(self, room_id: str) -> List[Dict[str, Any]]:
        entries = await self.store.list(AUDIT_COLLECTION)
        return [e for e in entries if e.get("room_id") == room_id]
