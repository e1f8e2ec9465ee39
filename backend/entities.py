"""
Interview Rooms - Domain entities

Rooms, participants, invitations and waiting-room records as plain dataclasses.
Each entity serialises to the JSON document kept by the record store and can
be rebuilt from it.
"""

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Any
from datetime import datetime
from enum import Enum

from models import utcnow


def to_iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def from_iso(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


# ============================================================
# ENUMS
# ============================================================

class RoomType(str, Enum):
    PUBLIC = "public"
    PRIVATE = "private"


class RoomStatus(str, Enum):
    ACTIVE = "active"
    DELETED = "deleted"


class Role(str, Enum):
    ADMIN = "admin"
    MODERATOR = "moderator"
    PARTICIPANT = "participant"
    GUEST = "guest"


class Capability(str, Enum):
    ALL = "all"
    MANAGE_ROOM = "manage_room"
    DELETE_ROOM = "delete_room"
    MANAGE_PARTICIPANTS = "manage_participants"
    DELETE_MESSAGES = "delete_messages"
    MUTE_USERS = "mute_users"
    KICK_USERS = "kick_users"
    MANAGE_ROOM_SETTINGS = "manage_room_settings"
    SEND_MESSAGES = "send_messages"
    VIEW_MESSAGES = "view_messages"
    JOIN_ROOM = "join_room"


class InvitationStatus(str, Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    DECLINED = "declined"
    EXPIRED = "expired"

    @property
    def is_terminal(self) -> bool:
        return self is not InvitationStatus.PENDING


class WaitingStatus(str, Enum):
    WAITING = "waiting"
    ADMITTED = "admitted"
    REJECTED = "rejected"
    LEFT = "left"


# ============================================================
# ROOMS
# ============================================================

@dataclass
class RoomStats:
    """Aggregate counters; they only grow unless explicitly reset"""
    total_messages: int = 0
    total_participants: int = 0
    peak_concurrent_users: int = 0
    last_activity: Optional[datetime] = None

    def record_membership(self, active_count: int, now: datetime) -> None:
        self.total_participants = active_count
        self.peak_concurrent_users = max(self.peak_concurrent_users, active_count)
        self.touch(now)

    def touch(self, now: datetime) -> None:
        if self.last_activity is None or now > self.last_activity:
            self.last_activity = now

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_messages": self.total_messages,
            "total_participants": self.total_participants,
            "peak_concurrent_users": self.peak_concurrent_users,
            "last_activity": to_iso(self.last_activity),
        }

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> "RoomStats":
        return RoomStats(
            total_messages=int(data.get("total_messages", 0)),
            total_participants=int(data.get("total_participants", 0)),
            peak_concurrent_users=int(data.get("peak_concurrent_users", 0)),
            last_activity=from_iso(data.get("last_activity")),
        )


@dataclass
class Room:
    id: str
    name: str
    created_by: str
    description: str = ""
    type: RoomType = RoomType.PUBLIC
    content_id: Optional[str] = None
    status: RoomStatus = RoomStatus.ACTIVE
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)
    deleted_at: Optional[datetime] = None
    deleted_by: Optional[str] = None
    stats: RoomStats = field(default_factory=RoomStats)

    @property
    def is_active(self) -> bool:
        return self.status is RoomStatus.ACTIVE

    def mark_deleted(self, actor_id: str, now: datetime) -> None:
        self.status = RoomStatus.DELETED
        self.deleted_at = now
        self.deleted_by = actor_id
        self.updated_at = now

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "type": self.type.value,
            "content_id": self.content_id,
            "created_by": self.created_by,
            "created_at": to_iso(self.created_at),
            "updated_at": to_iso(self.updated_at),
            "status": self.status.value,
            "is_active": self.is_active,
            "deleted_at": to_iso(self.deleted_at),
            "deleted_by": self.deleted_by,
            "stats": self.stats.to_dict(),
        }

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> "Room":
        return Room(
            id=data["id"],
            name=data["name"],
            created_by=data["created_by"],
            description=data.get("description") or "",
            type=RoomType(data.get("type") or RoomType.PUBLIC.value),
            content_id=data.get("content_id"),
            status=RoomStatus(data.get("status") or RoomStatus.ACTIVE.value),
            created_at=from_iso(data.get("created_at")) or utcnow(),
            updated_at=from_iso(data.get("updated_at")) or utcnow(),
            deleted_at=from_iso(data.get("deleted_at")),
            deleted_by=data.get("deleted_by"),
            stats=RoomStats.from_dict(data.get("stats") or {}),
        )


# ============================================================
# PARTICIPANTS
# ============================================================

def participant_key(room_id: str, user_id: str) -> str:
    return f"{room_id}_{user_id}"


@dataclass
class Participant:
    room_id: str
    user_id: str
    display_name: str
    # Stored as given so legacy documents with unknown roles survive a round trip
    role: str
    capabilities: List[str]
    joined_at: datetime = field(default_factory=utcnow)
    last_seen: datetime = field(default_factory=utcnow)
    left_at: Optional[datetime] = None
    is_active: bool = True
    updated_at: datetime = field(default_factory=utcnow)

    @property
    def id(self) -> str:
        return participant_key(self.room_id, self.user_id)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "room_id": self.room_id,
            "user_id": self.user_id,
            "display_name": self.display_name,
            "role": self.role,
            "capabilities": list(self.capabilities),
            "joined_at": to_iso(self.joined_at),
            "last_seen": to_iso(self.last_seen),
            "left_at": to_iso(self.left_at),
            "is_active": self.is_active,
            "created_at": to_iso(self.joined_at),
            "updated_at": to_iso(self.updated_at),
        }

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> "Participant":
        return Participant(
            room_id=data["room_id"],
            user_id=data["user_id"],
            display_name=data.get("display_name") or "",
            role=data.get("role") or Role.GUEST.value,
            capabilities=list(data.get("capabilities") or []),
            joined_at=from_iso(data.get("joined_at")) or utcnow(),
            last_seen=from_iso(data.get("last_seen")) or utcnow(),
            left_at=from_iso(data.get("left_at")),
            is_active=bool(data.get("is_active", False)),
            updated_at=from_iso(data.get("updated_at")) or utcnow(),
        )


# ============================================================
# GUEST INVITATIONS
# ============================================================

@dataclass
class GuestInvitation:
    token: str
    join_code: str
    room_id: str
    created_by: str
    expires_at: datetime
    guest_contact: Optional[str] = None
    guest_name: str = ""
    status: InvitationStatus = InvitationStatus.PENDING
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)
    responded_at: Optional[datetime] = None

    @property
    def is_open(self) -> bool:
        """Open invitations carry no contact and may be used by any number of guests"""
        return not self.guest_contact

    def is_expired(self, now: datetime) -> bool:
        return now > self.expires_at

    def effective_status(self, now: datetime) -> InvitationStatus:
        if self.status is InvitationStatus.PENDING and self.is_expired(now):
            return InvitationStatus.EXPIRED
        return self.status

    def to_dict(self) -> Dict[str, Any]:
        return {
            "token": self.token,
            "join_code": self.join_code,
            "room_id": self.room_id,
            "guest_contact": self.guest_contact,
            "guest_name": self.guest_name,
            "status": self.status.value,
            "created_by": self.created_by,
            "created_at": to_iso(self.created_at),
            "updated_at": to_iso(self.updated_at),
            "expires_at": to_iso(self.expires_at),
            "responded_at": to_iso(self.responded_at),
        }

    def summary(self, now: datetime) -> Dict[str, Any]:
        """Public view returned to unauthenticated guests"""
        return {
            "room_id": self.room_id,
            "guest_name": self.guest_name,
            "status": self.effective_status(now).value,
            "open": self.is_open,
            "expires_at": to_iso(self.expires_at),
        }

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> "GuestInvitation":
        return GuestInvitation(
            token=data["token"],
            join_code=data["join_code"],
            room_id=data["room_id"],
            created_by=data["created_by"],
            expires_at=from_iso(data["expires_at"]),
            guest_contact=data.get("guest_contact"),
            guest_name=data.get("guest_name") or "",
            status=InvitationStatus(data.get("status") or InvitationStatus.PENDING.value),
            created_at=from_iso(data.get("created_at")) or utcnow(),
            updated_at=from_iso(data.get("updated_at")) or utcnow(),
            responded_at=from_iso(data.get("responded_at")),
        )


@dataclass
class WaitingParticipant:
    participant_id: str
    room_id: str
    display_name: str
    invitation_token: str
    device_settings: Dict[str, Any] = field(default_factory=dict)
    status: WaitingStatus = WaitingStatus.WAITING
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)
    decided_by: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "participant_id": self.participant_id,
            "room_id": self.room_id,
            "display_name": self.display_name,
            "invitation_token": self.invitation_token,
            "device_settings": dict(self.device_settings),
            "status": self.status.value,
            "created_at": to_iso(self.created_at),
            "updated_at": to_iso(self.updated_at),
            "decided_by": self.decided_by,
        }

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> "WaitingParticipant":
        return WaitingParticipant(
            participant_id=data["participant_id"],
            room_id=data["room_id"],
            display_name=data.get("display_name") or "",
            invitation_token=data.get("invitation_token") or "",
            device_settings=dict(data.get("device_settings") or {}),
            status=WaitingStatus(data.get("status") or WaitingStatus.WAITING.value),
            created_at=from_iso(data.get("created_at")) or utcnow(),
            updated_at=from_iso(data.get("updated_at")) or utcnow(),
            decided_by=data.get("decided_by"),
        )


@dataclass
class GuestPass:
    """Handle returned to a guest; maps the guest's participant id back to its room"""
    participant_id: str
    room_id: str
    display_name: str
    invitation_token: str
    via_waiting_room: bool
    device_settings: Dict[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "participant_id": self.participant_id,
            "room_id": self.room_id,
            "display_name": self.display_name,
            "invitation_token": self.invitation_token,
            "via_waiting_room": self.via_waiting_room,
            "device_settings": dict(self.device_settings),
            "created_at": to_iso(self.created_at),
            "updated_at": to_iso(self.updated_at),
        }

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> "GuestPass":
        return GuestPass(
            participant_id=data["participant_id"],
            room_id=data["room_id"],
            display_name=data.get("display_name") or "",
            invitation_token=data.get("invitation_token") or "",
            via_waiting_room=bool(data.get("via_waiting_room", False)),
            device_settings=dict(data.get("device_settings") or {}),
            created_at=from_iso(data.get("created_at")) or utcnow(),
            updated_at=from_iso(data.get("updated_at")) or utcnow(),
        )
