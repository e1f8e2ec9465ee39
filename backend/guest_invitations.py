"""
Interview Rooms - Guest invitations and waiting room

Unregistered guests join a room with an invitation instead of an account.
Each invitation has two credentials bound to one room: a long random token
(used in links) and a short join code (typed by hand). Either one works
wherever a code is accepted.

Invitation states: PENDING -> ACCEPTED | DECLINED | EXPIRED, all terminal.
Expiry is evaluated lazily whenever an invitation is read; ``sweep`` only
persists what reads already report.

When the room requires approval, a joining guest is parked as a
WaitingParticipant until a moderator admits or rejects them. Otherwise the
guest becomes an active participant with the guest role straight away.
"""

import os
import re
import string
import secrets
import logging
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional

from entities import (
    Capability, GuestInvitation, GuestPass, InvitationStatus, Participant,
    Role, WaitingParticipant, WaitingStatus, to_iso,
)
from errors import (
    ConflictError, ExpiredCodeError, InvalidCodeError, NotFoundError,
    RoomFullError, StaleRecordError, ValidationError,
)
from models import utcnow
from participant_directory import ParticipantDirectory
from permissions import PermissionResolver
from record_store import RecordStore, RoomLocks, is_valid_key
from room_events import RoomEventLog, RoomEventType
from room_registry import WAITING_COLLECTION, RoomRegistry
from settings_store import SettingsStore

logger = logging.getLogger("interview-rooms.guests")

INVITATIONS_COLLECTION = "invitations"
JOIN_CODES_COLLECTION = "invitations/codes"
GUEST_PASSES_COLLECTION = "guests"

INVITATION_EXPIRY_HOURS = int(os.getenv("INVITATION_EXPIRY_HOURS", "24"))
MAX_BULK_INVITATIONS = int(os.getenv("MAX_BULK_INVITATIONS", "50"))
JOIN_CODE_LENGTH = int(os.getenv("JOIN_CODE_LENGTH", "12"))
JOIN_CODE_ALPHABET = string.ascii_uppercase + string.digits
APP_URL = os.getenv("APP_URL", "http://localhost:5173")

CREDENTIAL_PATTERN = re.compile(r"^[A-Za-z0-9]{4,128}$")
DEVICE_SETTING_KEYS = ("audio_enabled", "video_enabled")


def generate_token() -> str:
    return secrets.token_hex(32)


def generate_join_code(length: int = JOIN_CODE_LENGTH) -> str:
    return "".join(secrets.choice(JOIN_CODE_ALPHABET) for _ in range(length))


def generate_participant_id() -> str:
    return f"part_{secrets.token_hex(16)}"


def join_url(token: str) -> str:
    return f"{APP_URL.rstrip('/')}/join/{token}"


def _clean_guest_name(name: Optional[str]) -> str:
    if not isinstance(name, str) or not name.strip():
        raise ValidationError("Guest name is required")
    return name.strip()[:100]


def _device_settings(settings: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """Device test results as reported by the client, with explicit audio/video flags"""
    result = dict(settings or {})
    for key in DEVICE_SETTING_KEYS:
        result[key] = bool(result.get(key, True))
    return result


class GuestInvitationManager:

    def __init__(
        self,
        store: RecordStore,
        rooms: RoomRegistry,
        participants: ParticipantDirectory,
        settings: SettingsStore,
        permissions: PermissionResolver,
        locks: RoomLocks,
        events: RoomEventLog,
        clock: Callable[[], datetime] = utcnow,
        expiry: Optional[timedelta] = None,
    ):
        self.store = store
        self.rooms = rooms
        self.participants = participants
        self.settings = settings
        self.permissions = permissions
        self.locks = locks
        self.events = events
        self.clock = clock
        self.expiry = expiry or timedelta(hours=INVITATION_EXPIRY_HOURS)

    # ------------------------------------------------------------
    # Loading & validation
    # ------------------------------------------------------------

    async def _load_by_token(self, token: str):
        if not token or not CREDENTIAL_PATTERN.match(token):
            return None
        record = await self.store.get_record(INVITATIONS_COLLECTION, token)
        if not record:
            return None
        return GuestInvitation.from_dict(record.document), record.version

    async def _resolve(self, code: str) -> GuestInvitation:
        """Find an invitation by join code or token; InvalidCodeError when neither matches"""
        code = (code or "").strip()
        if not CREDENTIAL_PATTERN.match(code):
            raise InvalidCodeError("Invalid join code")

        index = await self.store.get(JOIN_CODES_COLLECTION, code.upper())
        loaded = await self._load_by_token(index["token"] if index else code)
        if not loaded:
            raise InvalidCodeError("Invalid join code")
        return loaded[0]

    async def _require_invitation(self, token: str):
        loaded = await self._load_by_token(token)
        if not loaded:
            raise NotFoundError("Invitation not found", code="ROOM-INV-003")
        return loaded

    def _check_usable(self, invitation: GuestInvitation) -> None:
        now = self.clock()
        if invitation.is_expired(now):
            raise ExpiredCodeError("Invitation has expired", expires_at=to_iso(invitation.expires_at))
        if invitation.status is not InvitationStatus.PENDING:
            raise ExpiredCodeError(
                f"Invitation is no longer pending ({invitation.status.value})",
                status=invitation.status.value,
            )

    async def _transition(self, invitation: GuestInvitation, version: int, status: InvitationStatus) -> GuestInvitation:
        now = self.clock()
        invitation.status = status
        invitation.responded_at = now
        invitation.updated_at = now
        try:
            await self.store.put(INVITATIONS_COLLECTION, invitation.token, invitation.to_dict(), expected_version=version)
        except StaleRecordError:
            raise ConflictError("Invitation changed concurrently", code="ROOM-INV-004")
        return invitation

    # ------------------------------------------------------------
    # Invitations
    # ------------------------------------------------------------

    async def _unique_join_code(self) -> str:
        for _ in range(5):
            code = generate_join_code()
            if not await self.store.get(JOIN_CODES_COLLECTION, code):
                return code
        raise ConflictError("Could not allocate a unique join code", code="ROOM-INV-004")

    async def create_invitation(
        self,
        room_id: str,
        inviter_id: str,
        guest_contact: Optional[str] = None,
        guest_name: str = "",
        expires_in: Optional[timedelta] = None,
        send_email: bool = True,
    ) -> GuestInvitation:
        await self.rooms.get_room_record(room_id)
        await self.permissions.require_any(room_id, inviter_id, Capability.MANAGE_PARTICIPANTS, Capability.ALL)

        now = self.clock()
        invitation = GuestInvitation(
            token=generate_token(),
            join_code=await self._unique_join_code(),
            room_id=room_id,
            created_by=inviter_id,
            expires_at=now + (expires_in or self.expiry),
            guest_contact=(guest_contact or "").strip() or None,
            guest_name=(guest_name or "").strip(),
            created_at=now,
            updated_at=now,
        )
        await self.store.put(INVITATIONS_COLLECTION, invitation.token, invitation.to_dict(), expected_version=0)
        await self.store.put(
            JOIN_CODES_COLLECTION, invitation.join_code,
            {"token": invitation.token, "room_id": room_id, "created_at": now.isoformat(), "updated_at": now.isoformat()},
        )

        await self.events.emit(
            RoomEventType.INVITATION_CREATED, room_id, inviter_id,
            guest_contact=invitation.guest_contact,
            guest_name=invitation.guest_name,
            join_code=invitation.join_code,
            join_url=join_url(invitation.token),
            expires_at=to_iso(invitation.expires_at),
            send_email=send_email and invitation.guest_contact is not None,
        )
        logger.info(f"Invitation created: room={room_id} by={inviter_id} open={invitation.is_open}")
        return invitation

    async def invite_guests(
        self,
        room_id: str,
        inviter_id: str,
        guests: List[Dict[str, Any]],
        send_email: bool = True,
    ) -> List[GuestInvitation]:
        """One invitation per guest entry (``guest_contact`` and/or ``guest_name``)"""
        if not guests:
            raise ValidationError("At least one guest is required")
        if len(guests) > MAX_BULK_INVITATIONS:
            raise ValidationError(f"At most {MAX_BULK_INVITATIONS} guests per request", count=len(guests))
        await self.rooms.get_room_record(room_id)
        await self.permissions.require_any(room_id, inviter_id, Capability.MANAGE_PARTICIPANTS, Capability.ALL)

        invitations = []
        for guest in guests:
            invitations.append(await self.create_invitation(
                room_id, inviter_id,
                guest_contact=guest.get("guest_contact"),
                guest_name=guest.get("guest_name") or "",
                send_email=send_email,
            ))
        logger.info(f"Guests invited: room={room_id} by={inviter_id} count={len(invitations)}")
        return invitations

    async def get_invitation(self, token: str) -> Dict[str, Any]:
        invitation, _ = await self._require_invitation(token)
        return invitation.summary(self.clock())

    async def verify_join_code(self, code: str) -> Dict[str, Any]:
        """Read-only check that a code can be used right now"""
        invitation = await self._resolve(code)
        self._check_usable(invitation)
        room = await self.rooms.get_room_record(invitation.room_id)
        settings = await self.settings.get_settings(room.id)
        return {
            "invitation": invitation.summary(self.clock()),
            "room": {
                "id": room.id,
                "name": room.name,
                "description": room.description,
                "type": room.type.value,
            },
            "requires_approval": bool(settings["require_approval"]),
        }

    async def list_invitations(self, room_id: str, actor_id: str) -> List[Dict[str, Any]]:
        await self.rooms.get_room_record(room_id)
        await self.permissions.require(room_id, actor_id, Capability.MANAGE_PARTICIPANTS)
        now = self.clock()
        invitations = [
            GuestInvitation.from_dict(d)
            for d in await self.store.list(INVITATIONS_COLLECTION)
            if d.get("room_id") == room_id
        ]
        invitations.sort(key=lambda i: i.created_at, reverse=True)
        return [
            {**i.to_dict(), "effective_status": i.effective_status(now).value, "join_url": join_url(i.token)}
            for i in invitations
        ]

    async def extend_invitation(self, token: str, actor_id: str, room_id: Optional[str] = None) -> GuestInvitation:
        invitation, version = await self._require_invitation(token)
        if room_id is not None and invitation.room_id != room_id:
            raise NotFoundError("Invitation not found", code="ROOM-INV-003")
        await self.permissions.require(invitation.room_id, actor_id, Capability.MANAGE_PARTICIPANTS)
        self._check_usable(invitation)

        now = self.clock()
        invitation.expires_at = now + self.expiry
        invitation.updated_at = now
        try:
            await self.store.put(INVITATIONS_COLLECTION, token, invitation.to_dict(), expected_version=version)
        except StaleRecordError:
            raise ConflictError("Invitation changed concurrently", code="ROOM-INV-004")
        return invitation

    async def accept_invitation(
        self,
        token: str,
        guest_name: Optional[str] = None,
        device_settings: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        invitation, _ = await self._require_invitation(token)
        if invitation.is_open:
            raise ConflictError("Open invitations cannot be accepted", code="ROOM-INV-004")
        self._check_usable(invitation)

        name = guest_name or invitation.guest_name or (invitation.guest_contact or "").split("@")[0] or "Guest"
        return await self._admit(invitation, _clean_guest_name(name), device_settings)

    async def decline_invitation(self, token: str) -> GuestInvitation:
        invitation, _ = await self._require_invitation(token)
        if invitation.is_open:
            raise ConflictError("Open invitations cannot be declined", code="ROOM-INV-004")

        async with self.locks.hold(invitation.room_id):
            invitation, version = await self._require_invitation(token)
            self._check_usable(invitation)
            invitation = await self._transition(invitation, version, InvitationStatus.DECLINED)

        await self.events.emit(RoomEventType.INVITATION_DECLINED, invitation.room_id, None, token_suffix=token[-6:])
        logger.info(f"Invitation declined: room={invitation.room_id}")
        return invitation

    # ------------------------------------------------------------
    # Joining
    # ------------------------------------------------------------

    async def join_room(
        self,
        code: str,
        guest_name: str,
        device_settings: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        name = _clean_guest_name(guest_name)
        invitation = await self._resolve(code)
        self._check_usable(invitation)
        return await self._admit(invitation, name, device_settings)

    async def _admit(
        self,
        invitation: GuestInvitation,
        guest_name: str,
        device_settings: Optional[Dict[str, Any]],
    ) -> Dict[str, Any]:
        """Admission branch shared by join and accept.

        Runs under the room lock: the invitation is re-validated, capacity is
        checked before anything is written, then the guest is either parked
        in the waiting room or added as an active participant. Targeted
        invitations are consumed here; open ones stay pending.
        """
        room_id = invitation.room_id
        async with self.locks.hold(room_id):
            invitation, version = await self._require_invitation(invitation.token)
            self._check_usable(invitation)
            await self.rooms.get_room_record(room_id)

            settings = await self.settings.get_settings(room_id)
            max_participants = settings["max_participants"]
            if await self.participants.count_active(room_id) >= max_participants:
                logger.warning(f"Guest rejected, room full: room={room_id} max={max_participants}")
                raise RoomFullError(room_id, max_participants)

            now = self.clock()
            participant_id = generate_participant_id()
            devices = _device_settings(device_settings)
            requires_approval = bool(settings["require_approval"])
            result: Dict[str, Any] = {
                "participant_id": participant_id,
                "room_id": room_id,
                "display_name": guest_name,
                "waiting_room": requires_approval,
            }

            if requires_approval:
                waiting = WaitingParticipant(
                    participant_id=participant_id,
                    room_id=room_id,
                    display_name=guest_name,
                    invitation_token=invitation.token,
                    device_settings=devices,
                    created_at=now,
                    updated_at=now,
                )
                await self.store.put(WAITING_COLLECTION, participant_id, waiting.to_dict(), expected_version=0)
                result["status"] = WaitingStatus.WAITING.value
            else:
                participant = await self.participants.add_participant(
                    room_id, participant_id, guest_name, Role.GUEST, max_participants=max_participants,
                )
                result["status"] = WaitingStatus.ADMITTED.value
                result["participant"] = participant.to_dict()

            guest_pass = GuestPass(
                participant_id=participant_id,
                room_id=room_id,
                display_name=guest_name,
                invitation_token=invitation.token,
                via_waiting_room=requires_approval,
                device_settings=devices,
                created_at=now,
                updated_at=now,
            )
            await self.store.put(GUEST_PASSES_COLLECTION, participant_id, guest_pass.to_dict(), expected_version=0)

            if not invitation.is_open:
                invitation.guest_name = guest_name
                await self._transition(invitation, version, InvitationStatus.ACCEPTED)

        if not invitation.is_open:
            await self.events.emit(RoomEventType.INVITATION_ACCEPTED, room_id, participant_id, guest_name=guest_name)
        if requires_approval:
            await self.events.emit(RoomEventType.GUEST_WAITING, room_id, participant_id, display_name=guest_name)
        logger.info(f"Guest joined: room={room_id} participant={participant_id} waiting={requires_approval}")
        return result

    # ------------------------------------------------------------
    # Waiting room
    # ------------------------------------------------------------

    async def _require_waiting(self, participant_id: str):
        record = None
        if is_valid_key(participant_id):
            record = await self.store.get_record(WAITING_COLLECTION, participant_id)
        if not record:
            raise NotFoundError("Waiting participant not found", code="ROOM-PART-001")
        return WaitingParticipant.from_dict(record.document), record.version

    async def get_waiting_room_status(self, participant_id: str) -> Dict[str, Any]:
        record = await self.store.get_record(WAITING_COLLECTION, participant_id) if is_valid_key(participant_id) else None
        if not record:
            # Guests admitted directly never pass through the waiting room;
            # a swept waiting record is gone for good
            guest_pass = await self._require_pass(participant_id)
            if guest_pass.via_waiting_room:
                raise NotFoundError("Waiting participant not found", code="ROOM-PART-001")
            participant = await self.participants.get(guest_pass.room_id, participant_id)
            status = WaitingStatus.ADMITTED if participant and participant.is_active else WaitingStatus.LEFT
            return {
                "participant_id": participant_id,
                "room_id": guest_pass.room_id,
                "display_name": guest_pass.display_name,
                "status": status.value,
                "waiting_since": None,
                "can_join": status is WaitingStatus.ADMITTED,
            }

        waiting = WaitingParticipant.from_dict(record.document)
        return {
            "participant_id": waiting.participant_id,
            "room_id": waiting.room_id,
            "display_name": waiting.display_name,
            "status": waiting.status.value,
            "waiting_since": to_iso(waiting.created_at),
            "can_join": waiting.status is WaitingStatus.ADMITTED,
        }

    async def list_waiting(self, room_id: str, actor_id: str) -> List[Dict[str, Any]]:
        await self.rooms.get_room_record(room_id)
        await self.permissions.require(room_id, actor_id, Capability.MANAGE_PARTICIPANTS)
        waiting = [
            WaitingParticipant.from_dict(d)
            for d in await self.store.list(WAITING_COLLECTION)
            if d.get("room_id") == room_id and d.get("status") == WaitingStatus.WAITING.value
        ]
        waiting.sort(key=lambda w: w.created_at)
        return [w.to_dict() for w in waiting]

    async def _decide(self, participant_id: str, actor_id: str, admit: bool, room_id: Optional[str] = None):
        waiting, _ = await self._require_waiting(participant_id)
        if room_id is not None and waiting.room_id != room_id:
            raise NotFoundError("Waiting participant not found", code="ROOM-PART-001")
        await self.permissions.require(waiting.room_id, actor_id, Capability.MANAGE_PARTICIPANTS)

        participant = None
        async with self.locks.hold(waiting.room_id):
            waiting, version = await self._require_waiting(participant_id)
            if waiting.status is not WaitingStatus.WAITING:
                raise ConflictError(
                    f"Participant is no longer waiting ({waiting.status.value})",
                    code="ROOM-PART-002",
                )
            if admit:
                settings = await self.settings.get_settings(waiting.room_id)
                participant = await self.participants.add_participant(
                    waiting.room_id, waiting.participant_id, waiting.display_name, Role.GUEST,
                    max_participants=settings["max_participants"],
                )
            waiting.status = WaitingStatus.ADMITTED if admit else WaitingStatus.REJECTED
            waiting.decided_by = actor_id
            waiting.updated_at = self.clock()
            await self.store.put(WAITING_COLLECTION, participant_id, waiting.to_dict(), expected_version=version)

        event = RoomEventType.GUEST_ADMITTED if admit else RoomEventType.GUEST_REJECTED
        await self.events.emit(event, waiting.room_id, actor_id, participant_id=participant_id)
        logger.info(f"Guest {waiting.status.value}: room={waiting.room_id} participant={participant_id} by={actor_id}")
        return waiting, participant

    async def admit_waiting(self, participant_id: str, actor_id: str, room_id: Optional[str] = None) -> Participant:
        _, participant = await self._decide(participant_id, actor_id, admit=True, room_id=room_id)
        return participant

    async def reject_waiting(self, participant_id: str, actor_id: str, room_id: Optional[str] = None) -> WaitingParticipant:
        waiting, _ = await self._decide(participant_id, actor_id, admit=False, room_id=room_id)
        return waiting

    # ------------------------------------------------------------
    # Guest session
    # ------------------------------------------------------------

    async def _require_pass(self, participant_id: str) -> GuestPass:
        data = None
        if is_valid_key(participant_id):
            data = await self.store.get(GUEST_PASSES_COLLECTION, participant_id)
        if not data:
            raise NotFoundError("Guest participant not found", code="ROOM-PART-001")
        return GuestPass.from_dict(data)

    async def leave_room(self, participant_id: str) -> Dict[str, Any]:
        guest_pass = await self._require_pass(participant_id)

        async with self.locks.hold(guest_pass.room_id):
            removed = await self.participants.remove_participant(guest_pass.room_id, participant_id)
            record = await self.store.get_record(WAITING_COLLECTION, participant_id)
            if record:
                waiting = WaitingParticipant.from_dict(record.document)
                if waiting.status is WaitingStatus.WAITING:
                    waiting.status = WaitingStatus.LEFT
                    waiting.updated_at = self.clock()
                    await self.store.put(WAITING_COLLECTION, participant_id, waiting.to_dict(), expected_version=record.version)

        return {"success": True, "participant_id": participant_id, "was_active": removed}

    async def update_device_settings(self, participant_id: str, settings: Dict[str, Any]) -> Dict[str, Any]:
        guest_pass = await self._require_pass(participant_id)
        changes = {k: bool(settings[k]) for k in DEVICE_SETTING_KEYS if k in (settings or {})}
        if not changes:
            return guest_pass.to_dict()

        guest_pass.device_settings.update(changes)
        guest_pass.updated_at = self.clock()
        await self.store.put(GUEST_PASSES_COLLECTION, participant_id, guest_pass.to_dict())

        record = await self.store.get_record(WAITING_COLLECTION, participant_id)
        if record:
            waiting = WaitingParticipant.from_dict(record.document)
            waiting.device_settings.update(changes)
            waiting.updated_at = self.clock()
            await self.store.put(WAITING_COLLECTION, participant_id, waiting.to_dict())
        return guest_pass.to_dict()

    # ------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------

    async def sweep(self, now: Optional[datetime] = None) -> Dict[str, int]:
        """Persist EXPIRED on lapsed pending invitations and drop settled waiting records.

        Never scheduled by the service itself; reads already report expiry lazily.
        """
        now = now or self.clock()
        expired = 0
        for record in await self.store.list_records(INVITATIONS_COLLECTION):
            invitation = GuestInvitation.from_dict(record.document)
            if invitation.status is not InvitationStatus.PENDING or not invitation.is_expired(now):
                continue
            invitation.status = InvitationStatus.EXPIRED
            invitation.updated_at = now
            try:
                await self.store.put(INVITATIONS_COLLECTION, invitation.token, invitation.to_dict(), expected_version=record.version)
            except StaleRecordError:
                continue
            expired += 1
            await self.events.emit(RoomEventType.INVITATION_EXPIRED, invitation.room_id, None)

        purged = 0
        for document in await self.store.list(WAITING_COLLECTION):
            if document.get("status") != WaitingStatus.WAITING.value:
                await self.store.delete(WAITING_COLLECTION, document["participant_id"])
                purged += 1

        logger.info(f"Sweep finished: expired_invitations={expired} purged_waiting={purged}")
        return {"expired_invitations": expired, "purged_waiting": purged}
