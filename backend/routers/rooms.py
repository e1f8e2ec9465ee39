"""
Rooms Router: Interview room lifecycle, membership, settings and invitations
Every route requires a bearer token; capability checks happen in the services
"""

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Body, Depends, Query
from pydantic import BaseModel

from auth import CurrentUser, get_current_user
from entities import Role
from errors import ValidationError
from guest_invitations import join_url
from participant_directory import validate_role
from room_core import RoomCore, get_room_core

router = APIRouter(prefix="/api/v1/rooms", tags=["rooms"])

# Roles a caller may request when joining on their own
SELF_JOIN_ROLES = (Role.PARTICIPANT, Role.GUEST)


# ── Schemas ──────────────────────────────────────────────────

class RoomCreate(BaseModel):
    # Left optional so an empty name is reported as a 400 by the registry
    name: Optional[str] = None
    id: Optional[str] = None
    description: Optional[str] = None
    type: Optional[str] = None
    content_id: Optional[str] = None
    creator_name: Optional[str] = None
    settings: Optional[Dict[str, Any]] = None

class RoomUpdate(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    type: Optional[str] = None

class JoinRequest(BaseModel):
    display_name: Optional[str] = None
    role: str = Role.PARTICIPANT.value

class RoleUpdate(BaseModel):
    role: Optional[str] = None

class InvitationCreate(BaseModel):
    guest_contact: Optional[str] = None
    guest_name: Optional[str] = None

class BulkInvitationCreate(BaseModel):
    guests: List[InvitationCreate]
    send_email: bool = True


# ── Rooms ────────────────────────────────────────────────────

@router.get("")
async def list_rooms(
    type: Optional[str] = Query(None),
    created_by: Optional[str] = Query(None),
    content_id: Optional[str] = Query(None),
    core: RoomCore = Depends(get_room_core),
    user: CurrentUser = Depends(get_current_user),
):
    rooms = await core.rooms.list_rooms({"type": type, "created_by": created_by, "content_id": content_id})
    return {"rooms": [r.to_dict() for r in rooms], "count": len(rooms)}


@router.post("", status_code=201)
async def create_room(
    body: RoomCreate,
    core: RoomCore = Depends(get_room_core),
    user: CurrentUser = Depends(get_current_user),
):
    fields = body.model_dump(exclude_none=True)
    fields.setdefault("creator_name", user.display_name or None)
    room_id = await core.rooms.create_room(fields, user.id)
    return {"success": True, "room_id": room_id}


@router.get("/{room_id}")
async def get_room(
    room_id: str,
    core: RoomCore = Depends(get_room_core),
    user: CurrentUser = Depends(get_current_user),
):
    return await core.rooms.get_room(room_id)


@router.put("/{room_id}")
async def update_room(
    room_id: str,
    body: RoomUpdate,
    core: RoomCore = Depends(get_room_core),
    user: CurrentUser = Depends(get_current_user),
):
    room = await core.rooms.update_room(room_id, body.model_dump(exclude_none=True), user.id)
    return room.to_dict()


@router.delete("/{room_id}")
async def delete_room(
    room_id: str,
    core: RoomCore = Depends(get_room_core),
    user: CurrentUser = Depends(get_current_user),
):
    return {"success": await core.rooms.delete_room(room_id, user.id)}


@router.get("/{room_id}/permissions")
async def check_permissions(
    room_id: str,
    core: RoomCore = Depends(get_room_core),
    user: CurrentUser = Depends(get_current_user),
):
    await core.rooms.get_room_record(room_id)
    return {
        "room_id": room_id,
        "user_id": user.id,
        "permissions": await core.permissions.check_permissions(room_id, user.id),
    }


@router.post("/{room_id}/stats/reset")
async def reset_stats(
    room_id: str,
    core: RoomCore = Depends(get_room_core),
    user: CurrentUser = Depends(get_current_user),
):
    room = await core.rooms.reset_stats(room_id, user.id)
    return room.stats.to_dict()


# ── Membership ───────────────────────────────────────────────

@router.post("/{room_id}/join")
async def join_room(
    room_id: str,
    body: Optional[JoinRequest] = None,
    core: RoomCore = Depends(get_room_core),
    user: CurrentUser = Depends(get_current_user),
):
    body = body or JoinRequest()
    role = validate_role(body.role)
    if role not in SELF_JOIN_ROLES:
        raise ValidationError(f"Cannot join with role {role.value}", role=role.value)

    await core.rooms.get_room_record(room_id)
    settings = await core.settings.get_settings(room_id)
    participant = await core.participants.add_participant(
        room_id,
        user.id,
        body.display_name or user.display_name or user.id,
        role,
        max_participants=settings["max_participants"],
    )
    return participant.to_dict()


@router.post("/{room_id}/leave")
async def leave_room(
    room_id: str,
    core: RoomCore = Depends(get_room_core),
    user: CurrentUser = Depends(get_current_user),
):
    was_active = await core.participants.remove_participant(room_id, user.id)
    return {"success": True, "was_active": was_active}


@router.post("/{room_id}/heartbeat")
async def heartbeat(
    room_id: str,
    core: RoomCore = Depends(get_room_core),
    user: CurrentUser = Depends(get_current_user),
):
    participant = await core.participants.touch(room_id, user.id)
    return {"room_id": room_id, "user_id": user.id, "last_seen": participant.to_dict()["last_seen"]}


@router.get("/{room_id}/participants")
async def list_participants(
    room_id: str,
    core: RoomCore = Depends(get_room_core),
    user: CurrentUser = Depends(get_current_user),
):
    participants = await core.participants.list_participants(room_id)
    return {"participants": [p.to_dict() for p in participants], "count": len(participants)}


@router.put("/{room_id}/participants/{user_id}")
async def update_participant_role(
    room_id: str,
    user_id: str,
    body: RoleUpdate,
    core: RoomCore = Depends(get_room_core),
    user: CurrentUser = Depends(get_current_user),
):
    participant = await core.participants.update_participant_role(room_id, user_id, body.role, user.id)
    return participant.to_dict()


@router.delete("/{room_id}/participants/{user_id}")
async def kick_participant(
    room_id: str,
    user_id: str,
    core: RoomCore = Depends(get_room_core),
    user: CurrentUser = Depends(get_current_user),
):
    participant = await core.participants.kick_participant(room_id, user_id, user.id)
    return participant.to_dict()


@router.post("/{room_id}/participants/{user_id}/refresh-capabilities")
async def refresh_capabilities(
    room_id: str,
    user_id: str,
    core: RoomCore = Depends(get_room_core),
    user: CurrentUser = Depends(get_current_user),
):
    participant = await core.participants.refresh_capabilities(room_id, user_id, user.id)
    return participant.to_dict()


# ── Settings ─────────────────────────────────────────────────

@router.get("/{room_id}/settings")
async def get_settings(
    room_id: str,
    core: RoomCore = Depends(get_room_core),
    user: CurrentUser = Depends(get_current_user),
):
    await core.rooms.get_room_record(room_id)
    return await core.settings.get_settings(room_id)


@router.put("/{room_id}/settings")
async def update_settings(
    room_id: str,
    body: Dict[str, Any] = Body(...),
    core: RoomCore = Depends(get_room_core),
    user: CurrentUser = Depends(get_current_user),
):
    await core.rooms.get_room_record(room_id)
    return await core.settings.update_settings(room_id, body, user.id)


# ── Invitations & waiting room ───────────────────────────────

@router.post("/{room_id}/invitations", status_code=201)
async def create_invitation(
    room_id: str,
    body: Optional[InvitationCreate] = None,
    core: RoomCore = Depends(get_room_core),
    user: CurrentUser = Depends(get_current_user),
):
    body = body or InvitationCreate()
    invitation = await core.guests.create_invitation(
        room_id, user.id, guest_contact=body.guest_contact, guest_name=body.guest_name or "",
    )
    return {**invitation.to_dict(), "join_url": join_url(invitation.token)}


@router.post("/{room_id}/invitations/bulk", status_code=201)
async def invite_guests(
    room_id: str,
    body: BulkInvitationCreate,
    core: RoomCore = Depends(get_room_core),
    user: CurrentUser = Depends(get_current_user),
):
    invitations = await core.guests.invite_guests(
        room_id, user.id, [g.model_dump() for g in body.guests], send_email=body.send_email,
    )
    return {
        "invitations": [{**i.to_dict(), "join_url": join_url(i.token)} for i in invitations],
        "count": len(invitations),
    }


@router.get("/{room_id}/invitations")
async def list_invitations(
    room_id: str,
    core: RoomCore = Depends(get_room_core),
    user: CurrentUser = Depends(get_current_user),
):
    invitations = await core.guests.list_invitations(room_id, user.id)
    return {"invitations": invitations, "count": len(invitations)}


@router.post("/{room_id}/invitations/{token}/extend")
async def extend_invitation(
    room_id: str,
    token: str,
    core: RoomCore = Depends(get_room_core),
    user: CurrentUser = Depends(get_current_user),
):
    invitation = await core.guests.extend_invitation(token, user.id, room_id=room_id)
    return invitation.to_dict()


@router.get("/{room_id}/waiting-room")
async def list_waiting(
    room_id: str,
    core: RoomCore = Depends(get_room_core),
    user: CurrentUser = Depends(get_current_user),
):
    waiting = await core.guests.list_waiting(room_id, user.id)
    return {"waiting": waiting, "count": len(waiting)}


@router.post("/{room_id}/waiting-room/{participant_id}/admit")
async def admit_waiting(
    room_id: str,
    participant_id: str,
    core: RoomCore = Depends(get_room_core),
    user: CurrentUser = Depends(get_current_user),
):
    participant = await core.guests.admit_waiting(participant_id, user.id, room_id=room_id)
    return participant.to_dict()


@router.post("/{room_id}/waiting-room/{participant_id}/reject")
async def reject_waiting(
    room_id: str,
    participant_id: str,
    core: RoomCore = Depends(get_room_core),
    user: CurrentUser = Depends(get_current_user),
):
    waiting = await core.guests.reject_waiting(participant_id, user.id, room_id=room_id)
    return waiting.to_dict()
