"""
Guest Router: Unauthenticated access for invited guests
Join codes and invitation tokens stand in for an account
"""

from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from errors import ExpiredCodeError
from room_core import RoomCore, get_room_core

router = APIRouter(prefix="/api/v1/guest", tags=["guest"])


# ── Schemas ──────────────────────────────────────────────────

class VerifyCodeRequest(BaseModel):
    code: Optional[str] = None

class GuestJoinRequest(BaseModel):
    code: Optional[str] = None
    guest_name: Optional[str] = None
    device_settings: Dict[str, Any] = {}

class AcceptRequest(BaseModel):
    guest_name: Optional[str] = None
    device_settings: Dict[str, Any] = {}

class DeviceUpdate(BaseModel):
    audio_enabled: Optional[bool] = None
    video_enabled: Optional[bool] = None


# ── Codes & joining ──────────────────────────────────────────

@router.post("/verify-code")
async def verify_code(body: VerifyCodeRequest, core: RoomCore = Depends(get_room_core)):
    try:
        return await core.guests.verify_join_code(body.code or "")
    except ExpiredCodeError as e:
        raise e.with_status(400)


@router.post("/join")
async def join_room(body: GuestJoinRequest, core: RoomCore = Depends(get_room_core)):
    return await core.guests.join_room(body.code or "", body.guest_name, body.device_settings)


# ── Invitations ──────────────────────────────────────────────

@router.get("/invitation/{token}")
async def get_invitation(token: str, core: RoomCore = Depends(get_room_core)):
    return await core.guests.get_invitation(token)


@router.post("/invitation/{token}/accept")
async def accept_invitation(
    token: str,
    body: Optional[AcceptRequest] = None,
    core: RoomCore = Depends(get_room_core),
):
    body = body or AcceptRequest()
    return await core.guests.accept_invitation(token, body.guest_name, body.device_settings)


@router.post("/invitation/{token}/decline")
async def decline_invitation(token: str, core: RoomCore = Depends(get_room_core)):
    invitation = await core.guests.decline_invitation(token)
    return {"success": True, "status": invitation.status.value}


# ── Participant session ──────────────────────────────────────

@router.get("/participant/{participant_id}/status")
async def waiting_room_status(participant_id: str, core: RoomCore = Depends(get_room_core)):
    return await core.guests.get_waiting_room_status(participant_id)


@router.post("/participant/{participant_id}/leave")
async def leave_room(participant_id: str, core: RoomCore = Depends(get_room_core)):
    return await core.guests.leave_room(participant_id)


@router.put("/participant/{participant_id}/devices")
async def update_devices(participant_id: str, body: DeviceUpdate, core: RoomCore = Depends(get_room_core)):
    return await core.guests.update_device_settings(participant_id, body.model_dump(exclude_none=True))
