# errors.py - Room service error taxonomy with ROOM-{AREA}-{NUMBER} codes
from typing import Optional, Dict, Any

# ============================================================
# ERROR CODE CATALOGUE
# ROOM-{AREA}-{NUMBER}
# Areas: REQ, AUTH, ROOM, PART, INV, STORE
# ============================================================

ERROR_CATALOGUE = {
    "ROOM-REQ-001": {"message": "Invalid request", "http_status": 400},
    "ROOM-AUTH-001": {"message": "Authentication required", "http_status": 401},
    "ROOM-AUTH-002": {"message": "Insufficient permissions", "http_status": 403},
    "ROOM-ROOM-001": {"message": "Room not found", "http_status": 404},
    "ROOM-ROOM-002": {"message": "Room already exists", "http_status": 409},
    "ROOM-ROOM-003": {"message": "Room is full", "http_status": 409},
    "ROOM-PART-001": {"message": "Participant not found", "http_status": 404},
    "ROOM-PART-002": {"message": "Participant state conflict", "http_status": 409},
    "ROOM-INV-001": {"message": "Invalid join code", "http_status": 400},
    "ROOM-INV-002": {"message": "Invitation expired or no longer pending", "http_status": 410},
    "ROOM-INV-003": {"message": "Invitation not found", "http_status": 404},
    "ROOM-INV-004": {"message": "Invitation state conflict", "http_status": 409},
    "ROOM-STORE-001": {"message": "Concurrent modification", "http_status": 409},
}


class RoomError(Exception):
    """Base class for all business-rule violations raised by the room services"""

    status_code = 500
    code = "ROOM-SYS-000"

    def __init__(self, message: Optional[str] = None, code: Optional[str] = None, **details: Any):
        if code:
            self.code = code
        self.message = message or ERROR_CATALOGUE.get(self.code, {}).get("message", "Room service error")
        self.details: Dict[str, Any] = details
        super().__init__(self.message)

    def with_status(self, status_code: int) -> "RoomError":
        """Return the same error rendered with a different HTTP status"""
        self.status_code = status_code
        return self

    def to_dict(self) -> Dict[str, Any]:
        body = {"detail": self.message, "error": self.code}
        if self.details:
            body["context"] = self.details
        return body


class ValidationError(RoomError):
    status_code = 400
    code = "ROOM-REQ-001"


class AuthenticationError(RoomError):
    status_code = 401
    code = "ROOM-AUTH-001"


class PermissionDeniedError(RoomError):
    status_code = 403
    code = "ROOM-AUTH-002"


class NotFoundError(RoomError):
    status_code = 404
    code = "ROOM-ROOM-001"


class ConflictError(RoomError):
    status_code = 409
    code = "ROOM-ROOM-002"

    def __init__(self, message: Optional[str] = None, code: Optional[str] = None, reason: Optional[str] = None, **details: Any):
        super().__init__(message, code, **details)
        self.reason = reason or "Conflict"
        self.details.setdefault("reason", self.reason)


class RoomFullError(ConflictError):
    code = "ROOM-ROOM-003"

    def __init__(self, room_id: str, max_participants: int):
        super().__init__(
            "RoomFull",
            reason="RoomFull",
            room_id=room_id,
            max_participants=max_participants,
        )


class InvalidCodeError(RoomError):
    status_code = 400
    code = "ROOM-INV-001"


class ExpiredCodeError(RoomError):
    status_code = 410
    code = "ROOM-INV-002"


class StaleRecordError(RoomError):
    """Raised by a record store when a compare-and-swap write loses the race"""

    status_code = 409
    code = "ROOM-STORE-001"
