"""Error taxonomy for room and session operations.

Every error carries a stable ``code`` so the HTTP and WebSocket layers can
report it without string matching. They subclass ``ValueError`` so callers that
only care about "bad request" can keep catching that.
"""

from __future__ import annotations


class RouletteError(ValueError):
    """Base class for all domain errors."""

    code = "RouletteError"
    default_message = "Request failed"

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)

    def as_payload(self) -> dict[str, str]:
        return {"error": self.code, "message": self.message}


class InvalidName(RouletteError):
    code = "InvalidName"
    default_message = "A name is required"


class RoomNotFound(RouletteError):
    code = "RoomNotFound"
    default_message = "Room not found"

    def __init__(self, room_id: str | None = None) -> None:
        self.room_id = room_id
        super().__init__(f"Room {room_id} not found" if room_id else None)


class RoomExpired(RouletteError):
    """The roulette already ran; new participants are no longer accepted."""

    code = "RoomExpired"
    default_message = "The invite link has expired"


class NameTaken(RouletteError):
    code = "NameTaken"
    default_message = "A participant with this name already exists"


class Unauthorized(RouletteError):
    code = "Unauthorized"
    default_message = "Only the room owner can do this"


class InsufficientParticipants(RouletteError):
    code = "InsufficientParticipants"
    default_message = "At least two participants are required"


class AlreadyStarted(RouletteError):
    code = "AlreadyStarted"
    default_message = "The roulette has already been started"


class InvalidTransition(RouletteError):
    """Guard for programming errors: a room operation called out of order."""

    code = "InvalidTransition"
    default_message = "Invalid room state transition"


class InvalidArgument(RouletteError):
    code = "InvalidArgument"
    default_message = "Invalid argument"
