from __future__ import annotations

from datetime import datetime
from enum import StrEnum
from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter


class Participant(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    name: str


class RoomPhase(StrEnum):
    open = "open"
    # Owner pressed start; clients are animating and the draw is pending.
    spinning = "spinning"
    started = "started"
    decided = "decided"


class Room(BaseModel):
    """Authoritative room state. Only RoomStore mutates it."""

    id: str
    owner_name: str
    owner_id: str
    owner_token: str
    # Join order is the wheel order clients render, so it is part of the contract.
    participants: list[Participant] = Field(default_factory=list)
    phase: RoomPhase = RoomPhase.open
    selected_winner: Participant | None = None
    created_at: datetime

    @property
    def started(self) -> bool:
        return self.phase in (RoomPhase.started, RoomPhase.decided)

    @property
    def owner(self) -> Participant | None:
        return next((p for p in self.participants if p.id == self.owner_id), None)


class RoomCreateRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    # Optional here so a missing name maps to InvalidName (400) rather than a schema error.
    owner_name: str | None = Field(None, alias="ownerName")


class RoomCreatedResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    room_id: str = Field(..., alias="roomId")
    owner_token: str = Field(..., alias="ownerToken")


class PublicParticipant(BaseModel):
    # None for the owner, whose id stays private.
    id: str | None
    name: str


class RoomPublicView(BaseModel):
    """What anyone holding the link may see. No owner id or token."""

    id: str
    owner: str
    participants: list[PublicParticipant]
    started: bool


class ErrorResponse(BaseModel):
    error: str
    message: str


# ---- WebSocket client -> server messages ----


class _ClientMessage(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    room_id: str = Field(..., alias="roomId", min_length=1)


class JoinRoomMessage(_ClientMessage):
    type: Literal["join_room"]
    name: str = ""
    owner_token: str | None = Field(None, alias="ownerToken")
    user_id: str | None = Field(None, alias="userId")


class RequestParticipantsMessage(_ClientMessage):
    type: Literal["request_participants"]


class StartRouletteMessage(_ClientMessage):
    type: Literal["start_roulette"]
    owner_token: str | None = Field(None, alias="ownerToken")


class LeaveRoomMessage(_ClientMessage):
    type: Literal["leave_room"]


ClientMessage = Annotated[
    Union[JoinRoomMessage, RequestParticipantsMessage, StartRouletteMessage, LeaveRoomMessage],
    Field(discriminator="type"),
]

client_message_adapter: TypeAdapter[ClientMessage] = TypeAdapter(ClientMessage)
