from __future__ import annotations

import hmac
import logging
import secrets
from datetime import UTC, datetime, timedelta
from uuid import uuid4

from roulette.api.models import Participant, PublicParticipant, Room, RoomPublicView
from roulette.errors import (
    InvalidName,
    InvalidTransition,
    NameTaken,
    RoomExpired,
    RoomNotFound,
    Unauthorized,
)
from roulette.fsm import transition

logger = logging.getLogger(__name__)


def _now() -> datetime:
    return datetime.now(tz=UTC)


def _new_room_id() -> str:
    return uuid4().hex[:12]


def _clean_name(name: str | None) -> str:
    cleaned = (name or "").strip()
    if not cleaned:
        raise InvalidName()
    return cleaned


class RoomStore:
    """In-memory set of live rooms.

    Pure state + invariant enforcement; no I/O and no awaits, so every method
    runs to completion without interleaving on the event loop.
    """

    def __init__(self) -> None:
        self._rooms: dict[str, Room] = {}

    def __len__(self) -> int:
        return len(self._rooms)

    def __contains__(self, room_id: object) -> bool:
        return room_id in self._rooms

    def room_ids(self) -> list[str]:
        return list(self._rooms)

    def create_room(self, owner_name: str | None, *, now: datetime | None = None) -> tuple[str, str]:
        name = _clean_name(owner_name)

        room_id = _new_room_id()
        while room_id in self._rooms:
            logger.warning("Room id collision detected, regenerating: %s", room_id)
            room_id = _new_room_id()

        owner = Participant(id=str(uuid4()), name=name)
        room = Room(
            id=room_id,
            owner_name=name,
            owner_id=owner.id,
            owner_token=secrets.token_urlsafe(32),
            participants=[owner],
            created_at=now or _now(),
        )
        self._rooms[room_id] = room
        logger.info("Created room %s for owner %r", room_id, name)
        return room_id, room.owner_token

    def get_room(self, room_id: str) -> Room:
        room = self._rooms.get(room_id)
        if room is None:
            raise RoomNotFound(room_id)
        return room

    def get_public_view(self, room_id: str) -> RoomPublicView:
        room = self.get_room(room_id)
        return RoomPublicView(
            id=room.id,
            owner=room.owner_name,
            participants=[
                PublicParticipant(id=None if p.id == room.owner_id else p.id, name=p.name) for p in room.participants
            ],
            started=room.started,
        )

    def participants(self, room_id: str) -> list[Participant]:
        return list(self.get_room(room_id).participants)

    def find_participant(self, room_id: str, participant_id: str) -> Participant | None:
        room = self.get_room(room_id)
        return next((p for p in room.participants if p.id == participant_id), None)

    def add_participant(self, room_id: str, name: str | None, supplied_id: str | None = None) -> Participant:
        """Append a non-owner participant at the end of the wheel."""

        room = self.get_room(room_id)
        name = _clean_name(name)

        if room.started:
            raise RoomExpired()

        # Covers the owner's name too: this path is never the owner's.
        folded = name.casefold()
        if any(p.name.casefold() == folded for p in room.participants):
            raise NameTaken(f"A participant named {name!r} is already in the room")

        pid = supplied_id
        if not pid or any(p.id == pid for p in room.participants):
            pid = str(uuid4())

        participant = Participant(id=pid, name=name)
        room.participants.append(participant)
        logger.info("Participant %r (%s) joined room %s", name, pid, room_id)
        return participant

    def authenticate_owner(self, room_id: str, name: str | None, owner_token: str | None) -> Participant:
        """Resolve the owner participant for a join that claims the owner's name."""

        room = self.get_room(room_id)
        if (name or "").strip() != room.owner_name or not self._token_matches(room, owner_token):
            raise Unauthorized("Owner credentials do not match this room")
        owner = room.owner
        if owner is None:
            raise InvalidTransition(f"Room {room_id} has no owner participant")
        return owner

    def token_matches(self, room_id: str, owner_token: str | None) -> bool:
        return self._token_matches(self.get_room(room_id), owner_token)

    def is_owner(self, room_id: str, participant_id: str, owner_token: str | None) -> bool:
        room = self.get_room(room_id)
        return participant_id == room.owner_id and self._token_matches(room, owner_token)

    @staticmethod
    def _token_matches(room: Room, owner_token: str | None) -> bool:
        if not owner_token:
            return False
        return hmac.compare_digest(owner_token.encode(), room.owner_token.encode())

    def remove_participant(self, room_id: str, participant_id: str) -> bool:
        """Remove by identity. Returns True if something was removed.

        The room is evicted when it becomes empty, and also when the owner
        leaves: a room never exists without its owner.
        """

        room = self._rooms.get(room_id)
        if room is None:
            return False

        before = len(room.participants)
        room.participants = [p for p in room.participants if p.id != participant_id]
        if len(room.participants) == before:
            return False

        logger.info("Participant %s removed from room %s", participant_id, room_id)
        if participant_id == room.owner_id:
            self.delete_room(room_id, reason="owner left")
        else:
            self.delete_if_empty(room_id)
        return True

    # ---- phase transitions ----

    def begin_spin(self, room_id: str) -> Room:
        room = self.get_room(room_id)
        transition(room, "begin_spin")
        return room

    def abort_spin(self, room_id: str) -> Room:
        room = self.get_room(room_id)
        transition(room, "abort_spin")
        return room

    def mark_started(self, room_id: str) -> Room:
        room = self.get_room(room_id)
        transition(room, "mark_started")
        return room

    def record_winner(self, room_id: str, participant: Participant) -> Room:
        room = self.get_room(room_id)
        if participant not in room.participants:
            raise InvalidTransition(f"Winner {participant.id} is not a participant of room {room_id}")
        transition(room, "record_winner")
        room.selected_winner = participant
        return room

    # ---- eviction ----

    def delete_room(self, room_id: str, *, reason: str = "deleted") -> bool:
        room = self._rooms.pop(room_id, None)
        if room is None:
            return False
        logger.info("Room %s cleaned up (%s)", room_id, reason)
        return True

    def delete_if_empty(self, room_id: str) -> bool:
        room = self._rooms.get(room_id)
        if room is None or room.participants:
            return False
        return self.delete_room(room_id, reason="no participants")

    def delete_if_stale(self, room_id: str, max_age: timedelta, *, now: datetime | None = None) -> bool:
        room = self._rooms.get(room_id)
        if room is None:
            return False
        if (now or _now()) - room.created_at <= max_age:
            return False
        return self.delete_room(room_id, reason="age")
