from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any
from uuid import uuid4

from pydantic import ValidationError

from roulette.api.models import (
    ClientMessage,
    JoinRoomMessage,
    LeaveRoomMessage,
    Participant,
    RequestParticipantsMessage,
    RoomPhase,
    StartRouletteMessage,
    client_message_adapter,
)
from roulette.errors import (
    AlreadyStarted,
    InsufficientParticipants,
    RoomExpired,
    RoomNotFound,
    RouletteError,
    Unauthorized,
)
from roulette.presence import PresenceTracker
from roulette.room_store import RoomStore
from roulette.selector import RandomSelector
from roulette.settings import Settings
from roulette.timers import CancellableTimer
from roulette.websocket_hub import Connection, RoomHub

logger = logging.getLogger(__name__)

# Close code sent to connections of a room that no longer exists.
ROOM_GONE_CLOSE_CODE = 4404


@dataclass(slots=True, eq=False)
class ConnectionSession:
    """One physical connection. Lives inside `SessionProtocol.connection()`."""

    connection_id: str
    websocket: Connection

    async def send(self, type_: str, **fields: Any) -> bool:
        try:
            await self.websocket.send_json({"type": type_, **fields})
        except Exception:
            # The receive loop sees the disconnect and runs the teardown.
            logger.debug("Send of %s to %s failed", type_, self.connection_id, exc_info=True)
            return False
        return True


def _participants_payload(participants: list[Participant]) -> dict[str, object]:
    return {"type": "participants_update", "participants": [p.model_dump() for p in participants]}


class SessionProtocol:
    """Connection-driven room protocol: join, resync, start, leave, disconnect.

    Every handler that touches a room runs under that room's asyncio.Lock, so
    joins, starts and removals for one room never interleave. The spin delay
    and grace-period timers re-acquire the lock and re-validate when they fire.
    """

    def __init__(
        self,
        *,
        store: RoomStore,
        presence: PresenceTracker,
        hub: RoomHub,
        selector: RandomSelector,
        settings: Settings,
    ) -> None:
        self.store = store
        self.presence = presence
        self.hub = hub
        self.selector = selector
        self.settings = settings
        self._room_locks: dict[str, asyncio.Lock] = {}
        self._spin_timers: dict[str, CancellableTimer] = {}
        self._handlers: dict[str, Callable[[ConnectionSession, Any], Awaitable[None]]] = {
            "join_room": self.join_room,
            "request_participants": self.request_participants,
            "start_roulette": self.start_roulette,
            "leave_room": self.leave_room,
        }

    def room_lock(self, room_id: str) -> asyncio.Lock:
        lock = self._room_locks.get(room_id)
        if lock is None:
            lock = self._room_locks[room_id] = asyncio.Lock()
        return lock

    @asynccontextmanager
    async def locked(self, room_id: str) -> AsyncIterator[None]:
        """Hold the room's lock. The lock is forgotten on release once the room is gone."""

        lock = self.room_lock(room_id)
        try:
            async with lock:
                yield
        finally:
            if room_id not in self.store and self._room_locks.get(room_id) is lock:
                del self._room_locks[room_id]

    def lock_count(self) -> int:
        return len(self._room_locks)

    def spin_timer(self, room_id: str) -> CancellableTimer | None:
        return self._spin_timers.get(room_id)

    @asynccontextmanager
    async def connection(self, websocket: Connection) -> AsyncIterator[ConnectionSession]:
        """Scope a connection: whatever happens inside, leaving runs the disconnect path."""

        session = ConnectionSession(connection_id=uuid4().hex, websocket=websocket)
        logger.debug("New connection: %s", session.connection_id)
        try:
            yield session
        finally:
            await self.disconnect(session)
            logger.debug("Disconnected: %s", session.connection_id)

    async def handle(self, session: ConnectionSession, raw: str | bytes) -> None:
        """Parse one client frame and dispatch it."""

        try:
            msg: ClientMessage = client_message_adapter.validate_json(raw)
        except ValidationError as e:
            logger.debug("Rejected frame from %s: %s", session.connection_id, e)
            await session.send("error", error="InvalidMessage", message="Malformed or unknown message")
            return

        await self._handlers[msg.type](session, msg)

    # ---- join ----

    async def join_room(self, session: ConnectionSession, msg: JoinRoomMessage) -> None:
        room_id = msg.room_id
        logger.info("Join attempt - room=%s name=%r user_id=%s", room_id, msg.name, msg.user_id)

        previous = self.presence.binding_for(session.connection_id)
        if previous is not None and previous.room_id == room_id and self._is_same_joiner(previous.participant, msg):
            # Duplicate join on a live connection: just re-acknowledge.
            async with self.locked(room_id):
                if room_id in self.store:
                    await self.hub.broadcast(room_id, _participants_payload(self.store.participants(room_id)))
                    await session.send("joined", participant=previous.participant.model_dump())
            return
        if previous is not None:
            await self._release(session, remove=False)

        async with self.locked(room_id):
            try:
                participant = self._resolve_join(msg)
            except RoomExpired as e:
                await session.send("room_expired", message=e.message, started=True)
                return
            except RouletteError as e:
                logger.info("Join rejected - room=%s name=%r: %s", room_id, msg.name, e.code)
                await session.send("join_error", **e.as_payload())
                return

            self.presence.bind(session.connection_id, room_id, participant)
            await self.hub.connect(room_id, session.connection_id, session.websocket)

            await self.hub.broadcast(room_id, _participants_payload(self.store.participants(room_id)))
            await session.send("joined", participant=participant.model_dump())

    @staticmethod
    def _is_same_joiner(participant: Participant, msg: JoinRoomMessage) -> bool:
        if msg.user_id and msg.user_id == participant.id:
            return True
        return msg.name.strip().casefold() == participant.name.casefold()

    def _resolve_join(self, msg: JoinRoomMessage) -> Participant:
        """Decide who this join is. Runs under the room lock; raises RouletteError."""

        room_id = msg.room_id
        room = self.store.get_room(room_id)

        claimed = msg.user_id
        if claimed:
            existing = self.store.find_participant(room_id, claimed)
            if existing is not None:
                if self.presence.has_pending(claimed, room_id=room_id):
                    # Reconnection within the grace period: identity is enough, no name checks.
                    self.presence.cancel_grace_period(claimed)
                    logger.info("%r reconnected to room %s", existing.name, room_id)
                    return existing
                if existing.id != room.owner_id:
                    # A second tab, or a grace timer that fired but whose removal has not run yet.
                    logger.info("%r restored in room %s", existing.name, room_id)
                    return existing

        name = msg.name.strip()
        if name and name == room.owner_name:
            try:
                owner = self.store.authenticate_owner(room_id, name, msg.owner_token)
            except Unauthorized:
                if room.started:
                    raise RoomExpired() from None
                raise
            # The owner may come back on a fresh user id; their old grace timer must not fire.
            self.presence.cancel_grace_period(owner.id)
            logger.info("Owner %r joined room %s", name, room_id)
            return owner

        # Only the owner and returning participants get past this point once started.
        if room.started:
            raise RoomExpired()

        if msg.owner_token and not self.store.token_matches(room_id, msg.owner_token):
            raise Unauthorized("Invalid owner token")

        return self.store.add_participant(room_id, name, claimed)

    # ---- resync ----

    async def request_participants(self, session: ConnectionSession, msg: RequestParticipantsMessage) -> None:
        room_id = msg.room_id
        async with self.locked(room_id):
            if room_id not in self.store:
                await session.send("join_error", **RoomNotFound(room_id).as_payload())
                return

            payload = _participants_payload(self.store.participants(room_id))
            binding = self.presence.binding_for(session.connection_id)
            if binding is not None and binding.room_id == room_id:
                await self.hub.broadcast(room_id, payload)
            else:
                await session.send(payload.pop("type"), **payload)

    # ---- roulette ----

    async def start_roulette(self, session: ConnectionSession, msg: StartRouletteMessage) -> None:
        room_id = msg.room_id
        logger.info("Start roulette attempt - room=%s", room_id)

        async with self.locked(room_id):
            try:
                room = self.store.get_room(room_id)
                binding = self.presence.binding_for(session.connection_id)
                if (
                    binding is None
                    or binding.room_id != room_id
                    or not self.store.is_owner(room_id, binding.participant.id, msg.owner_token)
                ):
                    raise Unauthorized()
                if room.phase != RoomPhase.open:
                    raise AlreadyStarted()
                if len(room.participants) < 2:
                    raise InsufficientParticipants()
                self.store.begin_spin(room_id)
            except RouletteError as e:
                logger.info("Start rejected - room=%s: %s", room_id, e.code)
                await session.send("roulette_error", **e.as_payload())
                return

            logger.info(
                "Starting roulette for room %s with %d participants: %s",
                room_id,
                len(room.participants),
                [p.name for p in room.participants],
            )
            self._spin_timers[room_id] = CancellableTimer(
                self.settings.spin_delay_seconds,
                lambda: self._finish_spin(room_id),
                name=f"spin:{room_id}",
            )
            await self.hub.broadcast(room_id, {"type": "roulette_start"})

    async def _finish_spin(self, room_id: str) -> None:
        async with self.locked(room_id):
            self._spin_timers.pop(room_id, None)
            if room_id not in self.store:
                logger.info("Room %s disappeared before the draw", room_id)
                return

            room = self.store.get_room(room_id)
            if room.phase != RoomPhase.spinning:
                return

            count = len(room.participants)
            if count < 2:
                self.store.abort_spin(room_id)
                logger.info("Spin aborted in room %s: only %d participant(s) left", room_id, count)
                await self.hub.broadcast(
                    room_id, {"type": "roulette_error", **InsufficientParticipants().as_payload()}
                )
                return

            # Draw first: nothing between mark_started and record_winner can fail or yield.
            index = self.selector.draw(count)
            winner = room.participants[index]
            self.store.mark_started(room_id)
            self.store.record_winner(room_id, winner)
            logger.info("Winner selected for room %s: %r (index %d of %d)", room_id, winner.name, index, count)

            await self.hub.broadcast(room_id, {"type": "roulette_result", "participant": winner.model_dump()})

    # ---- leaving ----

    async def leave_room(self, session: ConnectionSession, msg: LeaveRoomMessage) -> None:
        binding = self.presence.binding_for(session.connection_id)
        if binding is None or binding.room_id != msg.room_id:
            await session.send("error", error="NotJoined", message="Not a participant of this room")
            return
        await self._release(session, remove=True)

    async def disconnect(self, session: ConnectionSession) -> None:
        await self._release(session, remove=False)

    async def _release(self, session: ConnectionSession, *, remove: bool) -> None:
        """Detach a connection from its room.

        `remove=True` is an explicit leave; otherwise the participant gets a grace
        period unless another connection still represents them.
        """

        binding = self.presence.binding_for(session.connection_id)
        if binding is None:
            return

        room_id = binding.room_id
        pid = binding.participant.id
        async with self.locked(room_id):
            self.presence.unbind(session.connection_id)
            await self.hub.disconnect(room_id, session.connection_id)

            if room_id not in self.store or self.store.find_participant(room_id, pid) is None:
                return

            if remove:
                self.presence.cancel_grace_period(pid)
                logger.info("%r left room %s", binding.participant.name, room_id)
                await self._remove_participant(room_id, pid)
                return

            if self.presence.is_participant_bound(pid, room_id=room_id):
                return
            self.presence.schedule_grace_period(
                pid, room_id, self.settings.grace_period_seconds, self._on_grace_expired
            )

    async def _on_grace_expired(self, participant_id: str, room_id: str) -> None:
        async with self.locked(room_id):
            if room_id not in self.store:
                return
            participant = self.store.find_participant(room_id, participant_id)
            if participant is None or self.presence.is_participant_bound(participant_id, room_id=room_id):
                return
            logger.info("%r removed from room %s after timeout", participant.name, room_id)
            await self._remove_participant(room_id, participant_id)

    async def _remove_participant(self, room_id: str, participant_id: str) -> None:
        """Remove and notify. Caller holds the room lock."""

        room = self.store.get_room(room_id)
        was_owner = participant_id == room.owner_id
        started = room.started

        self.store.remove_participant(room_id, participant_id)

        if room_id in self.store:
            await self.hub.broadcast(room_id, _participants_payload(self.store.participants(room_id)))
        elif was_owner:
            await self.hub.broadcast(
                room_id, {"type": "room_expired", "message": "The room owner has left", "started": started}
            )
            await self.teardown_room(room_id)
        else:
            await self.teardown_room(room_id)

    # ---- teardown ----

    async def teardown_room(self, room_id: str, *, code: int = ROOM_GONE_CLOSE_CODE) -> None:
        """Drop timers, bindings and connections of a room already removed from the store."""

        timer = self._spin_timers.pop(room_id, None)
        if timer is not None:
            timer.cancel()
        self.presence.drop_room(room_id)
        await self.hub.close_room(room_id, code=code, reason="room closed")
        self._room_locks.pop(room_id, None)

    def close(self) -> None:
        for timer in self._spin_timers.values():
            timer.stop()
        self._spin_timers.clear()
