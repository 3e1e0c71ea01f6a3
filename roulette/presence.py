from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta

from roulette.api.models import Participant
from roulette.timers import CancellableTimer

logger = logging.getLogger(__name__)

ExpiryCallback = Callable[[str, str], Awaitable[None]]


@dataclass(frozen=True, slots=True)
class Binding:
    room_id: str
    participant: Participant


@dataclass(slots=True, eq=False)
class PendingDisconnect:
    participant_id: str
    room_id: str
    deadline: datetime
    timer: CancellableTimer | None = field(default=None, repr=False)


class PresenceTracker:
    """Which connection is which participant, and who is in their grace period.

    Bindings live exactly as long as one physical connection. A participant can
    have at most one PendingDisconnect; scheduling a new one cancels the old.
    """

    def __init__(self) -> None:
        self._bindings: dict[str, Binding] = {}
        self._pending: dict[str, PendingDisconnect] = {}

    def bind(self, connection_id: str, room_id: str, participant: Participant) -> Binding:
        binding = Binding(room_id=room_id, participant=participant)
        self._bindings[connection_id] = binding
        return binding

    def unbind(self, connection_id: str) -> Binding | None:
        return self._bindings.pop(connection_id, None)

    def binding_for(self, connection_id: str) -> Binding | None:
        return self._bindings.get(connection_id)

    def connections_in_room(self, room_id: str) -> list[str]:
        return [cid for cid, b in self._bindings.items() if b.room_id == room_id]

    def is_participant_bound(self, participant_id: str, *, room_id: str | None = None) -> bool:
        return any(
            b.participant.id == participant_id and (room_id is None or b.room_id == room_id)
            for b in self._bindings.values()
        )

    # ---- grace periods ----

    def has_pending(self, participant_id: str, *, room_id: str | None = None) -> bool:
        entry = self._pending.get(participant_id)
        return entry is not None and (room_id is None or entry.room_id == room_id)

    def pending_for(self, participant_id: str) -> PendingDisconnect | None:
        return self._pending.get(participant_id)

    def schedule_grace_period(
        self,
        participant_id: str,
        room_id: str,
        duration: float,
        on_expire: ExpiryCallback,
    ) -> PendingDisconnect:
        """Arm a one-shot removal timer for a disconnected participant.

        `on_expire(participant_id, room_id)` runs only if the entry has not been
        cancelled or replaced by then.
        """

        self.cancel_grace_period(participant_id)

        entry = PendingDisconnect(
            participant_id=participant_id,
            room_id=room_id,
            deadline=datetime.now(tz=UTC) + timedelta(seconds=duration),
        )

        async def _expire() -> None:
            # Only the entry that armed this timer may act on it.
            if self._pending.get(participant_id) is not entry:
                return
            del self._pending[participant_id]
            logger.info("Grace period expired for %s in room %s", participant_id, room_id)
            await on_expire(participant_id, room_id)

        entry.timer = CancellableTimer(duration, _expire, name=f"grace:{room_id}:{participant_id}")
        self._pending[participant_id] = entry
        logger.debug("Grace period of %.1fs started for %s in room %s", duration, participant_id, room_id)
        return entry

    def cancel_grace_period(self, participant_id: str) -> bool:
        entry = self._pending.pop(participant_id, None)
        if entry is None:
            return False
        if entry.timer is not None:
            entry.timer.cancel()
        logger.debug("Grace period cancelled for %s in room %s", participant_id, entry.room_id)
        return True

    # ---- teardown ----

    def drop_room(self, room_id: str) -> list[str]:
        """Forget everything about a torn-down room. Returns the unbound connection ids."""

        for pid in [pid for pid, e in self._pending.items() if e.room_id == room_id]:
            self.cancel_grace_period(pid)

        dropped = self.connections_in_room(room_id)
        for cid in dropped:
            del self._bindings[cid]
        return dropped

    def close(self) -> None:
        for entry in self._pending.values():
            if entry.timer is not None:
                entry.timer.stop()
        self._pending.clear()
        self._bindings.clear()
