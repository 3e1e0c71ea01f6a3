from __future__ import annotations

from statemachine import State, StateMachine
from statemachine.exceptions import TransitionNotAllowed

from roulette.api.models import Room, RoomPhase
from roulette.errors import InvalidTransition


class RoomFSM(StateMachine):
    """FSM wrapper around Room.phase.

    - open -> spinning: owner asked for a spin, draw pending
    - spinning -> open: spin aborted (participants left during the delay)
    - open|spinning -> started -> decided: draw happened, winner recorded

    `started` and `decided` never go back, which is what keeps `Room.started`
    monotonic and the winner write-once.
    """

    open = State(RoomPhase.open.value, value=RoomPhase.open.value, initial=True)
    spinning = State(RoomPhase.spinning.value, value=RoomPhase.spinning.value)
    started = State(RoomPhase.started.value, value=RoomPhase.started.value)
    decided = State(RoomPhase.decided.value, value=RoomPhase.decided.value, final=True)

    begin_spin = open.to(spinning)
    abort_spin = spinning.to(open)
    mark_started = open.to(started) | spinning.to(started)
    record_winner = started.to(decided)

    def __init__(self, room: Room):
        self.room = room
        super().__init__(start_value=room.phase.value)

    def sync_phase_to_model(self) -> None:
        self.room.phase = RoomPhase(str(self.current_state.value))


def transition(room: Room, event: str) -> RoomPhase:
    """Apply `event` to the room's phase or raise InvalidTransition."""

    fsm = RoomFSM(room)
    try:
        fsm.send(event)
    except TransitionNotAllowed as e:
        raise InvalidTransition(f"Cannot {event.replace('_', ' ')} while room is {room.phase.value}") from e
    fsm.sync_phase_to_model()
    return room.phase
