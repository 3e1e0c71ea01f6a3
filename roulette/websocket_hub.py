from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from typing import Any, Protocol

logger = logging.getLogger(__name__)


class Connection(Protocol):
    """The slice of `fastapi.WebSocket` the hub and protocol rely on."""

    async def send_json(self, data: Any, mode: str = "text") -> None: ...

    async def close(self, code: int = 1000, reason: str | None = None) -> None: ...


class RoomHub:
    """In-process WebSocket pub/sub keyed by room_id.

    Contract:
      - register a joined connection with `connect(room_id, connection_id, ws)`.
      - broadcast JSON-serializable dicts with `broadcast(room_id, payload)`.

    A broadcast reaches every connection registered at the moment it is sent;
    there is no replay for connections that join later.
    """

    def __init__(self) -> None:
        self._by_room: dict[str, dict[str, Connection]] = defaultdict(dict)
        self._lock = asyncio.Lock()

    async def connect(self, room_id: str, connection_id: str, websocket: Connection) -> None:
        async with self._lock:
            self._by_room[room_id][connection_id] = websocket

    async def disconnect(self, room_id: str, connection_id: str) -> None:
        async with self._lock:
            conns = self._by_room.get(room_id)
            if not conns:
                return
            conns.pop(connection_id, None)
            if not conns:
                self._by_room.pop(room_id, None)

    def connection_count(self, room_id: str) -> int:
        return len(self._by_room.get(room_id, {}))

    async def broadcast(self, room_id: str, payload: dict[str, object]) -> int:
        """Send to every connection in the room. Returns how many sends succeeded."""

        async with self._lock:
            conns = list(self._by_room.get(room_id, {}).items())

        if not conns:
            return 0

        dead: list[str] = []
        for cid, ws in conns:
            try:
                await ws.send_json(payload)
            except Exception:
                logger.debug("Dropping dead connection %s from room %s", cid, room_id, exc_info=True)
                dead.append(cid)

        if dead:
            async with self._lock:
                room_conns = self._by_room.get(room_id, {})
                for cid in dead:
                    room_conns.pop(cid, None)
                if not room_conns:
                    self._by_room.pop(room_id, None)

        return len(conns) - len(dead)

    async def close_room(self, room_id: str, *, code: int = 1000, reason: str | None = None) -> list[str]:
        """Unregister and close every connection of a room."""

        async with self._lock:
            conns = self._by_room.pop(room_id, {})

        for cid, ws in conns.items():
            try:
                await ws.close(code=code, reason=reason)
            except Exception:
                logger.debug("Closing connection %s of room %s failed", cid, room_id, exc_info=True)
        return list(conns)
