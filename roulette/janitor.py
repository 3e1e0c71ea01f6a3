from __future__ import annotations

import asyncio
import logging
from datetime import UTC, datetime, timedelta

from roulette.protocol import SessionProtocol
from roulette.room_store import RoomStore

logger = logging.getLogger(__name__)


class RoomLifecycleJanitor:
    """Periodically evicts rooms past their maximum age.

    Stale rooms go regardless of who is still connected; their connections are
    closed and any later request for the room is answered with RoomNotFound.
    """

    def __init__(
        self,
        *,
        store: RoomStore,
        protocol: SessionProtocol,
        max_age: timedelta,
        interval: float,
    ) -> None:
        self.store = store
        self.protocol = protocol
        self.max_age = max_age
        self.interval = interval
        self._task: asyncio.Task[None] | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def sweep(self, *, now: datetime | None = None) -> list[str]:
        now = now or datetime.now(tz=UTC)
        deleted: list[str] = []
        for room_id in self.store.room_ids():
            async with self.protocol.locked(room_id):
                if self.store.delete_if_stale(room_id, self.max_age, now=now) or self.store.delete_if_empty(room_id):
                    deleted.append(room_id)
                    await self.protocol.teardown_room(room_id)
        if deleted:
            logger.info("Janitor removed %d room(s): %s", len(deleted), deleted)
        return deleted

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            try:
                await self.sweep()
            except Exception:
                logger.exception("Room sweep failed")

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._run(), name="room-janitor")
        logger.debug("Janitor started (interval=%ss, max_age=%s)", self.interval, self.max_age)

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
