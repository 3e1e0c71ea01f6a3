from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable

logger = logging.getLogger(__name__)


class CancellableTimer:
    """One-shot delayed callback running as an asyncio task.

    The handle is meant to be stored next to whatever it protects (a pending
    disconnect, a room's spin) so the owner can cancel it. Once the delay has
    elapsed the timer counts as fired and `cancel()` becomes a no-op; `stop()`
    interrupts it unconditionally (used at shutdown).
    """

    def __init__(self, delay: float, callback: Callable[[], Awaitable[None]], *, name: str | None = None) -> None:
        self.delay = delay
        self._callback = callback
        self._fired = False
        self._task: asyncio.Task[None] = asyncio.create_task(self._run(), name=name)

    @property
    def fired(self) -> bool:
        return self._fired

    @property
    def active(self) -> bool:
        return not self._task.done()

    async def _run(self) -> None:
        try:
            await asyncio.sleep(self.delay)
        except asyncio.CancelledError:
            return
        self._fired = True
        try:
            await self._callback()
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("timer callback failed (task=%s)", self._task.get_name())

    def cancel(self) -> bool:
        """Cancel the timer. Returns False if it had already fired or finished."""

        if self._fired or self._task.done():
            return False
        self._task.cancel()
        return True

    def stop(self) -> None:
        if not self._task.done():
            self._task.cancel()

    async def wait(self) -> None:
        """Wait for the timer to finish (fired, cancelled, or failed)."""

        try:
            await asyncio.shield(self._task)
        except asyncio.CancelledError:
            if not self._task.cancelled():
                raise
