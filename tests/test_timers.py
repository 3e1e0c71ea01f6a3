from __future__ import annotations

import asyncio

import pytest

from roulette.timers import CancellableTimer


@pytest.mark.asyncio
async def test_timer_fires_once() -> None:
    calls: list[int] = []

    async def cb() -> None:
        calls.append(1)

    timer = CancellableTimer(0.01, cb)
    assert timer.active
    await timer.wait()

    assert calls == [1]
    assert timer.fired
    assert not timer.active
    assert timer.cancel() is False


@pytest.mark.asyncio
async def test_cancel_before_firing() -> None:
    calls: list[int] = []

    async def cb() -> None:
        calls.append(1)

    timer = CancellableTimer(0.05, cb)
    assert timer.cancel() is True
    await timer.wait()
    await asyncio.sleep(0.06)

    assert calls == []
    assert not timer.fired


@pytest.mark.asyncio
async def test_failing_callback_is_logged_not_raised(caplog: pytest.LogCaptureFixture) -> None:
    async def cb() -> None:
        raise RuntimeError("boom")

    timer = CancellableTimer(0, cb, name="failing")
    await timer.wait()

    assert timer.fired
    assert "timer callback failed" in caplog.text
