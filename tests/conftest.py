from __future__ import annotations

import json
import random
from collections.abc import AsyncGenerator, Callable, Generator
from typing import Any
from uuid import uuid4

import pytest
import pytest_asyncio
from fastapi.testclient import TestClient

from roulette.protocol import ConnectionSession, SessionProtocol
from roulette.runtime import Runtime, build_runtime
from roulette.selector import RandomSelector
from roulette.settings import Settings


class FakeConnection:
    """Records what the server sends; stands in for a fastapi WebSocket."""

    def __init__(self) -> None:
        self.sent: list[dict[str, Any]] = []
        self.close_code: int | None = None

    async def send_json(self, data: Any, mode: str = "text") -> None:
        if self.close_code is not None:
            raise RuntimeError("connection closed")
        self.sent.append(data)

    async def close(self, code: int = 1000, reason: str | None = None) -> None:
        self.close_code = code


class RoomClient:
    def __init__(self, protocol: SessionProtocol) -> None:
        self.protocol = protocol
        self.ws = FakeConnection()
        self.session = ConnectionSession(connection_id=uuid4().hex, websocket=self.ws)

    async def send(self, type_: str, **fields: Any) -> None:
        await self.protocol.handle(self.session, json.dumps({"type": type_, **fields}))

    async def join(self, room_id: str, name: str, **fields: Any) -> None:
        await self.send("join_room", roomId=room_id, name=name, **fields)

    async def disconnect(self) -> None:
        await self.protocol.disconnect(self.session)

    def messages(self, type_: str | None = None) -> list[dict[str, Any]]:
        return [m for m in self.ws.sent if type_ is None or m["type"] == type_]

    def last(self, type_: str) -> dict[str, Any]:
        found = self.messages(type_)
        if not found:
            raise AssertionError(f"no {type_!r} message, got {[m['type'] for m in self.ws.sent]}")
        return found[-1]

    def clear(self) -> None:
        self.ws.sent.clear()


@pytest.fixture()
def fast_settings() -> Settings:
    return Settings(
        grace_period_seconds=0.05,
        spin_delay_seconds=0.02,
        room_max_age_seconds=60.0,
        janitor_interval_seconds=3600.0,
        log_level="DEBUG",
    )


@pytest_asyncio.fixture()
async def runtime(fast_settings: Settings) -> AsyncGenerator[Runtime, None]:
    rt = build_runtime(fast_settings, selector=RandomSelector(random.Random(1234)))
    yield rt
    await rt.aclose()


@pytest.fixture()
def new_client(runtime: Runtime) -> Callable[[], RoomClient]:
    def _make() -> RoomClient:
        return RoomClient(runtime.protocol)

    return _make


@pytest.fixture()
def client(fast_settings: Settings) -> Generator[TestClient, None, None]:
    from roulette.main import create_app

    app = create_app(fast_settings)
    with TestClient(app) as c:
        yield c
