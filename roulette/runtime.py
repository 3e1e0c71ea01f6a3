from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta

from roulette.janitor import RoomLifecycleJanitor
from roulette.presence import PresenceTracker
from roulette.protocol import SessionProtocol
from roulette.room_store import RoomStore
from roulette.selector import RandomSelector
from roulette.settings import Settings
from roulette.websocket_hub import RoomHub


@dataclass(slots=True)
class Runtime:
    """Process-scoped state: every live room, binding and timer hangs off this.

    One instance per FastAPI app, built by `roulette.main.create_app` and
    closed by the app's lifespan.
    """

    settings: Settings
    store: RoomStore
    presence: PresenceTracker
    hub: RoomHub
    selector: RandomSelector
    protocol: SessionProtocol
    janitor: RoomLifecycleJanitor

    def start(self) -> None:
        self.janitor.start()

    async def aclose(self) -> None:
        await self.janitor.stop()
        self.protocol.close()
        self.presence.close()


def build_runtime(settings: Settings, *, selector: RandomSelector | None = None) -> Runtime:
    store = RoomStore()
    presence = PresenceTracker()
    hub = RoomHub()
    selector = selector or RandomSelector()
    protocol = SessionProtocol(store=store, presence=presence, hub=hub, selector=selector, settings=settings)
    janitor = RoomLifecycleJanitor(
        store=store,
        protocol=protocol,
        max_age=timedelta(seconds=settings.room_max_age_seconds),
        interval=settings.janitor_interval_seconds,
    )
    return Runtime(
        settings=settings,
        store=store,
        presence=presence,
        hub=hub,
        selector=selector,
        protocol=protocol,
        janitor=janitor,
    )
