from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from roulette.api.routes import roulette_error_handler, router
from roulette.errors import RouletteError
from roulette.runtime import build_runtime
from roulette.selector import RandomSelector
from roulette.settings import Settings, load_settings

APP_NAME = "coffee-roulette"
APP_VERSION = "0.1.0"

logger = logging.getLogger(__name__)


def create_app(settings: Settings | None = None, *, selector: RandomSelector | None = None) -> FastAPI:
    settings = settings or load_settings()
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    runtime = build_runtime(settings, selector=selector)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        runtime.start()
        yield
        await runtime.aclose()

    app = FastAPI(title=APP_NAME, version=APP_VERSION, lifespan=lifespan)
    app.state.runtime = runtime

    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(settings.cors_origins),
        allow_methods=["GET", "POST"],
        allow_headers=["*"],
    )
    app.add_exception_handler(RouletteError, roulette_error_handler)
    app.include_router(router)

    @app.get("/info")
    async def info() -> dict[str, str]:
        return {"name": APP_NAME, "version": APP_VERSION}

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=app.state.runtime.settings.port)
