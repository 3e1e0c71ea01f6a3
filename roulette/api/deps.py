from __future__ import annotations

from fastapi.requests import HTTPConnection

from roulette.runtime import Runtime


def get_runtime(conn: HTTPConnection) -> Runtime:
    # Works for both HTTP requests and WebSockets.
    return conn.app.state.runtime
