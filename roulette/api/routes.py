from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Request, WebSocket, WebSocketDisconnect, status
from fastapi.responses import JSONResponse

from roulette.api.deps import get_runtime
from roulette.api.models import ErrorResponse, RoomCreatedResponse, RoomCreateRequest, RoomPublicView
from roulette.errors import InvalidName, RoomNotFound, RouletteError, Unauthorized
from roulette.runtime import Runtime

logger = logging.getLogger(__name__)

router = APIRouter()

STATUS_BY_ERROR: dict[type[RouletteError], int] = {
    InvalidName: status.HTTP_400_BAD_REQUEST,
    RoomNotFound: status.HTTP_404_NOT_FOUND,
    Unauthorized: status.HTTP_403_FORBIDDEN,
}


async def roulette_error_handler(request: Request, exc: RouletteError) -> JSONResponse:
    code = STATUS_BY_ERROR.get(type(exc), status.HTTP_409_CONFLICT)
    return JSONResponse(status_code=code, content=exc.as_payload())


@router.websocket("/ws")
async def room_ws(websocket: WebSocket, runtime: Runtime = Depends(get_runtime)) -> None:
    await websocket.accept()
    protocol = runtime.protocol

    async with protocol.connection(websocket) as session:
        try:
            while True:
                message = await websocket.receive()
                if message["type"] == "websocket.disconnect":
                    raise WebSocketDisconnect(message.get("code", 1000), message.get("reason"))
                # Text and binary frames carry the same JSON.
                raw = message.get("text")
                if raw is None:
                    raw = message.get("bytes") or b""
                await protocol.handle(session, raw)
        except WebSocketDisconnect as e:
            logger.debug("Connection %s closed (code=%s)", session.connection_id, e.code)


@router.get("/healthcheck")
async def healthcheck() -> dict[str, str]:
    return {"status": "ok"}


@router.post(
    "/rooms",
    response_model=RoomCreatedResponse,
    status_code=status.HTTP_201_CREATED,
    responses={400: {"model": ErrorResponse}},
)
async def create_room_route(payload: RoomCreateRequest, runtime: Runtime = Depends(get_runtime)) -> RoomCreatedResponse:
    room_id, owner_token = runtime.store.create_room(payload.owner_name)
    return RoomCreatedResponse(room_id=room_id, owner_token=owner_token)


@router.get("/rooms/{room_id}", response_model=RoomPublicView, responses={404: {"model": ErrorResponse}})
async def get_room_route(room_id: str, runtime: Runtime = Depends(get_runtime)) -> RoomPublicView:
    return runtime.store.get_public_view(room_id)
