import logging
from typing import Any

from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from fastapi.websockets import WebSocketState

from settings import get_settings
from trip import Trip

logger = logging.getLogger(__name__)

router = APIRouter()


def extract_api_key_and_protocol(websocket: WebSocket) -> tuple[str | None, str | None]:
    """Extract API key and full protocol from Sec-WebSocket-Protocol header.

    Expected format: apikey.<key>
    Returns: (api_key, full_protocol) - both needed for proper handshake
    """
    protocol_header = websocket.headers.get("sec-websocket-protocol")
    if protocol_header:
        protocols = [p.strip() for p in protocol_header.split(",")]
        for protocol in protocols:
            if protocol.startswith("apikey."):
                return protocol.split(".", 1)[1], protocol
    return None, None


def trip_message(trip: Trip | None) -> dict[str, Any]:
    return {"type": "trip", "data": trip.model_dump(mode="json") if trip is not None else None}


class ConnectionManager:
    """Manages WebSocket connections for real-time trip updates."""

    def __init__(self) -> None:
        self.active_connections: set[WebSocket] = set()

    async def connect(self, websocket: WebSocket, subprotocol: str | None = None) -> None:
        await websocket.accept(subprotocol=subprotocol)
        self.active_connections.add(websocket)

    def disconnect(self, websocket: WebSocket) -> None:
        self.active_connections.discard(websocket)

    async def send_message(self, websocket: WebSocket, message: dict[str, Any]) -> None:
        if websocket.application_state == WebSocketState.CONNECTED:
            await websocket.send_json(message)

    async def broadcast(self, message: dict[str, Any]) -> None:
        for connection in list(self.active_connections):
            try:
                await self.send_message(connection, message)
            except (WebSocketDisconnect, RuntimeError):
                logger.debug("Dropping closed WebSocket connection")
                self.disconnect(connection)

    async def broadcast_trip(self, trip: Trip | None) -> None:
        await self.broadcast(trip_message(trip))


@router.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket) -> None:
    api_key, subprotocol = extract_api_key_and_protocol(websocket)
    settings = get_settings()

    if not api_key or api_key != settings.api.key:
        await websocket.close(code=1008)
        return

    manager: ConnectionManager = websocket.app.state.connection_manager
    await manager.connect(websocket, subprotocol=subprotocol)

    try:
        controller = websocket.app.state.controller
        await manager.send_message(websocket, trip_message(controller.trip))

        while True:
            await websocket.receive_text()

    except WebSocketDisconnect:
        manager.disconnect(websocket)
