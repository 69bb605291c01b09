"""Client WebSocket endpoint for realtime sessions."""
import json
import logging
from typing import Any
from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect

from app.core.dependencies import get_gateway
from app.services.gateway.relay import ClientConnection, ClientEvent, ErrorCode, RelayGateway, ServerEvent
from app.services.realtime.session_config import PCM16

router = APIRouter()
logger = logging.getLogger(__name__)


class WebSocketClient(ClientConnection):
    """Sends gateway events to a client as JSON envelopes."""

    def __init__(self, websocket: WebSocket):
        self.websocket = websocket
        self.closed = False

    async def emit(self, event: str, data: Any) -> None:
        if self.closed:
            return
        try:
            await self.websocket.send_json({"event": event, "data": data})
        except (WebSocketDisconnect, RuntimeError) as e:
            # Socket already closed by the client
            self.closed = True
            logger.debug(f"[WEBSOCKET] Dropped {event}, socket closed: {e}")


@router.websocket("/ws/realtime")
async def realtime_websocket(websocket: WebSocket, gateway: RelayGateway = Depends(get_gateway)):
    """Bridge one client socket onto a realtime session."""
    await websocket.accept()
    client = WebSocketClient(websocket)
    handler = gateway.open_connection(client)
    logger.info(
        f"[WEBSOCKET] Client connected - Client: {websocket.client.host if websocket.client else 'unknown'}"
    )

    try:
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                break

            if message.get("bytes") is not None:
                await handler.dispatch(
                    ClientEvent.SEND_AUDIO.value, {"audio": message["bytes"], "format": PCM16}
                )
                continue

            try:
                envelope = json.loads(message.get("text") or "")
            except ValueError:
                await client.emit(
                    ServerEvent.ERROR.value,
                    {"message": "Messages must be JSON objects", "code": ErrorCode.INVALID_EVENT.value},
                )
                continue
            if not isinstance(envelope, dict) or not isinstance(envelope.get("event"), str):
                await client.emit(
                    ServerEvent.ERROR.value,
                    {"message": "Messages need an 'event' name", "code": ErrorCode.INVALID_EVENT.value},
                )
                continue

            await handler.dispatch(envelope["event"], envelope.get("data"))
    except WebSocketDisconnect:
        pass
    finally:
        client.closed = True
        await gateway.close_connection(handler)
        logger.info("[WEBSOCKET] Client disconnected")
