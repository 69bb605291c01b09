"""Upstream realtime channel.

One UpstreamChannel owns exactly one WebSocket connection to the realtime
service for one session. Outbound intents are translated into upstream wire
messages; inbound messages are classified (see ``events.py``) and handed to the
``on_event`` callback in the order they arrive.
"""
import asyncio
import base64
import json
import logging
import uuid
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional
from urllib.parse import quote

from websockets.asyncio.client import connect as ws_connect
from websockets.exceptions import ConnectionClosed, WebSocketException

from app.services.realtime.events import (
    ConnectionClosed as ConnectionClosedEvent,
    UpstreamError,
    UpstreamEvent,
    UpstreamEventKind,
    classify_message,
)
from app.services.realtime.session_config import build_initial_session

logger = logging.getLogger(__name__)

EventHandler = Callable[[UpstreamEvent], Awaitable[None]]
Connector = Callable[..., Awaitable[Any]]

# 10MB for audio frames
MAX_MESSAGE_SIZE = 10 * 1024 * 1024
ABNORMAL_CLOSURE = 1006


class UpstreamConnectionError(ConnectionError):
    """The upstream handshake was rejected, timed out or failed at the transport."""


class ChannelState(str, Enum):
    """Upstream channel lifecycle."""

    UNINITIALIZED = "uninitialized"
    CONNECTING = "connecting"
    OPEN = "open"
    CLOSED = "closed"


class UpstreamChannel:
    """Bidirectional connection to the upstream realtime service for one session."""

    def __init__(
        self,
        session_id: str,
        api_key: str,
        on_event: EventHandler,
        model: str,
        voice: str,
        instructions: Optional[str] = None,
        tools: Optional[List[Dict[str, Any]]] = None,
        url: str = "wss://api.openai.com/v1/realtime",
        transcription_model: str = "gpt-4o-mini-transcribe",
        connect_timeout: float = 10.0,
        connector: Optional[Connector] = None,
    ):
        self.session_id = session_id
        self.model = model
        self.voice = voice
        self.instructions = instructions
        self.tools = list(tools or [])
        self.url = url
        self.transcription_model = transcription_model
        self.connect_timeout = connect_timeout
        self.session_config: Dict[str, Any] = {}
        self._api_key = api_key
        self._on_event = on_event
        self._connector = connector or ws_connect
        self._ws: Any = None
        self._reader: Optional[asyncio.Task] = None
        self._state = ChannelState.UNINITIALIZED

    @property
    def state(self) -> ChannelState:
        return self._state

    @property
    def connected(self) -> bool:
        """Whether outbound traffic is currently accepted."""
        return self._state == ChannelState.OPEN and self._ws is not None

    async def connect(self) -> None:
        """Open the upstream connection and send the initial session configuration.

        Raises:
            UpstreamConnectionError: the handshake was rejected, timed out, or the
                channel was disconnected while connecting.
        """
        if self._state != ChannelState.UNINITIALIZED:
            raise UpstreamConnectionError(
                f"Channel for session {self.session_id} cannot connect from state {self._state.value}"
            )

        self._state = ChannelState.CONNECTING
        url = f"{self.url}?model={quote(self.model)}"
        logger.info(f"[UPSTREAM] Connecting - SessionId: {self.session_id}, Model: {self.model}")

        try:
            ws = await asyncio.wait_for(
                self._connector(
                    url,
                    additional_headers={
                        "Authorization": f"Bearer {self._api_key}",
                        "OpenAI-Beta": "realtime=v1",
                    },
                    max_size=MAX_MESSAGE_SIZE,
                ),
                timeout=self.connect_timeout,
            )
        except asyncio.TimeoutError as e:
            self._state = ChannelState.CLOSED
            logger.error(f"[UPSTREAM] Handshake timed out - SessionId: {self.session_id}")
            raise UpstreamConnectionError(
                f"Upstream handshake timed out after {self.connect_timeout}s"
            ) from e
        except (WebSocketException, OSError) as e:
            self._state = ChannelState.CLOSED
            logger.error(
                f"[UPSTREAM] Handshake failed - SessionId: {self.session_id}, "
                f"Error: {type(e).__name__}: {str(e)}"
            )
            raise UpstreamConnectionError(f"Upstream handshake failed: {e}") from e

        if self._state == ChannelState.CLOSED:
            # disconnect() ran while the handshake was in flight
            await ws.close()
            raise UpstreamConnectionError("Channel was disconnected during the handshake")

        self._ws = ws
        self._state = ChannelState.OPEN
        logger.info(f"[UPSTREAM] Connected - SessionId: {self.session_id}")

        self.session_config = build_initial_session(
            model=self.model,
            voice=self.voice,
            instructions=self.instructions,
            tools=self.tools,
            transcription_model=self.transcription_model,
        )
        await self._send({"type": "session.update", "session": self.session_config})
        if self._state != ChannelState.OPEN:
            # Closed while sending the initial configuration
            raise UpstreamConnectionError("Upstream closed before the session was configured")

        self._reader = asyncio.create_task(self._read_loop())

    async def send_text(self, text: str) -> None:
        """Add a user text item to the conversation and request a response."""
        await self._send(
            {
                "type": "conversation.item.create",
                "item": {
                    "id": f"msg_{uuid.uuid4().hex[:16]}",
                    "type": "message",
                    "role": "user",
                    "content": [{"type": "input_text", "text": text}],
                },
            }
        )
        await self.create_response()

    async def send_audio_chunk(self, audio: bytes) -> None:
        """Append raw audio to the upstream input buffer.

        Chunks arriving while the channel is not open are dropped with a warning.
        """
        if not self.connected:
            logger.warning(
                f"[UPSTREAM] Dropping audio chunk, channel not connected - "
                f"SessionId: {self.session_id}, Bytes: {len(audio)}"
            )
            return
        await self._send(
            {
                "type": "input_audio_buffer.append",
                "audio": base64.b64encode(audio).decode("ascii"),
            }
        )

    async def commit_audio_input(self) -> None:
        await self._send({"type": "input_audio_buffer.commit"})

    async def clear_audio_input(self) -> None:
        await self._send({"type": "input_audio_buffer.clear"})

    async def create_response(self) -> None:
        await self._send({"type": "response.create"})

    async def cancel_response(self) -> None:
        await self._send({"type": "response.cancel"})

    async def send_function_call_output(self, call_id: str, output: str) -> None:
        """Return the result of a locally executed tool call."""
        await self._send(
            {
                "type": "conversation.item.create",
                "item": {
                    "type": "function_call_output",
                    "call_id": call_id,
                    "output": output,
                },
            }
        )

    async def update_configuration(self, config: Dict[str, Any]) -> None:
        """Send a session configuration update built by the caller."""
        if await self._send({"type": "session.update", "session": config}):
            self.session_config.update(config)

    async def disconnect(self) -> None:
        """Close the upstream connection. Safe to call any number of times."""
        if self._state == ChannelState.CLOSED and self._ws is None and self._reader is None:
            return

        self._state = ChannelState.CLOSED
        ws, self._ws = self._ws, None
        reader, self._reader = self._reader, None

        if ws is not None:
            try:
                await ws.close()
            except (WebSocketException, OSError) as e:
                logger.warning(
                    f"[UPSTREAM] Error while closing - SessionId: {self.session_id}, "
                    f"Error: {type(e).__name__}: {str(e)}"
                )
            logger.info(f"[UPSTREAM] Disconnected - SessionId: {self.session_id}")

        if reader is not None and reader is not asyncio.current_task():
            reader.cancel()
            try:
                await reader
            except asyncio.CancelledError:
                pass

    async def _send(self, message: Dict[str, Any]) -> bool:
        if not self.connected:
            logger.warning(
                f"[UPSTREAM] Channel not connected, dropping {message.get('type')} - "
                f"SessionId: {self.session_id}"
            )
            return False

        try:
            await self._ws.send(json.dumps(message))
        except ConnectionClosed as e:
            await self._on_transport_closed(e)
            return False

        if message["type"] != "input_audio_buffer.append":
            logger.debug(f"[UPSTREAM] -> {message['type']} - SessionId: {self.session_id}")
        return True

    async def _read_loop(self) -> None:
        ws = self._ws
        try:
            async for raw in ws:
                try:
                    message = json.loads(raw)
                except ValueError:
                    logger.error(f"[UPSTREAM] Unparseable message - SessionId: {self.session_id}")
                    continue
                if not isinstance(message, dict):
                    continue

                event = classify_message(message)
                if event.kind not in (
                    UpstreamEventKind.OUTPUT_AUDIO_DELTA,
                    UpstreamEventKind.OUTPUT_TRANSCRIPT_DELTA,
                ):
                    logger.debug(
                        f"[UPSTREAM] <- {message.get('type')} ({event.kind.value}) - "
                        f"SessionId: {self.session_id}"
                    )
                await self._dispatch(event)
        except ConnectionClosed as e:
            await self._on_transport_closed(e)
            return
        except (WebSocketException, OSError) as e:
            logger.error(
                f"[UPSTREAM] Transport error - SessionId: {self.session_id}, "
                f"Error: {type(e).__name__}: {str(e)}"
            )
            await self._close_from_remote(ABNORMAL_CLOSURE, str(e), error=str(e))
            return

        # Iteration ended on a clean close from the remote side
        await self._close_from_remote(
            getattr(ws, "close_code", None) or 1000,
            getattr(ws, "close_reason", None) or "",
        )

    async def _on_transport_closed(self, exc: ConnectionClosed) -> None:
        received = exc.rcvd
        code = received.code if received is not None else ABNORMAL_CLOSURE
        reason = received.reason if received is not None else str(exc)
        error = None if code in (1000, 1001) else f"Upstream connection closed ({code})"
        await self._close_from_remote(code, reason, error=error)

    async def _close_from_remote(self, code: int, reason: str, error: Optional[str] = None) -> None:
        if self._state == ChannelState.CLOSED:
            # Closed locally; nothing to report
            return

        self._state = ChannelState.CLOSED
        self._ws = None
        if self._reader is asyncio.current_task():
            self._reader = None
        logger.info(
            f"[UPSTREAM] Connection closed by remote - SessionId: {self.session_id}, "
            f"Code: {code}, Reason: {reason}"
        )

        if error:
            await self._dispatch(UpstreamError(message=error, fatal=True))
        await self._dispatch(ConnectionClosedEvent(code=code, reason=reason))

    async def _dispatch(self, event: UpstreamEvent) -> None:
        try:
            await self._on_event(event)
        except Exception as e:
            logger.error(
                f"[UPSTREAM] Event handler failed for {event.kind.value} - "
                f"SessionId: {self.session_id}, Error: {type(e).__name__}: {str(e)}",
                exc_info=True,
            )
