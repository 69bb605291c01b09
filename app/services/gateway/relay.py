"""Relay gateway between client connections and upstream realtime channels.

Each client connection gets a ConnectionHandler. The handler owns at most one
session (and so at most one upstream channel) at a time, translates client
events into UpstreamChannel calls, and re-emits upstream events to the client.
"""
import json
import logging
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional, Set

from pydantic import ValidationError

from app.core.config import settings
from app.services.agent.orchestrator import AgentMessage, ConversationOrchestrator
from app.services.realtime.events import UpstreamEvent, UpstreamEventKind
from app.services.realtime.session_config import PCM16, build_mute_update
from app.services.realtime.upstream import UpstreamChannel, UpstreamConnectionError
from app.services.session.models import Session, SessionStatus
from app.services.session.registry import SessionRegistry
from app.services.speech.audio import AudioValidationError, normalize_audio_payload
from app.services.gateway.worker import SupervisorWorker

logger = logging.getLogger(__name__)


class ClientEvent(str, Enum):
    """Events a client may send."""

    JOIN_SESSION = "join_session"
    SEND_TEXT = "send_text"
    SEND_AUDIO = "send_audio"
    SEND_MESSAGE = "send_message"
    COMMIT_AUDIO = "commit_audio"
    CLEAR_AUDIO = "clear_audio"
    INTERRUPT = "interrupt"
    MUTE = "mute"
    DISCONNECT_SESSION = "disconnect_session"
    GET_SESSION_INFO = "get_session_info"
    GET_HISTORY = "get_history"
    SWITCH_AGENT = "switch_agent"


class ServerEvent(str, Enum):
    """Events sent to the client."""

    SESSION_STATUS = "session_status"
    TRANSCRIPT = "transcript"
    AUDIO_RESPONSE = "audio_response"
    REALTIME_EVENT = "realtime_event"
    AGENT_RESPONSE = "agent_response"
    SESSION_INFO = "session_info"
    HISTORY = "history"
    ERROR = "error"


class ErrorCode(str, Enum):
    """Codes carried by client-visible error events."""

    SESSION_NOT_CONNECTED = "SESSION_NOT_CONNECTED"
    SESSION_FAILED = "SESSION_FAILED"
    INVALID_AUDIO = "INVALID_AUDIO"
    INVALID_EVENT = "INVALID_EVENT"
    UPSTREAM_ERROR = "UPSTREAM_ERROR"
    INTERNAL_ERROR = "INTERNAL_ERROR"


class ClientConnection:
    """Client side of the transport. Implementations deliver events to one client."""

    async def emit(self, event: str, data: Any) -> None:
        raise NotImplementedError


ChannelFactory = Callable[..., UpstreamChannel]


def default_channel_factory(**kwargs: Any) -> UpstreamChannel:
    """Build an UpstreamChannel from application settings."""
    return UpstreamChannel(
        api_key=settings.openai_api_key,
        model=settings.realtime_model,
        voice=settings.realtime_voice,
        url=settings.realtime_url,
        transcription_model=settings.input_transcription_model,
        connect_timeout=settings.realtime_connect_timeout,
        **kwargs,
    )


class ConnectionHandler:
    """Per-connection state machine bridging one client and its session."""

    def __init__(self, gateway: "RelayGateway", client: ClientConnection):
        self.gateway = gateway
        self.client = client
        self.session: Optional[Session] = None
        self.worker: Optional[SupervisorWorker] = None
        self._handlers: Dict[ClientEvent, Callable[[Any], Awaitable[None]]] = {
            ClientEvent.JOIN_SESSION: self.join_session,
            ClientEvent.SEND_TEXT: self.send_text,
            ClientEvent.SEND_AUDIO: self.send_audio,
            ClientEvent.SEND_MESSAGE: self.send_message,
            ClientEvent.COMMIT_AUDIO: self.commit_audio,
            ClientEvent.CLEAR_AUDIO: self.clear_audio,
            ClientEvent.INTERRUPT: self.interrupt,
            ClientEvent.MUTE: self.mute,
            ClientEvent.DISCONNECT_SESSION: self.disconnect_session,
            ClientEvent.GET_SESSION_INFO: self.get_session_info,
            ClientEvent.GET_HISTORY: self.get_history,
            ClientEvent.SWITCH_AGENT: self.switch_agent,
        }

    @property
    def registry(self) -> SessionRegistry:
        return self.gateway.registry

    @property
    def orchestrator(self) -> ConversationOrchestrator:
        return self.gateway.orchestrator

    async def dispatch(self, event: str, data: Any = None) -> None:
        """Handle one client event. Failures become client-visible errors."""
        try:
            client_event = ClientEvent(event)
        except ValueError:
            await self._error(f"Unknown event: {event}", ErrorCode.INVALID_EVENT)
            return

        if self.session is not None:
            self.registry.update_last_activity(self.session.id)

        try:
            await self._handlers[client_event](data)
        except Exception as e:
            logger.error(
                f"[GATEWAY] Failed to handle {client_event.value} - "
                f"SessionId: {self.session.id if self.session else None}, "
                f"Error: {type(e).__name__}: {str(e)}",
                exc_info=True,
            )
            await self._error("Failed to process the request", ErrorCode.INTERNAL_ERROR)

    async def join_session(self, data: Any) -> None:
        """Create a session and connect its upstream channel."""
        if self.session is not None:
            # One live upstream channel per connection
            await self._teardown()

        user_id = data.get("userId") if isinstance(data, dict) else None
        session = self.registry.create(Session(user_id=user_id))
        self.session = session
        self.gateway.bind(session.id, self)

        realtime_config = self.orchestrator.get_realtime_config()

        async def on_event(event: UpstreamEvent) -> None:
            await self._on_upstream_event(session, event)

        channel = self.gateway.channel_factory(
            session_id=session.id,
            on_event=on_event,
            instructions=realtime_config["instructions"],
            tools=realtime_config["tools"],
        )
        session.upstream = channel

        try:
            await channel.connect()
        except UpstreamConnectionError as e:
            logger.error(f"[GATEWAY] Session failed to connect - SessionId: {session.id}, Error: {str(e)}")
            await self._teardown()
            await self._error("Failed to create session", ErrorCode.SESSION_FAILED)
            return

        if self.session is not session:
            # Torn down while the handshake was in flight
            await channel.disconnect()
            return

        self.registry.update_status(session.id, SessionStatus.CONNECTED)
        logger.info(
            f"[GATEWAY] Session connected - SessionId: {session.id}, "
            f"UserId: {user_id or 'anonymous'}"
        )
        await self.client.emit(ServerEvent.SESSION_STATUS.value, session.status_payload())

    async def send_text(self, data: Any) -> None:
        session = await self._require_session()
        if session is None:
            return

        text = data.get("text") if isinstance(data, dict) else data
        if not isinstance(text, str) or not text.strip():
            await self._error("Text message must be a non-empty string", ErrorCode.INVALID_EVENT)
            return

        logger.info(f"[GATEWAY] Text message - SessionId: {session.id}, Text: '{text}'")
        await session.upstream.send_text(text)
        if self.session is not session:
            # Upstream closed while sending; the session is gone
            return

        if self.gateway.supervisor_enabled:
            self._submit_supervisor_turn(session, AgentMessage(type="text", content=text))

    async def send_audio(self, data: Any) -> None:
        session = await self._require_session()
        if session is None:
            return

        payload = data.get("audio") if isinstance(data, dict) else data
        try:
            audio = normalize_audio_payload(payload)
        except AudioValidationError as e:
            logger.warning(f"[GATEWAY] Rejected audio - SessionId: {session.id}: {str(e)}")
            await self._error("Unsupported audio data format", ErrorCode.INVALID_AUDIO)
            return

        await session.upstream.send_audio_chunk(audio)

    async def send_message(self, data: Any) -> None:
        """Route a text or audio turn through the supervisor."""
        session = await self._require_session()
        if session is None:
            return

        try:
            message = AgentMessage.model_validate(data if isinstance(data, dict) else {})
        except ValidationError:
            await self._error("Invalid message", ErrorCode.INVALID_EVENT)
            return
        if message.type == "text" and not message.content:
            await self._error("Text message must have content", ErrorCode.INVALID_EVENT)
            return
        if message.type == "audio" and not message.data:
            await self._error("Audio message must have data", ErrorCode.INVALID_AUDIO)
            return

        self._submit_supervisor_turn(session, message)

    async def commit_audio(self, data: Any = None) -> None:
        session = await self._require_session()
        if session is None:
            return
        # A commit alone never produces a response
        await session.upstream.commit_audio_input()
        if self.session is not session:
            return
        await session.upstream.create_response()

    async def clear_audio(self, data: Any = None) -> None:
        session = await self._require_session()
        if session is None:
            return
        await session.upstream.clear_audio_input()

    async def interrupt(self, data: Any = None) -> None:
        session = await self._require_session()
        if session is None:
            return
        logger.info(f"[GATEWAY] Interrupt - SessionId: {session.id}")
        await session.upstream.cancel_response()
        if self.worker is not None:
            self.worker.cancel_current()

    async def mute(self, data: Any) -> None:
        session = await self._require_session()
        if session is None:
            return

        muted = data.get("muted") if isinstance(data, dict) else data
        if not isinstance(muted, bool):
            await self._error("Mute flag must be a boolean", ErrorCode.INVALID_EVENT)
            return

        logger.info(f"[GATEWAY] Mute - SessionId: {session.id}, Muted: {muted}")
        await session.upstream.update_configuration(build_mute_update(muted))
        if self.session is not session:
            return
        self.orchestrator.set_muted(session.id, muted)

    async def disconnect_session(self, data: Any = None) -> None:
        if self.session is None:
            return
        session = self.session
        logger.info(f"[GATEWAY] Disconnect requested - SessionId: {session.id}")
        await self._teardown()
        await self.client.emit(ServerEvent.SESSION_STATUS.value, session.status_payload())

    async def get_session_info(self, data: Any = None) -> None:
        session = await self._require_session()
        if session is None:
            return
        info = self.orchestrator.get_session_info(session.id) or {
            "sessionId": session.id,
            "currentAgent": None,
            "messageCount": 0,
            "lastActivity": None,
            "muted": False,
        }
        await self.client.emit(ServerEvent.SESSION_INFO.value, {**info, "status": session.status.value})

    async def get_history(self, data: Any = None) -> None:
        session = await self._require_session()
        if session is None:
            return
        history = [
            turn.model_dump(mode="json", exclude={"data"})
            for turn in self.orchestrator.get_history(session.id)
        ]
        await self.client.emit(ServerEvent.HISTORY.value, {"sessionId": session.id, "messages": history})

    async def switch_agent(self, data: Any) -> None:
        session = await self._require_session()
        if session is None:
            return
        target = data.get("agent") if isinstance(data, dict) else data
        if not isinstance(target, str) or not self.orchestrator.switch_agent(session.id, target):
            await self._error(f"Cannot switch to agent: {target}", ErrorCode.INVALID_EVENT)
            return
        await self.get_session_info()

    async def close(self) -> None:
        """Transport-level disconnect: release everything this connection owns."""
        if self.session is not None:
            logger.info(f"[GATEWAY] Client disconnected - SessionId: {self.session.id}")
        await self._teardown()

    async def session_evicted(self, session: Session) -> None:
        """Called by the gateway after the registry evicted this connection's session."""
        if self.session is not session:
            return
        await self._teardown()
        await self.client.emit(ServerEvent.SESSION_STATUS.value, session.status_payload())

    async def _on_upstream_event(self, session: Session, event: UpstreamEvent) -> None:
        if self.session is not session:
            # Late event from a channel that has been replaced
            return

        kind = event.kind
        if kind == UpstreamEventKind.CONNECTION_ESTABLISHED:
            logger.info(
                f"[GATEWAY] Upstream session established - SessionId: {session.id}, "
                f"UpstreamId: {event.upstream_session_id}"
            )
        elif kind == UpstreamEventKind.INPUT_AUDIO_TRANSCRIBED:
            await self.client.emit(ServerEvent.TRANSCRIPT.value, {"text": event.text, "role": "user"})
        elif kind == UpstreamEventKind.OUTPUT_TRANSCRIPT_DONE:
            await self.client.emit(
                ServerEvent.TRANSCRIPT.value, {"text": event.transcript, "role": "assistant"}
            )
        elif kind == UpstreamEventKind.OUTPUT_AUDIO_DELTA:
            await self.client.emit(ServerEvent.AUDIO_RESPONSE.value, {"audio": event.audio})
        elif kind == UpstreamEventKind.UPSTREAM_ERROR:
            logger.error(f"[GATEWAY] Upstream error - SessionId: {session.id}, Message: {event.message}")
            await self._error(event.message, ErrorCode.UPSTREAM_ERROR)
        elif kind == UpstreamEventKind.CONNECTION_CLOSED:
            logger.info(
                f"[GATEWAY] Upstream closed - SessionId: {session.id}, "
                f"Code: {event.code}, Reason: {event.reason}"
            )
            await self._teardown()
            await self.client.emit(ServerEvent.SESSION_STATUS.value, session.status_payload())
        elif kind == UpstreamEventKind.FUNCTION_CALL:
            await self.client.emit(ServerEvent.REALTIME_EVENT.value, event.raw)
            await self._run_upstream_tool(session, event.call_id, event.name, event.arguments)
        else:
            await self.client.emit(ServerEvent.REALTIME_EVENT.value, event.raw)

    async def _run_upstream_tool(self, session: Session, call_id: str, name: str, arguments: str) -> None:
        result = self.orchestrator.tools.execute(name, arguments)
        logger.info(f"[GATEWAY] Upstream tool call {name} - SessionId: {session.id}")
        await session.upstream.send_function_call_output(call_id, json.dumps(result, ensure_ascii=False))
        if self.session is not session:
            return
        await session.upstream.create_response()

    def _submit_supervisor_turn(self, session: Session, message: AgentMessage) -> None:
        if self.worker is None:
            self.worker = SupervisorWorker(session.id)

        async def job() -> None:
            reply = await self.orchestrator.process_message(session.id, message)
            if self.session is session:
                await self.client.emit(ServerEvent.AGENT_RESPONSE.value, reply.model_dump())

        self.worker.submit(job)

    async def _require_session(self) -> Optional[Session]:
        session = self.session
        if (
            session is None
            or session.status != SessionStatus.CONNECTED
            or session.upstream is None
            or not session.upstream.connected
        ):
            await self._error("Session is not connected", ErrorCode.SESSION_NOT_CONNECTED)
            return None
        return session

    async def _teardown(self) -> None:
        session, self.session = self.session, None
        worker, self.worker = self.worker, None
        if worker is not None:
            await worker.stop()
        if session is None:
            return

        self.gateway.unbind(session.id, self)
        if session.upstream is not None:
            await session.upstream.disconnect()
        self.registry.update_status(session.id, SessionStatus.DISCONNECTED)
        session.status = SessionStatus.DISCONNECTED
        self.registry.remove(session.id)

    async def _error(self, message: str, code: ErrorCode) -> None:
        await self.client.emit(ServerEvent.ERROR.value, {"message": message, "code": code.value})


class RelayGateway:
    """Accepts client connections and owns the registry, orchestrator and sweeps."""

    def __init__(
        self,
        registry: SessionRegistry,
        orchestrator: ConversationOrchestrator,
        channel_factory: Optional[ChannelFactory] = None,
        supervisor_enabled: Optional[bool] = None,
    ):
        self.registry = registry
        self.registry.on_evict = self._on_session_evicted
        self.orchestrator = orchestrator
        self.channel_factory = channel_factory or default_channel_factory
        self.supervisor_enabled = (
            settings.supervisor_enabled if supervisor_enabled is None else supervisor_enabled
        )
        self._owners: Dict[str, ConnectionHandler] = {}
        self._connections: Set[ConnectionHandler] = set()

    def start(self) -> None:
        """Start the idle sweeps."""
        self.registry.start()
        self.orchestrator.start()
        logger.info("[GATEWAY] Started")

    async def stop(self) -> None:
        """Close every connection's session and stop the sweeps."""
        for handler in list(self._connections):
            await handler.close()
        await self.registry.stop()
        await self.orchestrator.stop()
        logger.info("[GATEWAY] Stopped")

    def open_connection(self, client: ClientConnection) -> ConnectionHandler:
        """Register a new client connection."""
        handler = ConnectionHandler(self, client)
        self._connections.add(handler)
        return handler

    async def close_connection(self, handler: ConnectionHandler) -> None:
        """Release a client connection and its session."""
        self._connections.discard(handler)
        await handler.close()

    @property
    def connection_count(self) -> int:
        return len(self._connections)

    def bind(self, session_id: str, handler: ConnectionHandler) -> None:
        self._owners[session_id] = handler

    def unbind(self, session_id: str, handler: ConnectionHandler) -> None:
        if self._owners.get(session_id) is handler:
            del self._owners[session_id]

    async def _on_session_evicted(self, session: Session) -> None:
        handler = self._owners.pop(session.id, None)
        if handler is not None:
            await handler.session_evicted(session)
        elif session.upstream is not None:
            await session.upstream.disconnect()
