"""Session models."""
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, Field

from app.services.agent.prompt import DEFAULT_AGENT

if TYPE_CHECKING:
    from app.services.realtime.upstream import UpstreamChannel


def utcnow() -> datetime:
    """Current UTC time (timezone aware)."""
    return datetime.now(timezone.utc)


class SessionStatus(str, Enum):
    """Lifecycle status of a client session."""

    DISCONNECTED = "DISCONNECTED"
    CONNECTING = "CONNECTING"
    CONNECTED = "CONNECTED"

    def __str__(self) -> str:
        """Return the string value of the status."""
        return self.value


# Allowed status transitions; same-status updates are treated as no-ops
ALLOWED_TRANSITIONS = {
    SessionStatus.DISCONNECTED: {SessionStatus.CONNECTING},
    SessionStatus.CONNECTING: {SessionStatus.CONNECTED, SessionStatus.DISCONNECTED},
    SessionStatus.CONNECTED: {SessionStatus.DISCONNECTED},
}


class ConversationTurn(BaseModel):
    """One text, audio or system message within a session's conversation."""

    id: str = Field(default_factory=lambda: f"turn_{uuid.uuid4().hex[:12]}")
    type: Literal["text", "audio", "system"] = "text"
    role: Literal["user", "assistant"] = "user"
    content: Optional[str] = None
    data: Optional[Union[bytes, str]] = None  # Raw or base64 encoded audio
    format: Optional[str] = None
    sample_rate: Optional[int] = None
    event: Optional[str] = None  # System turns only
    timestamp: datetime = Field(default_factory=utcnow)


class ConversationState(BaseModel):
    """Supervisor state for a session, created on its first processed message."""

    conversation_history: List[ConversationTurn] = []
    current_agent: str = DEFAULT_AGENT
    muted: bool = False
    last_activity: datetime = Field(default_factory=utcnow)

    def add_turn(self, turn: ConversationTurn) -> None:
        """Append a turn and refresh the activity timestamp."""
        self.conversation_history.append(turn)
        self.touch()

    def touch(self) -> None:
        """Refresh the activity timestamp."""
        self.last_activity = utcnow()

    def text_turns(self) -> List[Dict[str, Any]]:
        """Text turns in order, in the completion-call message shape."""
        return [
            {"type": "message", "role": turn.role, "content": turn.content or ""}
            for turn in self.conversation_history
            if turn.type == "text"
        ]


class Session:
    """Client session: identity, lifecycle status and the owned upstream channel."""

    def __init__(
        self,
        session_id: Optional[str] = None,
        user_id: Optional[str] = None,
        status: SessionStatus = SessionStatus.CONNECTING,
    ):
        now = utcnow()
        self.id = session_id or str(uuid.uuid4())
        self.user_id = user_id
        self.status = status
        self.created_at = now
        self.last_activity = now
        self.upstream: Optional["UpstreamChannel"] = None
        self.conversation: Optional[ConversationState] = None

    def status_payload(self) -> Dict[str, Any]:
        """Client-facing session status payload."""
        return {
            "status": self.status.value,
            "sessionId": self.id,
            "userId": self.user_id,
        }

    def __repr__(self) -> str:
        return f"Session(id={self.id!r}, user_id={self.user_id!r}, status={self.status.value})"
