"""Inbound upstream event taxonomy."""
from enum import Enum
from typing import Annotated, Any, Dict, Literal, Optional, Union

from pydantic import BaseModel, Field


class UpstreamEventKind(str, Enum):
    """Kinds of event emitted by an upstream channel."""

    CONNECTION_ESTABLISHED = "connection_established"
    INPUT_AUDIO_TRANSCRIBED = "input_audio_transcribed"
    OUTPUT_AUDIO_DELTA = "output_audio_delta"
    OUTPUT_AUDIO_DONE = "output_audio_done"
    OUTPUT_TRANSCRIPT_DELTA = "output_transcript_delta"
    OUTPUT_TRANSCRIPT_DONE = "output_transcript_done"
    FUNCTION_CALL = "function_call"
    UPSTREAM_ERROR = "upstream_error"
    CONNECTION_CLOSED = "connection_closed"
    OTHER = "other"


class _Event(BaseModel):
    raw: Dict[str, Any] = {}


class ConnectionEstablished(_Event):
    kind: Literal[UpstreamEventKind.CONNECTION_ESTABLISHED] = UpstreamEventKind.CONNECTION_ESTABLISHED
    upstream_session_id: Optional[str] = None


class InputAudioTranscribed(_Event):
    kind: Literal[UpstreamEventKind.INPUT_AUDIO_TRANSCRIBED] = UpstreamEventKind.INPUT_AUDIO_TRANSCRIBED
    text: str = ""
    item_id: Optional[str] = None


class OutputAudioDelta(_Event):
    kind: Literal[UpstreamEventKind.OUTPUT_AUDIO_DELTA] = UpstreamEventKind.OUTPUT_AUDIO_DELTA
    audio: str = ""  # base64 PCM16 fragment
    item_id: Optional[str] = None
    response_id: Optional[str] = None


class OutputAudioDone(_Event):
    kind: Literal[UpstreamEventKind.OUTPUT_AUDIO_DONE] = UpstreamEventKind.OUTPUT_AUDIO_DONE
    item_id: Optional[str] = None
    response_id: Optional[str] = None


class OutputTranscriptDelta(_Event):
    kind: Literal[UpstreamEventKind.OUTPUT_TRANSCRIPT_DELTA] = UpstreamEventKind.OUTPUT_TRANSCRIPT_DELTA
    delta: str = ""
    item_id: Optional[str] = None


class OutputTranscriptDone(_Event):
    kind: Literal[UpstreamEventKind.OUTPUT_TRANSCRIPT_DONE] = UpstreamEventKind.OUTPUT_TRANSCRIPT_DONE
    transcript: str = ""
    item_id: Optional[str] = None


class FunctionCall(_Event):
    kind: Literal[UpstreamEventKind.FUNCTION_CALL] = UpstreamEventKind.FUNCTION_CALL
    call_id: str
    name: str
    arguments: str = "{}"


class UpstreamError(_Event):
    kind: Literal[UpstreamEventKind.UPSTREAM_ERROR] = UpstreamEventKind.UPSTREAM_ERROR
    message: str
    code: Optional[str] = None
    fatal: bool = False


class ConnectionClosed(_Event):
    kind: Literal[UpstreamEventKind.CONNECTION_CLOSED] = UpstreamEventKind.CONNECTION_CLOSED
    code: int = 1000
    reason: str = ""


class OtherEvent(_Event):
    kind: Literal[UpstreamEventKind.OTHER] = UpstreamEventKind.OTHER
    type: str = "unknown"


UpstreamEvent = Annotated[
    Union[
        ConnectionEstablished,
        InputAudioTranscribed,
        OutputAudioDelta,
        OutputAudioDone,
        OutputTranscriptDelta,
        OutputTranscriptDone,
        FunctionCall,
        UpstreamError,
        ConnectionClosed,
        OtherEvent,
    ],
    Field(discriminator="kind"),
]

# Upstream error codes after which the upstream session cannot continue
FATAL_ERROR_CODES = {"session_expired", "invalid_api_key", "insufficient_quota"}


def classify_message(message: Dict[str, Any]) -> UpstreamEvent:
    """Classify one inbound upstream message into the internal taxonomy.

    Both the beta (``response.audio.*``) and GA (``response.output_audio.*``)
    spellings are recognized; anything else is passed through as OtherEvent.
    """
    message_type = message.get("type", "")

    if message_type == "session.created":
        session = message.get("session") or {}
        return ConnectionEstablished(upstream_session_id=session.get("id"), raw=message)

    if message_type == "conversation.item.input_audio_transcription.completed":
        return InputAudioTranscribed(
            text=message.get("transcript") or "",
            item_id=message.get("item_id"),
            raw=message,
        )

    if message_type in ("response.audio.delta", "response.output_audio.delta"):
        return OutputAudioDelta(
            audio=message.get("delta") or "",
            item_id=message.get("item_id"),
            response_id=message.get("response_id"),
            raw=message,
        )

    if message_type in ("response.audio.done", "response.output_audio.done"):
        return OutputAudioDone(
            item_id=message.get("item_id"),
            response_id=message.get("response_id"),
            raw=message,
        )

    if message_type in ("response.audio_transcript.delta", "response.output_audio_transcript.delta"):
        return OutputTranscriptDelta(
            delta=message.get("delta") or "",
            item_id=message.get("item_id"),
            raw=message,
        )

    if message_type in ("response.audio_transcript.done", "response.output_audio_transcript.done"):
        return OutputTranscriptDone(
            transcript=message.get("transcript") or "",
            item_id=message.get("item_id"),
            raw=message,
        )

    if message_type == "response.function_call_arguments.done" and message.get("call_id"):
        return FunctionCall(
            call_id=message["call_id"],
            name=message.get("name") or "",
            arguments=message.get("arguments") or "{}",
            raw=message,
        )

    if message_type == "error":
        error = message.get("error") or {}
        code = error.get("code")
        return UpstreamError(
            message=error.get("message") or "Upstream error",
            code=code,
            fatal=code in FATAL_ERROR_CODES,
            raw=message,
        )

    return OtherEvent(type=message_type or "unknown", raw=message)
