"""Upstream session configuration builders."""
from typing import Any, Dict, List, Optional

from pydantic import BaseModel

PCM16 = "pcm16"


class TurnDetection(BaseModel):
    """Server-side voice activity detection parameters."""

    type: str = "server_vad"
    threshold: float = 0.9
    prefix_padding_ms: int = 300
    silence_duration_ms: int = 500
    create_response: bool = True


def default_turn_detection() -> Dict[str, Any]:
    """Default VAD configuration used on connect and when unmuting."""
    return TurnDetection().model_dump()


def build_initial_session(
    model: str,
    voice: str,
    instructions: Optional[str],
    tools: Optional[List[Dict[str, Any]]],
    transcription_model: str,
) -> Dict[str, Any]:
    """Full session configuration sent right after the upstream opens."""
    return {
        "model": model,
        "voice": voice,
        "instructions": instructions,
        "tools": tools or [],
        "input_audio_format": PCM16,
        "output_audio_format": PCM16,
        "input_audio_transcription": {"model": transcription_model},
        "turn_detection": default_turn_detection(),
    }


def build_mute_update(muted: bool) -> Dict[str, Any]:
    """Configuration update toggling VAD for mute/unmute."""
    return {"turn_detection": None if muted else default_turn_detection()}
