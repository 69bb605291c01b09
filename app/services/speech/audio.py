"""Audio payload helpers: normalization, WAV header parsing and quality checks."""
import base64
import binascii
import logging
import struct
from typing import Any, List, Optional

from pydantic import BaseModel

logger = logging.getLogger(__name__)

MIN_AUDIO_BYTES = 1024
MAX_AUDIO_BYTES = 25 * 1024 * 1024

SUPPORTED_FORMATS = {"wav", "mp3", "mp4", "m4a", "ogg", "webm", "flac", "pcm", "pcm16"}

# PCM has no container of its own, it is uploaded as WAV
_EXTENSIONS = {
    "wav": "wav",
    "webm": "webm",
    "mp3": "mp3",
    "mp4": "mp4",
    "m4a": "m4a",
    "ogg": "ogg",
    "flac": "flac",
    "pcm": "wav",
    "pcm16": "wav",
}

_MIME_TYPES = {
    "wav": "audio/wav",
    "webm": "audio/webm",
    "mp3": "audio/mpeg",
    "mp4": "audio/mp4",
    "m4a": "audio/mp4",
    "ogg": "audio/ogg",
    "flac": "audio/flac",
}

# Fallback duration estimate: 44.1kHz, 16-bit, mono
DEFAULT_BYTES_PER_SECOND = 44100 * 2


class AudioValidationError(ValueError):
    """A client audio payload could not be turned into raw bytes."""


class WavInfo(BaseModel):
    """Fields read from a canonical 44-byte WAV header."""

    sample_rate: Optional[int] = None
    byte_rate: Optional[int] = None
    data_size: Optional[int] = None
    duration: Optional[float] = None


class AudioQualityReport(BaseModel):
    """Result of the pre-transcription quality check."""

    is_valid: bool
    issues: List[str] = []
    recommendations: List[str] = []


def normalize_audio_payload(payload: Any) -> bytes:
    """Turn a transport payload into raw audio bytes.

    Accepts binary buffers (bytes, bytearray, memoryview) and base64 text, the
    form binary data takes inside JSON frames.
    """
    if isinstance(payload, bytes):
        return payload
    if isinstance(payload, (bytearray, memoryview)):
        return bytes(payload)
    if isinstance(payload, str):
        try:
            return base64.b64decode(payload, validate=True)
        except (binascii.Error, ValueError) as e:
            raise AudioValidationError("Audio payload is not valid base64") from e
    raise AudioValidationError(f"Unsupported audio payload type: {type(payload).__name__}")


def is_supported_format(audio_format: str) -> bool:
    """Check the format against the transcription allowlist."""
    return audio_format.lower() in SUPPORTED_FORMATS


def file_extension(audio_format: str) -> str:
    """File extension used when uploading audio of the given format."""
    return _EXTENSIONS.get(audio_format.lower(), "wav")


def mime_type(filename: str) -> str:
    """MIME type for an audio filename."""
    extension = filename.rsplit(".", 1)[-1].lower() if "." in filename else ""
    return _MIME_TYPES.get(extension, "audio/wav")


def parse_wav_header(audio: bytes) -> WavInfo:
    """Read sample rate and duration from a WAV header.

    Returns an empty WavInfo when the buffer is not a canonical RIFF/WAVE file.
    """
    if len(audio) < 44:
        logger.warning("[AUDIO] WAV header too short")
        return WavInfo()
    if audio[0:4] != b"RIFF" or audio[8:12] != b"WAVE":
        logger.warning("[AUDIO] Invalid WAV header")
        return WavInfo()

    sample_rate, byte_rate = struct.unpack_from("<II", audio, 24)
    (data_size,) = struct.unpack_from("<I", audio, 40)
    duration = data_size / byte_rate if byte_rate > 0 else None
    return WavInfo(
        sample_rate=sample_rate,
        byte_rate=byte_rate,
        data_size=data_size,
        duration=duration,
    )


def estimate_duration(audio: bytes, audio_format: str) -> float:
    """Estimated playback duration in seconds."""
    if audio_format.lower() == "wav":
        info = parse_wav_header(audio)
        if info.duration is not None:
            return info.duration
    return len(audio) / DEFAULT_BYTES_PER_SECOND


def validate_audio_quality(audio: bytes, audio_format: str) -> AudioQualityReport:
    """Size and format checks run before any transcription call."""
    issues: List[str] = []
    recommendations: List[str] = []

    if len(audio) < MIN_AUDIO_BYTES:
        issues.append("Audio is too short")
        recommendations.append("Please record a longer clip.")

    if len(audio) > MAX_AUDIO_BYTES:
        issues.append("Audio is too large")
        recommendations.append("Please shorten the recording or lower its quality.")

    if not is_supported_format(audio_format):
        issues.append(f"Unsupported audio format: {audio_format}")
        recommendations.append("Use WAV, MP3, MP4 or WebM audio.")

    return AudioQualityReport(
        is_valid=not issues,
        issues=issues,
        recommendations=recommendations,
    )
