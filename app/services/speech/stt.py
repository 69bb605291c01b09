"""Speech-to-text service."""
import logging
from typing import Any, Optional

from openai import AsyncOpenAI
from pydantic import BaseModel

from app.core.config import settings
from app.services.speech.audio import estimate_duration, file_extension, mime_type

logger = logging.getLogger(__name__)


class TranscriptionError(RuntimeError):
    """The transcription call failed."""


class TranscriptionResult(BaseModel):
    """Transcript plus the metadata attached to audio turns."""

    text: str
    language: Optional[str] = None
    duration: Optional[float] = None


class SpeechToTextService:
    """Service for converting speech to text."""

    def __init__(self, client: Optional[Any] = None, model: Optional[str] = None):
        self.client = client or AsyncOpenAI(api_key=settings.openai_api_key)
        self.model = model or settings.transcription_model

    async def transcribe_audio(
        self, audio_data: bytes, format: str = "wav", language: Optional[str] = None
    ) -> TranscriptionResult:
        """
        Transcribe audio to text using OpenAI Whisper.

        Args:
            audio_data: Raw audio bytes
            format: Audio container format (wav, webm, pcm16, ...)
            language: Optional ISO-639-1 language hint

        Returns:
            TranscriptionResult with text, language and estimated duration
        """
        filename = f"audio.{file_extension(format)}"
        logger.info(f"[TRANSCRIBE] Starting - Format: {format}, Bytes: {len(audio_data)}")

        kwargs = {"language": language} if language else {}
        try:
            transcript = await self.client.audio.transcriptions.create(
                model=self.model,
                file=(filename, audio_data, mime_type(filename)),
                response_format="json",
                **kwargs,
            )
        except Exception as e:
            logger.error(f"[TRANSCRIBE] Failed - Error: {type(e).__name__}: {str(e)}")
            raise TranscriptionError(f"Transcription failed: {str(e)}") from e

        logger.info(f"[TRANSCRIBE] Completed - Text length: {len(transcript.text)}")
        return TranscriptionResult(
            text=transcript.text,
            language=language,
            duration=estimate_duration(audio_data, format),
        )

    async def translate_audio(self, audio_data: bytes, format: str = "wav") -> TranscriptionResult:
        """
        Translate speech in any language into English text.

        Args:
            audio_data: Raw audio bytes
            format: Audio container format

        Returns:
            TranscriptionResult whose language is always "en"
        """
        filename = f"audio.{file_extension(format)}"
        try:
            translation = await self.client.audio.translations.create(
                model=self.model,
                file=(filename, audio_data, mime_type(filename)),
                response_format="json",
            )
        except Exception as e:
            logger.error(f"[TRANSCRIBE] Translation failed - Error: {type(e).__name__}: {str(e)}")
            raise TranscriptionError(f"Translation failed: {str(e)}") from e

        return TranscriptionResult(
            text=translation.text,
            language="en",
            duration=estimate_duration(audio_data, format),
        )
