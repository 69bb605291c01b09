"""Application configuration."""
from typing import List

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # OpenAI
    openai_api_key: str
    openai_api_base: str = "https://api.openai.com/v1"

    # Upstream realtime channel
    realtime_url: str = "wss://api.openai.com/v1/realtime"
    realtime_model: str = "gpt-4o-realtime-preview-2025-06-03"
    realtime_voice: str = "sage"
    realtime_connect_timeout: float = 10.0
    input_transcription_model: str = "gpt-4o-mini-transcribe"

    # Supervisor
    supervisor_enabled: bool = True
    supervisor_model: str = "gpt-4.1"
    supervisor_max_tool_iterations: int = 8
    company_name: str = "NewTelco"

    # Batch transcription
    transcription_model: str = "whisper-1"
    transcription_language: str = "ko"

    # Session lifecycle (seconds)
    session_idle_timeout_seconds: int = 30 * 60
    session_sweep_interval_seconds: int = 60
    conversation_idle_timeout_seconds: int = 60 * 60
    conversation_sweep_interval_seconds: int = 10 * 60

    # Database
    database_url: str = "sqlite+aiosqlite:///./bridge.db"

    # Content uploads
    upload_dir: str = "upload_files"

    # Server
    host: str = "0.0.0.0"
    port: int = 8000
    allowed_origins: str = "http://localhost:3000"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    @property
    def cors_origins(self) -> List[str]:
        """Allowed CORS origins as a list."""
        return [origin.strip() for origin in self.allowed_origins.split(",") if origin.strip()]


settings = Settings()
