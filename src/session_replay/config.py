"""Application configuration."""

import os

from pydantic_settings import BaseSettings, SettingsConfigDict

_ENVIRONMENT = os.getenv("ENVIRONMENT", "local")


class Settings(BaseSettings):
    """Recording store settings loaded from environment variables."""

    supabase_url: str
    supabase_service_key: str
    admin_token: str
    recordings_bucket: str = "session-recordings"
    session_details_url: str | None = None
    session_details_token: str | None = None
    merge_on_complete: bool = True
    log_level: str = "INFO"
    environment: str = _ENVIRONMENT

    model_config = SettingsConfigDict(
        env_file=(f".env.{_ENVIRONMENT}", ".env"),
        extra="ignore",
    )


class ClientSettings(BaseSettings):
    """Capture and replay client settings, prefixed with ``REPLAY_``."""

    store_base_url: str
    admin_token: str | None = None
    chunk_duration_ms: int = 3000
    event_flush_interval_ms: int = 500
    upload_poll_interval_ms: int = 100
    upload_max_attempts: int | None = None
    upload_max_pending_chunks: int | None = 200
    finalize_retry_attempts: int = 3
    merged_corruption_threshold: float = 0.1
    active_entry_tolerance: float = 0.02
    ffmpeg_path: str = "ffmpeg"
    log_level: str = "INFO"
    environment: str = _ENVIRONMENT

    model_config = SettingsConfigDict(
        env_prefix="REPLAY_",
        env_file=(f".env.{_ENVIRONMENT}", ".env"),
        extra="ignore",
    )
