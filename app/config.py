# app/config.py
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    ENV: str = "dev"
    APP_NAME: str = "Call Recording Analytics"
    LOG_LEVEL: str = "INFO"

    # DB URL – SQLite locally, Postgres in production
    DATABASE_URL: str = "sqlite:///./app.db"

    # 64 hex chars (32 bytes). Validated lazily by the credential store.
    ENCRYPTION_KEY: Optional[str] = None

    # Speech-to-text (Deepgram)
    DEEPGRAM_API_KEY: Optional[str] = None
    deepgram_model: str = "nova-2"
    deepgram_language: str = "en"
    deepgram_timeout_seconds: float = 300.0

    # LLM analysis (OpenAI)
    # This will happily read OPENAI_API_KEY or openai_api_key from the env.
    openai_api_key: Optional[str] = None
    openai_model: str = "gpt-4.1-mini"
    openai_timeout_seconds: float = 120.0

    # Object storage
    STORAGE_ROOT: str = "./storage"
    RECORDINGS_BUCKET: str = "call-recordings"
    TRANSCRIPTS_BUCKET: str = "call-transcripts"
    ANALYSES_BUCKET: str = "call-analyses"

    # PBX
    PBX_AUTH_TIMEOUT_SECONDS: float = 10.0
    PBX_DOWNLOAD_TIMEOUT_SECONDS: float = 30.0

    # Worker / job queue
    WORKER_POLL_INTERVAL_SECONDS: float = 5.0
    WORKER_MAX_CONCURRENT_JOBS: int = 3
    STALE_JOB_CHECK_INTERVAL_SECONDS: float = 300.0
    STALE_JOB_TIMEOUT_MINUTES: int = 10
    JOB_MAX_ATTEMPTS: int = 3

    # Shared key for the operator endpoints (/jobs, /connections)
    ADMIN_API_KEY: Optional[str] = None

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

_settings: Optional[Settings] = None

def get_settings() -> Settings:
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def reset_settings_cache() -> None:
    """Drop the cached settings so the next get_settings() re-reads the env."""
    global _settings
    _settings = None
