"""Application configuration loaded from environment variables."""

from functools import lru_cache
from typing import Literal

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Allowed URL schemes for EMBEDDED_DATABASE_URL (module-level so validators can use it).
VALID_EMBEDDED_URL_PREFIXES = (
    "sqlite://",
    "sqlite+pysqlite://",
)

VALID_LOG_LEVELS = frozenset({"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"})


class Settings(BaseSettings):
    """Validated application settings from env and optional .env file."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        case_sensitive=False,
    )

    APP_ENV: Literal["dev", "prod"] = "dev"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"
    API_V1_PREFIX: str = "/api/v1"

    # Mirror server: dataset streamed into memory at startup (optional)
    DATA_FILE: str | None = None

    # Embedded store used once an ingestion run grows past EMBEDDED_SWITCH_BYTES
    EMBEDDED_DATABASE_URL: str = "sqlite:///./vulnstream.sqlite3"
    EMBEDDED_SWITCH_BYTES: int = 64 * 1024 * 1024

    # Streaming ingestion
    INGEST_BATCH_SIZE: int = 500
    INGEST_READ_CHUNK_BYTES: int = 64 * 1024
    INGEST_BUFFER_TRIM_CHARS: int = 1_000_000
    INGEST_SPOOL_MAX_BYTES: int = 8 * 1024 * 1024
    INGEST_REQUEST_TIMEOUT_SEC: float = 60.0
    FALLBACK_LOG_EVERY: int = 2000

    # Query coordinator
    REFRESH_THROTTLE_SEC: float = 0.5
    DEFAULT_PAGE_SIZE: int = 50

    # Remote paged backend
    REMOTE_API_BASE: str = "http://localhost:8787/api/v1"
    REMOTE_REQUEST_TIMEOUT_SEC: float = 30.0
    REMOTE_PAGE_LIMIT: int = 1000

    @field_validator("LOG_LEVEL")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        level = (v or "").strip().upper()
        if level not in VALID_LOG_LEVELS:
            raise ValueError(f"LOG_LEVEL must be one of {sorted(VALID_LOG_LEVELS)}")
        return level

    @field_validator("EMBEDDED_DATABASE_URL")
    @classmethod
    def validate_embedded_database_url(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("EMBEDDED_DATABASE_URL must be set and non-empty")
        if not any(v.strip().startswith(prefix) for prefix in VALID_EMBEDDED_URL_PREFIXES):
            raise ValueError(
                "EMBEDDED_DATABASE_URL must be a SQLite URL (e.g. sqlite:///./vulnstream.sqlite3)"
            )
        return v.strip()

    @field_validator("EMBEDDED_SWITCH_BYTES")
    @classmethod
    def validate_embedded_switch_bytes(cls, v: int) -> int:
        if v < 1:
            raise ValueError("EMBEDDED_SWITCH_BYTES must be at least 1")
        return v

    @field_validator("INGEST_BATCH_SIZE")
    @classmethod
    def validate_batch_size(cls, v: int) -> int:
        if v < 1 or v > 100_000:
            raise ValueError("INGEST_BATCH_SIZE must be between 1 and 100000")
        return v

    @field_validator("INGEST_READ_CHUNK_BYTES")
    @classmethod
    def validate_read_chunk_bytes(cls, v: int) -> int:
        if v < 1 or v > 16 * 1024 * 1024:
            raise ValueError("INGEST_READ_CHUNK_BYTES must be between 1 and 16777216 (16 MB)")
        return v

    @field_validator("INGEST_BUFFER_TRIM_CHARS")
    @classmethod
    def validate_buffer_trim_chars(cls, v: int) -> int:
        if v < 1024:
            raise ValueError("INGEST_BUFFER_TRIM_CHARS must be at least 1024")
        return v

    @field_validator("INGEST_SPOOL_MAX_BYTES")
    @classmethod
    def validate_spool_max_bytes(cls, v: int) -> int:
        if v < 1:
            raise ValueError("INGEST_SPOOL_MAX_BYTES must be at least 1")
        return v

    @field_validator("INGEST_REQUEST_TIMEOUT_SEC", "REMOTE_REQUEST_TIMEOUT_SEC")
    @classmethod
    def validate_timeout(cls, v: float) -> float:
        if v <= 0 or v > 600:
            raise ValueError("request timeouts must be greater than 0 and at most 600")
        return v

    @field_validator("FALLBACK_LOG_EVERY")
    @classmethod
    def validate_fallback_log_every(cls, v: int) -> int:
        if v < 1:
            raise ValueError("FALLBACK_LOG_EVERY must be at least 1")
        return v

    @field_validator("REFRESH_THROTTLE_SEC")
    @classmethod
    def validate_refresh_throttle(cls, v: float) -> float:
        if v < 0 or v > 60:
            raise ValueError("REFRESH_THROTTLE_SEC must be between 0 and 60")
        return v

    @field_validator("DEFAULT_PAGE_SIZE")
    @classmethod
    def validate_default_page_size(cls, v: int) -> int:
        if v < 1 or v > 1000:
            raise ValueError("DEFAULT_PAGE_SIZE must be between 1 and 1000")
        return v

    @field_validator("REMOTE_API_BASE")
    @classmethod
    def validate_remote_api_base(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("REMOTE_API_BASE must be set and non-empty")
        s = v.strip().lower()
        if not (s.startswith("http://") or s.startswith("https://")):
            raise ValueError(
                "REMOTE_API_BASE must use http or https (e.g. http://localhost:8787/api/v1)"
            )
        return v.strip().rstrip("/")

    @field_validator("REMOTE_PAGE_LIMIT")
    @classmethod
    def validate_remote_page_limit(cls, v: int) -> int:
        if v < 1 or v > 10_000:
            raise ValueError("REMOTE_PAGE_LIMIT must be between 1 and 10000")
        return v


@lru_cache
def get_settings() -> Settings:
    """Return cached settings instance (safe to call from dependencies)."""
    return Settings()


settings = get_settings()
