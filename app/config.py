"""
QuestLink — Application Configuration

Loads all configuration from environment variables (and an optional .env file)
using Pydantic Settings.  ``get_settings()`` builds the instance once per
process; the application constructs it at startup and hands the same object
to every component that needs it.
"""

from __future__ import annotations

from functools import lru_cache

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Central configuration for the questionnaire-link service."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ------------------------------------------------------------------ #
    # Database – Cloud SQL via Unix socket or private IP
    # ------------------------------------------------------------------ #
    DATABASE_URL: str
    DB_USER: str = "questlink_user"
    DB_PASSWORD: str = ""
    DB_NAME: str = "questlink"
    CLOUD_SQL_INSTANCE_CONNECTION: str = ""
    CLOUD_SQL_USE_UNIX_SOCKET: bool = False

    # ------------------------------------------------------------------ #
    # Links
    # ------------------------------------------------------------------ #
    APP_BASE_URL: str = "https://www.newagefotografie.com"
    TOKEN_BYTES: int = 32

    # "" keeps identifiers as given, "id" stores the directory UUID,
    # "client_id" stores the external business code.
    QUESTIONNAIRE_CLIENT_ID_COLUMN: str = ""

    # ------------------------------------------------------------------ #
    # Notifications
    # ------------------------------------------------------------------ #
    EMAIL_TRANSPORT: str = "log"
    RESEND_API_KEY: str = ""
    EMAIL_FROM: str = "noreply@newagefotografie.com"
    STUDIO_NOTIFY_EMAIL: str = "hallo@newagefotografie.com"
    STUDIO_NAME: str = "New Age Fotografie"
    NOTIFY_MAX_RETRIES: int = 2
    NOTIFY_BACKOFF_BASE_SECONDS: float = 0.25
    NOTIFY_SEND_TIMEOUT_SECONDS: float = 10.0

    # ------------------------------------------------------------------ #
    # Runtime environment
    # ------------------------------------------------------------------ #
    ENVIRONMENT: str = "development"
    LOG_LEVEL: str = "INFO"

    # ------------------------------------------------------------------ #
    # CORS
    # ------------------------------------------------------------------ #
    ALLOWED_ORIGINS: str = "*"

    # ------------------------------------------------------------------ #
    # Derived helpers
    # ------------------------------------------------------------------ #
    @property
    def allowed_origins_list(self) -> list[str]:
        """Return ALLOWED_ORIGINS as a list split on commas."""
        return [o.strip() for o in self.ALLOWED_ORIGINS.split(",")]

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT == "production"

    @property
    def link_base_url(self) -> str:
        return self.APP_BASE_URL.rstrip("/")

    @field_validator("QUESTIONNAIRE_CLIENT_ID_COLUMN", "EMAIL_TRANSPORT")
    @classmethod
    def _lowercase(cls, v: str) -> str:
        return v.strip().lower()

    @field_validator("QUESTIONNAIRE_CLIENT_ID_COLUMN")
    @classmethod
    def _known_identifier_column(cls, v: str) -> str:
        if v not in ("", "id", "client_id"):
            raise ValueError(
                f"QUESTIONNAIRE_CLIENT_ID_COLUMN must be '', 'id' or 'client_id', got {v!r}"
            )
        return v

    @field_validator("EMAIL_TRANSPORT")
    @classmethod
    def _known_transport(cls, v: str) -> str:
        if v not in ("log", "resend"):
            raise ValueError(f"EMAIL_TRANSPORT must be 'log' or 'resend', got {v!r}")
        return v

    @field_validator("TOKEN_BYTES")
    @classmethod
    def _token_entropy(cls, v: int) -> int:
        if v < 16:
            raise ValueError(f"TOKEN_BYTES must be at least 16 (128 bits), got {v}")
        # hex doubles the length; accepted tokens are at most 128 characters
        if v > 64:
            raise ValueError(f"TOKEN_BYTES must be at most 64, got {v}")
        return v

    @field_validator("LOG_LEVEL")
    @classmethod
    def _known_log_level(cls, v: str) -> str:
        level = v.strip().upper()
        if level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"LOG_LEVEL must be a standard logging level name, got {v!r}")
        return level

    @field_validator("NOTIFY_MAX_RETRIES")
    @classmethod
    def _non_negative_retries(cls, v: int) -> int:
        if v < 0:
            raise ValueError(f"NOTIFY_MAX_RETRIES must be >= 0, got {v}")
        return v


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached, validated ``Settings`` instance.

    Using ``@lru_cache`` guarantees the .env file is read and validated
    exactly once per process lifetime.  The application calls this during
    startup and passes the result into the service constructors::

        from app.config import get_settings
        settings = get_settings()
    """
    return Settings()  # type: ignore[call-arg]
