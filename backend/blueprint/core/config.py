"""
Application Configuration
=========================

Centralized configuration using Pydantic Settings.
All configuration is loaded from environment variables with sensible defaults.
"""

import json
from typing import Annotated, List, Optional
from functools import lru_cache

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Settings are validated using Pydantic and cached for performance.
    See .env.example for all available configuration options.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # -------------------------------------------------------------------------
    # Application
    # -------------------------------------------------------------------------
    APP_NAME: str = "Blueprint Settings"
    APP_ENV: str = "development"
    LOG_LEVEL: str = "INFO"

    # -------------------------------------------------------------------------
    # API
    # -------------------------------------------------------------------------
    API_PREFIX: str = "/api/v1"
    CORS_ORIGINS: Annotated[List[str], NoDecode] = Field(default_factory=list)

    @field_validator("CORS_ORIGINS", mode="before")
    @classmethod
    def parse_cors_origins(cls, v):
        """Parse CORS origins from a comma-separated string, JSON list, or list."""
        if v is None:
            return []
        if isinstance(v, str):
            if v.strip().startswith("["):
                return json.loads(v)
            return [origin.strip() for origin in v.split(",") if origin.strip()]
        return v

    # -------------------------------------------------------------------------
    # Managed backend (PostgREST tables + GoTrue auth)
    # -------------------------------------------------------------------------
    SUPABASE_URL: str = "http://localhost:54321"
    SUPABASE_ANON_KEY: str = ""
    BACKEND_REQUEST_TIMEOUT_SECONDS: float = 30.0

    # -------------------------------------------------------------------------
    # Bulk loading
    # -------------------------------------------------------------------------
    # Hard timeout for a single table query attempt.
    FETCH_TIMEOUT_SECONDS: float = 15.0
    # Retries after the first attempt; delay doubles after each failure.
    FETCH_RETRIES: int = 2
    FETCH_INITIAL_DELAY_SECONDS: float = 1.0

    # -------------------------------------------------------------------------
    # Session
    # -------------------------------------------------------------------------
    SIGN_OUT_TIMEOUT_SECONDS: float = 2.0
    SESSION_EXPIRY_CHECK_SECONDS: float = 60.0
    # Client-side session length when the user declines "remember me".
    SESSION_TTL_MINUTES: int = 15
    # JSON file backing the long-lived storage tier. Memory-only when unset.
    LOCAL_STORAGE_PATH: Optional[str] = None

    # -------------------------------------------------------------------------
    # Client sessions (one identity and state store per HTTP client)
    # -------------------------------------------------------------------------
    SESSION_COOKIE_NAME: str = "blueprint_session"
    SESSION_COOKIE_SECURE: bool = False
    SESSION_COOKIE_MAX_AGE_DAYS: int = 30
    # In-memory client sessions unused for longer are stopped.
    CLIENT_SESSION_IDLE_MINUTES: int = 60

    # -------------------------------------------------------------------------
    # Domain defaults
    # -------------------------------------------------------------------------
    DEFAULT_VOTE_PERIOD_DAYS: int = 7
    HISTORY_PAGE_LIMIT: int = 100

    # -------------------------------------------------------------------------
    # Helper Methods
    # -------------------------------------------------------------------------

    @property
    def is_test(self) -> bool:
        """Check if running under the test suite."""
        return self.APP_ENV == "test"

    @property
    def project_ref(self) -> str:
        """Backend project reference used to namespace stored sessions."""
        host = self.SUPABASE_URL.split("://", 1)[-1]
        return host.split(".", 1)[0].split(":", 1)[0] or "local"


@lru_cache
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Uses lru_cache to ensure settings are only loaded once and reused.

    Returns:
        Settings: Validated settings instance
    """
    return Settings()


# Global settings instance
settings = get_settings()
