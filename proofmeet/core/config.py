# proofmeet/core/config.py
from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Global application configuration.

    Values are loaded from environment variables at runtime.

    These settings drive:
    - DB connection
    - Logging verbosity
    - Finalization retry behaviour
    - Engagement scoring weights
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
    )

    APP_NAME: str = "ProofMeet Compliance"
    APP_ENV: str = Field("local", description="Environment name: local/test/dev/stage/prod")
    LOG_LEVEL: str = Field("INFO", description="Root log level for the service.")

    DB_URL: str = Field(
        "sqlite+aiosqlite:///./proofmeet.db",
        description="SQLAlchemy-compatible async database URL",
    )

    DEFAULT_MEETING_DURATION_MINUTES: int = Field(
        default=60,
        gt=0,
        description=(
            "Scheduled duration assumed for a session registered without one. "
            "Used as the attendance percentage denominator."
        ),
    )

    FINALIZATION_MAX_ATTEMPTS: int = Field(
        default=3,
        ge=1,
        description=(
            "How many times finalization retries when another card of the same "
            "participant claimed the same chain position concurrently."
        ),
    )

    # --- Engagement scoring weights (must sum to 1.0) ---
    ENGAGEMENT_FOCUS_WEIGHT: float = Field(default=0.40, ge=0.0, le=1.0)
    ENGAGEMENT_ACTIVITY_RATE_WEIGHT: float = Field(default=0.25, ge=0.0, le=1.0)
    ENGAGEMENT_AUDIO_VIDEO_WEIGHT: float = Field(default=0.15, ge=0.0, le=1.0)
    ENGAGEMENT_CONSISTENCY_WEIGHT: float = Field(default=0.20, ge=0.0, le=1.0)


@lru_cache()
def get_settings() -> Settings:
    """
    Cached accessor for application settings.

    Using LRU cache ensures settings are read and validated only once,
    while still being easily importable across the app.
    """
    return Settings()
