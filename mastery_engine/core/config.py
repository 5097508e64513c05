"""Application settings and configuration."""

from typing import Literal

from pydantic import Field, field_validator  # type: ignore
from pydantic_settings import BaseSettings, SettingsConfigDict  # type: ignore


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Environment
    ENV: Literal["dev", "staging", "prod", "test"] = Field(default="dev")
    PROJECT_NAME: str = Field(default="Adaptive Mastery Engine API")

    # API
    API_PREFIX: str = Field(default="/v1")

    # Database
    DATABASE_URL: str = Field(default="sqlite:///./mastery_engine.db")
    DATABASE_ECHO: bool = Field(default=False)

    # CORS - comma-separated list of origins
    CORS_ORIGINS: str = Field(default="http://localhost:3000,http://localhost:3001")

    # Logging
    LOG_LEVEL: str = Field(default="INFO")
    ENGINE_LOG_LEVEL: str | None = Field(default=None)

    # Spaced repetition defaults (SM-2)
    SR_EASE_FACTOR: float = Field(default=2.5, ge=1.3)
    SR_MIN_EASE_FACTOR: float = Field(default=1.3, gt=0)
    SR_FIRST_INTERVAL_DAYS: int = Field(default=1, ge=1)
    SR_SECOND_INTERVAL_DAYS: int = Field(default=6, ge=1)
    SR_MASTERY_THRESHOLD_ADVANCEMENT: float = Field(default=80.0, ge=0, le=100)
    SR_MASTERY_THRESHOLD_REVIEW: float = Field(default=60.0, ge=0, le=100)

    # Recommendation / review planning
    MAX_REVIEWS_PER_DAY: int = Field(default=10, ge=1)
    DEFAULT_RECOMMENDATION_COUNT: int = Field(default=3, ge=1, le=50)

    # Randomness: unset in production, fixed for deterministic replay
    RNG_SEED: int | None = Field(default=None)

    @field_validator("LOG_LEVEL", "ENGINE_LOG_LEVEL")
    @classmethod
    def normalize_log_level(cls, value: str | None) -> str | None:
        """Upper-case log levels so 'debug' and 'DEBUG' behave the same."""
        return value.strip().upper() if value else None

    @property
    def cors_origins(self) -> list[str]:
        """CORS origins as a list."""
        return [origin.strip() for origin in self.CORS_ORIGINS.split(",") if origin.strip()]


settings = Settings()
