"""
Application configuration using Pydantic Settings.

All configuration is loaded from environment variables or a local .env file.
"""

from functools import lru_cache
from typing import Any

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # Application
    APP_NAME: str = "SwarmBet"
    APP_ENV: str = "development"
    DEBUG: bool = False
    SECRET_KEY: str = ""  # Required - loaded from environment

    # Database - PostgreSQL
    POSTGRES_HOST: str = "localhost"
    POSTGRES_PORT: int = 5432
    POSTGRES_USER: str = "swarmbet"
    POSTGRES_PASSWORD: str = ""
    POSTGRES_DB: str = "swarmbet"
    DATABASE_URL: str | None = None  # Full override (e.g. sqlite+aiosqlite:// for local runs)
    SQL_ECHO: bool = False

    @field_validator("SECRET_KEY")
    @classmethod
    def validate_required_secrets(cls, v: str, info: Any) -> str:
        """Validate that required secrets are set."""
        if not v:
            raise ValueError(f"{info.field_name} must be set in environment")
        return v

    @property
    def POSTGRES_URL(self) -> str:
        """Construct PostgreSQL connection URL."""
        return (
            f"postgresql+asyncpg://{self.POSTGRES_USER}:{self.POSTGRES_PASSWORD}"
            f"@{self.POSTGRES_HOST}:{self.POSTGRES_PORT}/{self.POSTGRES_DB}"
        )

    @property
    def database_url(self) -> str:
        """Connection URL actually used by the engine."""
        return self.DATABASE_URL or self.POSTGRES_URL

    # Authentication
    # Bearer tokens are issued by the identity provider; we only verify them.
    JWT_ALGORITHM: str = "HS256"
    JWT_AUDIENCE: str | None = None

    # Admin / operator endpoints (sweeps, activate, reopen)
    ADMIN_API_KEY: str | None = None

    # CORS - stored as comma-separated string to avoid pydantic-settings JSON parsing issues
    CORS_ORIGINS: str = "http://localhost:5173"

    @property
    def cors_origins_list(self) -> list[str]:
        """Get CORS origins as a list."""
        return [origin.strip() for origin in self.CORS_ORIGINS.split(",") if origin.strip()]

    # Anonymous voting network (Vocdoni)
    VOCDONI_API_URL: str = "https://api-stg.vocdoni.net/v2"
    VOCDONI_CAST_URL: str | None = None  # Ballot relay; casting is unavailable when unset
    VOCDONI_CAST_API_KEY: str | None = None

    # Prediction-market oracle (Polymarket Gamma API)
    POLYMARKET_API_URL: str = "https://gamma-api.polymarket.com"

    # Outbound HTTP
    EXTERNAL_HTTP_TIMEOUT_SECONDS: float = 15.0
    EXTERNAL_HTTP_RETRIES: int = 2  # Connection-level retries handled by the transport

    # Points
    VOTE_BASE_POINTS: int = 1000
    CONSENSUS_BONUS_POINTS: int = 5000
    ACTUAL_OUTCOME_BONUS: int = 10000
    ORACLE_DECIDED_PROBABILITY: float = 0.95

    # Poll lifecycle
    POLL_DEFAULT_DURATION_HOURS: int = 24

    # Background sweeps
    ENABLE_SCHEDULER: bool = False
    CLOSE_POLLS_INTERVAL_MINUTES: int = 5
    RECONCILE_INTERVAL_MINUTES: int = 60
    SWEEP_LOCK_TIMEOUT_SECONDS: int = 300


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


settings = get_settings()
