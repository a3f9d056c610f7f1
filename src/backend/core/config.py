"""
Application configuration using Pydantic Settings.

All configuration is loaded from environment variables or a local .env file.
"""

import json
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
    APP_NAME: str = "Ballotline"
    APP_ENV: str = "development"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"
    SECRET_KEY: str = ""  # Required - loaded from environment

    # Database - PostgreSQL
    POSTGRES_HOST: str = "localhost"
    POSTGRES_PORT: int = 5432
    POSTGRES_USER: str = "ballotline"
    POSTGRES_PASSWORD: str = ""
    POSTGRES_DB: str = "ballotline"
    POSTGRES_SSL: bool = True

    # Full URL override (tests point this at sqlite+aiosqlite)
    DATABASE_URL_OVERRIDE: str | None = None

    DB_POOL_SIZE: int = 10
    DB_MAX_OVERFLOW: int = 20

    # Upper bound for acquiring a store transaction (pool checkout, row locks)
    STORE_TIMEOUT_SECONDS: float = 5.0

    # Create missing tables at startup (local development only; use migrations elsewhere)
    DB_CREATE_TABLES: bool = False

    @field_validator("SECRET_KEY")
    @classmethod
    def validate_required_secrets(cls, v: str, info: Any) -> str:
        """Validate that required secrets are set."""
        if not v:
            raise ValueError(f"{info.field_name} must be set in environment")
        return v

    @property
    def DATABASE_URL(self) -> str:
        """Construct the async database URL."""
        if self.DATABASE_URL_OVERRIDE:
            return self.DATABASE_URL_OVERRIDE
        url = (
            f"postgresql+asyncpg://{self.POSTGRES_USER}:{self.POSTGRES_PASSWORD}"
            f"@{self.POSTGRES_HOST}:{self.POSTGRES_PORT}/{self.POSTGRES_DB}"
        )
        return f"{url}?ssl=require" if self.POSTGRES_SSL else url

    # Authentication (tokens are issued by the identity service)
    JWT_ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 30

    # One-time email verification codes
    ONE_TIME_CODE_TTL_MINUTES: int = 10
    ONE_TIME_CODE_LENGTH: int = 6

    # Voting rules
    ENFORCE_VOTING_WINDOW: bool = True  # Honour election starts_at / ends_at

    # Results publication webhook (fire-and-forget, optional)
    RESULTS_WEBHOOK_URL: str | None = None
    RESULTS_WEBHOOK_TIMEOUT_SECONDS: float = 5.0

    # Mail relay that delivers verification codes (optional)
    MAIL_WEBHOOK_URL: str | None = None
    MAIL_WEBHOOK_TIMEOUT_SECONDS: float = 5.0

    # CORS - stored as comma-separated string to avoid pydantic-settings JSON parsing issues
    CORS_ORIGINS: str = "http://localhost:3000"

    @property
    def cors_origins_list(self) -> list[str]:
        """Get CORS origins as a list."""
        try:
            return json.loads(self.CORS_ORIGINS)
        except json.JSONDecodeError:
            return [origin.strip() for origin in self.CORS_ORIGINS.split(",") if origin.strip()]


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


settings = get_settings()
