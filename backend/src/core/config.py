"""Application configuration using pydantic-settings."""
from functools import lru_cache
from typing import Annotated

from pydantic import field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Database
    database_url: str

    # Redis (change feed fan-out across processes)
    redis_url: str = "redis://localhost:6379"
    redis_enabled: bool = True

    # Server
    host: str = "0.0.0.0"
    port: int = 8000
    cors_origins: Annotated[list[str], NoDecode] = ["http://localhost:3000"]

    # Auth
    session_duration_hours: int = 24
    require_email_confirmation: bool = True
    # Base URL used to build email confirmation links
    site_url: str = "http://localhost:8000"

    # Realtime change feed
    realtime_heartbeat_seconds: float = 15.0
    realtime_queue_size: int = 100

    # Development mode - bypasses auth for local development
    dev_mode: bool = False

    @field_validator("cors_origins", mode="before")
    @classmethod
    def parse_cors_origins(cls, v: str | list[str]) -> list[str]:
        """Accept a comma-separated string as well as a list."""
        if isinstance(v, str):
            return [origin.strip() for origin in v.split(",") if origin.strip()]
        return v


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
