"""Client configuration using pydantic-settings."""
from functools import lru_cache
from typing import Annotated

from pydantic import field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


class ClientSettings(BaseSettings):
    """Client settings loaded from BOOKMARKS_* environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="BOOKMARKS_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    api_url: str = "http://localhost:8000"
    request_timeout: float = 10.0

    # Third-party sign-in providers offered by the credential widget
    auth_providers: Annotated[list[str], NoDecode] = ["google"]
    # Where the identity provider sends the browser after third-party sign-in
    redirect_url: str = "http://localhost:3000/dashboard"

    @field_validator("auth_providers", mode="before")
    @classmethod
    def parse_providers(cls, v: str | list[str]) -> list[str]:
        """Accept a comma-separated string as well as a list."""
        if isinstance(v, str):
            return [provider.strip() for provider in v.split(",") if provider.strip()]
        return v


@lru_cache
def get_client_settings() -> ClientSettings:
    """Get cached client settings instance."""
    return ClientSettings()
