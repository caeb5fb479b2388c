"""
Shared configuration management for the User Console data layer.
"""

from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class BaseConfig(BaseSettings):
    """Base configuration class with common settings."""

    model_config = SettingsConfigDict(
        env_prefix="USERS_",
        env_file=".env",
        case_sensitive=False,
        extra="allow"
    )

    # Environment
    env: str = Field(default="local")
    log_level: str = Field(default="info")

    # Remote API
    api_base_url: str = Field(default="http://localhost:3001/api")
    api_timeout_seconds: float = Field(default=12.0)
    detail_fetch_timeout_seconds: float = Field(default=20.0)


class ConsoleConfig(BaseConfig):
    """Settings for the user edit workflow and its caches."""

    service_name: str = "users"

    # Cache freshness
    user_detail_ttl_seconds: float = Field(default=10.0)
    catalog_ttl_seconds: float = Field(default=20.0)

    # Attachments
    max_attachment_bytes: int = Field(default=20 * 1024 * 1024)

    # Edit modal
    dirty_settle_passes: int = Field(default=2)
    flash_message_seconds: float = Field(default=2.5)

    # Owner role detection (roles catalog code or name)
    owner_role_code: Optional[str] = Field(default="OWNER")


def get_config(**overrides) -> ConsoleConfig:
    """Get configuration for the console data layer."""
    return ConsoleConfig(**overrides)
