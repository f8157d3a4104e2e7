"""
Configuration and settings for the prayer wall backend.
"""

from __future__ import annotations

from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_ADMIN_PASSWORD = "church123"


class Settings(BaseSettings):
    """Environment-backed settings for the FastAPI service."""

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    api_prefix: str = Field(default="/api")

    # Durable backend (Postgres expected; any SQLAlchemy URL works)
    database_url: Optional[str] = Field(default=None)
    database_connect_timeout_seconds: float = Field(default=5.0, gt=0)
    database_statement_timeout_seconds: float = Field(default=10.0, gt=0)

    # Development toggles
    use_in_memory_backends: bool = Field(default=False)
    seed_sample_requests: bool = Field(default=False)

    # Single shared admin credential
    admin_username: str = Field(default="admin")
    admin_password: str = Field(default=DEFAULT_ADMIN_PASSWORD)

    # Live feed
    live_comment_limit: int = Field(default=50, ge=1)
    push_send_timeout_seconds: float = Field(default=5.0, gt=0)

    cors_origins: list[str] = Field(
        default=["http://localhost:5173", "http://localhost:5174"]
    )

    host: str = Field(default="0.0.0.0")
    port: int = Field(default=3001)
    log_level: str = Field(default="INFO")


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return cached settings instance."""
    return Settings()
