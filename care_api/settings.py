"""
API settings.

Read from ``CARENOTES_``-prefixed environment variables (or a ``.env``
file) by pydantic-settings.
"""

from pathlib import Path
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


class ApiSettings(BaseSettings):
    """Runtime configuration for the HTTP API."""

    model_config = SettingsConfigDict(
        env_prefix="CARENOTES_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    host: str = Field(default="127.0.0.1")
    port: int = Field(default=8000, ge=1, le=65535)
    database_url: str = Field(default="sqlite://", description="SQLAlchemy database URL")
    api_tokens_file: Optional[Path] = Field(
        default=None, description="YAML registry of bearer token digests"
    )
    log_level: str = Field(default="INFO")
    audit_flush_interval_seconds: float = Field(default=1.0, gt=0)
    audit_queue_enabled: bool = Field(
        default=True, description="Write audit events through the background queue"
    )
    create_tables: bool = Field(default=True, description="Create missing tables on startup")
    pilot_worker_enabled: bool = Field(default=False)
    pilot_poll_interval_seconds: float = Field(default=60.0, gt=0)

    @field_validator("log_level")
    @classmethod
    def _known_level(cls, value: str) -> str:
        value = value.upper()
        if value not in _LEVELS:
            raise ValueError(f"log_level must be one of {', '.join(_LEVELS)}")
        return value
