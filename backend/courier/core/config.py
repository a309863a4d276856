# backend/courier/core/config.py
import logging
import os
from pathlib import Path
from typing import List

from dotenv import load_dotenv
from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def is_running_tests() -> bool:
    """
    Detect if code is running under pytest.

    PYTEST_CURRENT_TEST is set automatically by pytest during test runs, and is
    not expected to be present in production environments.
    """
    return os.getenv("PYTEST_CURRENT_TEST") is not None


logger = logging.getLogger(__name__)

# Load .env file only if not in CI
if not os.getenv("CI"):
    env_path = Path(__file__).parent.parent.parent / ".env"  # Goes up to backend/.env
    logger.info(f"[CONFIG] Looking for .env at: {env_path}")
    load_dotenv(env_path)


class Settings(BaseSettings):
    """Runtime configuration for the courier messaging service."""

    environment: str = Field(default="development", description="Environment label")
    database_url: str = Field(
        default="sqlite:///./courier.db",
        description="SQLAlchemy URL of the persistence store",
    )
    log_level: str = Field(default="INFO", description="Root logging level")
    auto_create_tables: bool = Field(
        default=True, description="Create missing tables at startup (dev/test convenience)"
    )

    # History
    history_default_limit: int = Field(default=100, description="Default history cap")
    history_max_limit: int = Field(default=100, description="Upper bound for any history request")

    # Messages
    message_max_length: int = Field(default=5000, description="Maximum message body length")

    # Lifecycle policies
    deliver_backlog_on_connect: bool = Field(
        default=False,
        description="Flip a reconnecting user's 'sent' backlog to 'delivered' and notify senders",
    )
    allow_edit_after_seen: bool = Field(
        default=True, description="Allow edits on messages the receiver has already seen"
    )
    allow_delete_after_seen: bool = Field(
        default=True, description="Allow deletes on messages the receiver has already seen"
    )
    allow_edit_after_delete: bool = Field(
        default=False, description="Allow edits on messages hidden by a delete"
    )

    # Transport
    ws_max_message_bytes: int = Field(
        default=65536, description="Inbound websocket frames above this size are rejected"
    )
    cors_allowed_origins: List[str] = Field(default_factory=lambda: ["*"])

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )

    @field_validator("history_default_limit", "history_max_limit", "message_max_length")
    @classmethod
    def _positive(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("must be a positive integer")
        return value

    @field_validator("log_level")
    @classmethod
    def _normalize_log_level(cls, value: str) -> str:
        normalized = (value or "INFO").strip().upper()
        if normalized not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"unknown log level: {value}")
        return normalized

    @model_validator(mode="after")
    def _check_history_limits(self) -> "Settings":
        if self.history_default_limit > self.history_max_limit:
            raise ValueError("history_default_limit cannot exceed history_max_limit")
        return self


settings = Settings()
logger.info(
    "[CONFIG] environment=%s backlog_on_connect=%s edit_after_seen=%s delete_after_seen=%s",
    settings.environment,
    settings.deliver_backlog_on_connect,
    settings.allow_edit_after_seen,
    settings.allow_delete_after_seen,
)
