# backend/qachat/core/config.py
import logging
import os
from pathlib import Path
from typing import List, Optional

from dotenv import load_dotenv
from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .constants import DEFAULT_HISTORY_LIMIT, MAX_HISTORY_LIMIT, MAX_MESSAGE_LENGTH


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
    logger.debug(f"[CONFIG] Looking for .env at: {env_path}")
    load_dotenv(env_path)


_DEFAULT_SECRET_KEY = SecretStr("dev-only-secret-key-change-me")


class Settings(BaseSettings):
    # Identity tokens are issued by the auth subsystem; we only verify them.
    secret_key: SecretStr = Field(
        default=_DEFAULT_SECRET_KEY,
        description="Secret key used to verify JWT bearer tokens",
    )
    algorithm: str = "HS256"
    access_token_expire_minutes: int = 720  # 12 hours

    environment: str = Field(default="development", description="Deployment environment")
    is_testing: bool = False

    database_url: str = Field(
        default="sqlite+pysqlite:///./qachat.db",
        description="SQLAlchemy database URL",
    )
    database_echo: bool = False

    # Fan-out backend for Broadcaster (redis://... in production, memory:// for single worker)
    redis_url: str = "redis://localhost:6379"
    broadcast_url: Optional[str] = Field(
        default=None,
        description="Broadcaster URL; falls back to redis_url when unset",
    )

    # Messaging configuration
    message_max_length: int = Field(
        default=MAX_MESSAGE_LENGTH, ge=1, description="Maximum message body length"
    )
    history_default_limit: int = Field(default=DEFAULT_HISTORY_LIMIT, ge=1)
    history_max_limit: int = Field(default=MAX_HISTORY_LIMIT, ge=1)
    channel_max_members: int = Field(
        default=500, ge=2, description="Upper bound on channel membership"
    )

    # Ephemeral state
    typing_ttl_seconds: float = Field(
        default=3.0, gt=0, description="Typing indicator time-to-live in seconds"
    )
    typing_prune_interval_seconds: float = Field(default=1.0, gt=0)
    mute_sweep_interval_seconds: float = Field(
        default=60.0, gt=0, description="How often expired mutes are cleared"
    )

    # Realtime transport
    ws_heartbeat_interval: int = Field(
        default=25, description="Seconds of outbound silence before a heartbeat frame"
    )
    ws_idle_timeout_seconds: int = Field(
        default=90, description="Seconds without any client frame before the socket is dropped"
    )
    background_tasks_enabled: bool = True

    # Presence refcounts and the presence version clock live in this process
    web_concurrency: int = Field(
        default=1, description="Worker processes serving the realtime socket; must be 1"
    )

    cors_allowed_origins: List[str] = Field(default_factory=lambda: ["http://localhost:3000"])

    model_config = SettingsConfigDict(
        env_file=".env" if not os.getenv("CI") else None,
        case_sensitive=False,
        extra="ignore",
    )

    @field_validator("history_max_limit")
    @classmethod
    def _max_limit_covers_default(cls, value: int) -> int:
        if value < DEFAULT_HISTORY_LIMIT:
            logger.warning("history_max_limit=%s is below the default page size", value)
        return value

    @field_validator("web_concurrency")
    @classmethod
    def _single_worker(cls, value: int) -> int:
        if value != 1:
            raise ValueError(
                "qachat tracks presence in-process and must run as a single worker "
                f"(got WEB_CONCURRENCY={value})"
            )
        return value

    def get_broadcast_url(self) -> str:
        return self.broadcast_url or self.redis_url or "redis://localhost:6379"

    def env_bool(self, name: str, default: bool = False) -> bool:
        raw = os.getenv(name)
        if raw is None:
            return default
        return raw.strip().lower() in {"1", "true", "yes", "on"}


settings = Settings()
