"""Runtime configuration resolved from environment variables."""

import os
import logging
from functools import lru_cache
from typing import Optional, Mapping

from pydantic import BaseModel, Field, ValidationError, field_validator

from .errors import ConfigError

logger = logging.getLogger(__name__)

DEFAULT_PAYOS_API_URL = "https://api-merchant.payos.vn"
DEFAULT_DATABASE_URL = "sqlite+aiosqlite:///./payments.db"

REQUIRED_VARIABLES = ("PAYOS_CLIENT_ID", "PAYOS_API_KEY")


class Settings(BaseModel):
    """Service settings. Built once per process by get_settings()."""

    payos_client_id: str = Field(..., min_length=1)
    payos_api_key: str = Field(..., min_length=1)
    payos_api_url: str = Field(default=DEFAULT_PAYOS_API_URL)
    payos_timeout_seconds: float = Field(default=10.0, gt=0, le=30)
    sync_job_token: Optional[str] = None
    database_url: str = Field(default=DEFAULT_DATABASE_URL)
    recovery_alert_threshold: float = Field(default=0.05, ge=0, le=1)

    @field_validator("payos_api_url")
    @classmethod
    def strip_trailing_slash(cls, value: str) -> str:
        return value.rstrip("/")

    @field_validator("database_url")
    @classmethod
    def use_async_driver(cls, value: str) -> str:
        # Convert postgres URLs to the asyncpg driver
        if value.startswith("postgresql://"):
            return value.replace("postgresql://", "postgresql+asyncpg://", 1)
        if value.startswith("postgres://"):
            return value.replace("postgres://", "postgresql+asyncpg://", 1)
        return value

    def __repr__(self) -> str:
        return (
            f"Settings(payos_api_url={self.payos_api_url!r}, "
            f"payos_client_id='***', payos_api_key='***', "
            f"sync_job_token={'***' if self.sync_job_token else None}, "
            f"database_url={self.database_url.split('@')[-1]!r})"
        )

    __str__ = __repr__

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "Settings":
        """Build settings from the environment.

        Args:
            environ: Mapping to read from. Defaults to os.environ.

        Returns:
            Validated Settings instance.

        Raises:
            ConfigError: If a required variable is missing or a value is invalid.
        """
        env = os.environ if environ is None else environ

        missing = [name for name in REQUIRED_VARIABLES if not env.get(name)]
        if missing:
            raise ConfigError(
                f"Missing required environment variables: {', '.join(missing)}"
            )

        values = {
            "payos_client_id": env["PAYOS_CLIENT_ID"],
            "payos_api_key": env["PAYOS_API_KEY"],
            "payos_api_url": env.get("PAYOS_API_URL") or DEFAULT_PAYOS_API_URL,
            "sync_job_token": env.get("SYNC_JOB_TOKEN") or None,
            "database_url": env.get("DATABASE_URL") or DEFAULT_DATABASE_URL,
        }
        if env.get("PAYOS_TIMEOUT_SECONDS"):
            values["payos_timeout_seconds"] = env["PAYOS_TIMEOUT_SECONDS"]
        if env.get("RECOVERY_ALERT_THRESHOLD"):
            values["recovery_alert_threshold"] = env["RECOVERY_ALERT_THRESHOLD"]

        try:
            return cls(**values)
        except ValidationError as e:
            fields = ", ".join(str(err["loc"][0]) for err in e.errors())
            raise ConfigError(f"Invalid configuration values: {fields}") from e


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return the process-wide settings, resolving them on first use."""
    settings = Settings.from_env()
    logger.info(f"Loaded configuration: {settings}")
    return settings
