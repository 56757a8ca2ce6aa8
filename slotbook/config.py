"""
Centralized configuration with environment variable overrides.

Booking policy values (deployment timezone, cancel-token lifetime) and
storage settings are configurable here. Nothing is hardcoded in the
scheduling or storage logic.
"""

import logging
import os
from dataclasses import dataclass, field
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from dotenv import load_dotenv

load_dotenv()

logger = logging.getLogger(__name__)


def _safe_int(env_var: str, default: str) -> int:
    """Parse an integer from an env var with a clear error on bad values."""
    raw = os.getenv(env_var, default)
    try:
        return int(raw)
    except (ValueError, TypeError):
        raise ValueError(
            f"Invalid integer for {env_var}: {raw!r}"
        ) from None


def _safe_float(env_var: str, default: str) -> float:
    """Parse a float from an env var with a clear error on bad values."""
    raw = os.getenv(env_var, default)
    try:
        return float(raw)
    except (ValueError, TypeError):
        raise ValueError(
            f"Invalid float for {env_var}: {raw!r}"
        ) from None


def _safe_bool(env_var: str, default: str) -> bool:
    return os.getenv(env_var, default).strip().lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class BookingConfig:
    """Booking policy settings."""

    # Empty means the host's local zone.
    timezone: str = os.getenv("SLOTBOOK_TIMEZONE", "")
    cancel_token_ttl_hours: int = _safe_int("BOOKING_CANCEL_TOKEN_TTL_HOURS", "24")
    frontend_url: str = os.getenv("FRONTEND_URL", "http://localhost:5173")


@dataclass(frozen=True)
class StorageConfig:
    """Database settings for the SQL store."""

    database_url: str = os.getenv("DATABASE_URL", "sqlite:///slotbook.db")
    echo_sql: bool = _safe_bool("DB_ECHO", "false")
    sqlite_busy_timeout_sec: float = _safe_float("SQLITE_BUSY_TIMEOUT", "30.0")


@dataclass(frozen=True)
class AppConfig:
    """Root configuration aggregating all sub-configs."""

    booking: BookingConfig = field(default_factory=BookingConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    log_level: str = os.getenv("LOG_LEVEL", "INFO")
    app_name: str = os.getenv("APP_NAME", "slotbook")


def _validate_config(config: AppConfig) -> None:
    """Validate configuration values are within acceptable ranges."""
    if config.booking.timezone:
        try:
            ZoneInfo(config.booking.timezone)
        except (ZoneInfoNotFoundError, ValueError):
            raise ValueError(
                f"SLOTBOOK_TIMEZONE is not a known zone: {config.booking.timezone!r}"
            ) from None
    if config.booking.cancel_token_ttl_hours < 1:
        raise ValueError(
            "BOOKING_CANCEL_TOKEN_TTL_HOURS must be >= 1, "
            f"got {config.booking.cancel_token_ttl_hours}"
        )
    if not config.booking.frontend_url.startswith(("http://", "https://")):
        raise ValueError(
            f"FRONTEND_URL must be an http(s) URL, got {config.booking.frontend_url!r}"
        )
    if not config.storage.database_url:
        raise ValueError("DATABASE_URL must not be empty")
    if config.storage.sqlite_busy_timeout_sec <= 0:
        raise ValueError(
            "SQLITE_BUSY_TIMEOUT must be > 0, "
            f"got {config.storage.sqlite_busy_timeout_sec}"
        )


def load_config() -> AppConfig:
    """Load and validate application configuration."""
    config = AppConfig()
    _validate_config(config)
    logging.basicConfig(
        level=getattr(logging, config.log_level.upper(), logging.INFO),
        format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    logger.info("Configuration loaded for '%s'", config.app_name)
    return config


# Singleton instance
settings = load_config()
