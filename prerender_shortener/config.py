"""Application configuration read from the environment."""

from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass

from dotenv import load_dotenv

logger = logging.getLogger(__name__)

_INT_PATTERN = re.compile(r"[+-]?[0-9]+")


class ConfigError(RuntimeError):
    """Raised when required configuration is missing."""


@dataclass
class Config:
    """Settings for the server, the database and the renderer."""

    server_port: str = ":8080"
    database_url: str = ""
    rod_bin_path: str = ""
    allowed_domains: str = ""
    render_worker_count: int = 3
    render_timeout_seconds: int = 90


def get_env(key: str, fallback: str) -> str:
    """Return the variable's value if it is set (even if empty), else fallback."""
    return os.environ.get(key, fallback)


def get_env_int(key: str, fallback: int) -> int:
    """Return the variable as an integer, or fallback if unset or not an integer."""
    value = os.environ.get(key)
    if value is None:
        return fallback
    if _INT_PATTERN.fullmatch(value):
        return int(value)
    logger.warning(
        "Invalid integer value for %s: %s, using default %d", key, value, fallback
    )
    return fallback


def load_config() -> Config:
    """Build a Config from the environment, reading ./.env first if it exists.

    Raises ConfigError when DATABASE_URL is not set.
    """
    load_dotenv(os.path.join(os.getcwd(), ".env"))

    config = Config(
        server_port=get_env("SERVER_PORT", ":8080"),
        database_url=get_env("DATABASE_URL", ""),
        rod_bin_path=get_env("ROD_BIN_PATH", ""),
        allowed_domains=get_env("ALLOWED_DOMAINS", ""),
        render_worker_count=get_env_int("RENDER_WORKER_COUNT", 3),
        render_timeout_seconds=get_env_int("RENDER_TIMEOUT_SECONDS", 90),
    )
    if not config.database_url:
        raise ConfigError("DATABASE_URL environment variable is required")
    return config