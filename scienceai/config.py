"""Application configuration loaded from the environment."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from typing import List

DEFAULT_DB_PATH = "./data/usage.db"
DEFAULT_CONTACT_EMAIL = "support@science-ai.app"
DEFAULT_SEARCH_TIMEOUT = 15.0
DEFAULT_LOG_LEVEL = "INFO"
DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 8000


@dataclass
class AppConfig:
    """Configuration for the API server and CLI."""

    database_path: str = DEFAULT_DB_PATH
    contact_email: str = DEFAULT_CONTACT_EMAIL
    search_timeout: float = DEFAULT_SEARCH_TIMEOUT
    log_level: str = DEFAULT_LOG_LEVEL
    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    cors_origins: List[str] = field(default_factory=lambda: ["*"])


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _env_list(name: str, default: List[str]) -> List[str]:
    raw = os.environ.get(name)
    if not raw:
        return list(default)
    items = [item.strip() for item in raw.split(",") if item.strip()]
    return items or list(default)


def get_config() -> AppConfig:
    """Build configuration from environment variables."""
    return AppConfig(
        database_path=os.environ.get("SCIENCEAI_DB_PATH", DEFAULT_DB_PATH),
        contact_email=os.environ.get("SCIENCEAI_CONTACT_EMAIL", DEFAULT_CONTACT_EMAIL),
        search_timeout=_env_float("SCIENCEAI_SEARCH_TIMEOUT", DEFAULT_SEARCH_TIMEOUT),
        log_level=os.environ.get("SCIENCEAI_LOG_LEVEL", DEFAULT_LOG_LEVEL).upper(),
        host=os.environ.get("SCIENCEAI_HOST", DEFAULT_HOST),
        port=_env_int("SCIENCEAI_PORT", DEFAULT_PORT),
        cors_origins=_env_list("SCIENCEAI_CORS_ORIGINS", ["*"]),
    )


def configure_logging(level: str = DEFAULT_LOG_LEVEL) -> None:
    """Configure root logging once for the server or CLI process."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
