"""
Configuration Module

Loads runtime settings from the environment (and a .env file, if present).
"""

import os
import sys
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

from .exceptions import ConfigurationError

logger = logging.getLogger("canvas_context.config")

# Default cache location (can be overridden with CANVAS_CACHE_DB)
DEFAULT_DB_PATH = Path.home() / ".canvas-context" / "canvas_cache.db"

DEFAULT_MAX_AGE_HOURS = 6.0
DEFAULT_CHUNK_SIZE = 512
DEFAULT_CHUNK_OVERLAP = 128
DEFAULT_EMBEDDING_MODEL = "all-MiniLM-L6-v2"
DEFAULT_MAX_PAGES = 100
DEFAULT_REQUEST_TIMEOUT = 30.0

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off"}


@dataclass
class Settings:
    """Runtime settings for the client, indexer and server."""

    domain: Optional[str] = None
    token: Optional[str] = None
    db_path: Path = DEFAULT_DB_PATH
    max_age_hours: float = DEFAULT_MAX_AGE_HOURS
    chunk_size: int = DEFAULT_CHUNK_SIZE
    chunk_overlap: int = DEFAULT_CHUNK_OVERLAP
    embedding_model: str = DEFAULT_EMBEDDING_MODEL
    max_pages: int = DEFAULT_MAX_PAGES
    request_timeout: float = DEFAULT_REQUEST_TIMEOUT
    index_timeout_seconds: Optional[float] = None
    index_on_startup: bool = True
    show_progress: bool = True
    log_level: str = "INFO"


def _env_float(name: str, default: Optional[float]) -> Optional[float]:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be a number, got: {raw!r}")


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be an integer, got: {raw!r}")


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    value = raw.strip().lower()
    if value in _TRUE_VALUES:
        return True
    if value in _FALSE_VALUES:
        return False
    raise ConfigurationError(f"{name} must be true or false, got: {raw!r}")


def load_settings(dotenv: bool = True) -> Settings:
    """
    Build Settings from environment variables.

    Args:
        dotenv: If True, load a .env file into the environment first

    Returns:
        Settings instance

    Raises:
        ConfigurationError: If a numeric or boolean variable cannot be parsed
    """
    if dotenv:
        load_dotenv()

    db_path = os.getenv("CANVAS_CACHE_DB")
    settings = Settings(
        domain=os.getenv("CANVAS_DOMAIN"),
        token=os.getenv("CANVAS_API_TOKEN"),
        db_path=Path(db_path).expanduser() if db_path else DEFAULT_DB_PATH,
        max_age_hours=_env_float("CANVAS_INDEX_MAX_AGE_HOURS", DEFAULT_MAX_AGE_HOURS),
        chunk_size=_env_int("CANVAS_CHUNK_SIZE", DEFAULT_CHUNK_SIZE),
        chunk_overlap=_env_int("CANVAS_CHUNK_OVERLAP", DEFAULT_CHUNK_OVERLAP),
        embedding_model=os.getenv("CANVAS_EMBEDDING_MODEL") or DEFAULT_EMBEDDING_MODEL,
        max_pages=_env_int("CANVAS_MAX_PAGES", DEFAULT_MAX_PAGES),
        request_timeout=_env_float("CANVAS_REQUEST_TIMEOUT", DEFAULT_REQUEST_TIMEOUT),
        index_timeout_seconds=_env_float("CANVAS_INDEX_TIMEOUT_SECONDS", None),
        index_on_startup=_env_bool("CANVAS_INDEX_ON_STARTUP", True),
        show_progress=_env_bool("CANVAS_SHOW_PROGRESS", True),
        log_level=(os.getenv("CANVAS_LOG_LEVEL") or "INFO").upper(),
    )

    if settings.chunk_overlap >= settings.chunk_size:
        raise ConfigurationError(
            f"CANVAS_CHUNK_OVERLAP ({settings.chunk_overlap}) must be smaller than "
            f"CANVAS_CHUNK_SIZE ({settings.chunk_size})"
        )

    logger.debug(f"Loaded settings: db_path={settings.db_path}, max_age_hours={settings.max_age_hours}")
    return settings


def configure_logging(level: str = "INFO") -> None:
    """Send log records to stderr; stdout carries the MCP protocol."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )
