"""Centralized configuration for environment variables."""

import os
from pathlib import Path

STORE_DIR_ENV = "SOFTBALL_STORE_DIR"
SEASON_ID_ENV = "SOFTBALL_SEASON_ID"
LIVE_WINDOW_ENV = "SOFTBALL_LIVE_WINDOW_MINUTES"
LOG_LEVEL_ENV = "SOFTBALL_LOG_LEVEL"

DEFAULT_SEASON_ID = "current"
DEFAULT_LIVE_WINDOW_MINUTES = 30


def get_store_dir() -> Path | None:
    """Return the JSON document store directory, or None for in-memory storage."""
    value = os.environ.get(STORE_DIR_ENV, "")
    return Path(value) if value else None


def get_season_id() -> str:
    return os.environ.get(SEASON_ID_ENV, DEFAULT_SEASON_ID)


def get_live_window_seconds() -> int:
    """Return how recently metadata must have changed for a game to count as live."""
    raw = os.environ.get(LIVE_WINDOW_ENV, "")
    try:
        minutes = int(raw) if raw else DEFAULT_LIVE_WINDOW_MINUTES
    except ValueError:
        minutes = DEFAULT_LIVE_WINDOW_MINUTES
    return max(1, minutes) * 60


def get_log_level() -> str:
    return os.environ.get(LOG_LEVEL_ENV, "INFO").upper()


def create_document_store():
    """Create the document store selected by the environment."""
    from data.document_store import JsonFileDocumentStore, MemoryDocumentStore

    store_dir = get_store_dir()
    if store_dir is None:
        return MemoryDocumentStore()
    return JsonFileDocumentStore(store_dir)
