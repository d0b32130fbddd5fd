#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Core configuration module for the discipline catalog sync engine.

This module provides centralized configuration management including:
- Environment variable loading
- Synchronization settings (worker pool, timeouts, retry budgets)
- Path management
"""

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

# Base directory for the package
BASE_DIR = Path(__file__).parent.parent

DEFAULT_PORTAL_BASE_URL = 'https://www.alunoonline.uerj.br'
DEFAULT_DATABASE_PATH = BASE_DIR / 'data' / 'catalog.db'


def load_environment():
    """Load environment variables from .env file."""
    possible_paths = [
        BASE_DIR / '.env',                      # Package root
        BASE_DIR.parent / '.env',               # Project root
        Path('.env')                            # Current working directory
    ]

    for path in possible_paths:
        if path.exists():
            load_dotenv(dotenv_path=path, override=False)
            break


# Load environment on import
load_environment()


@dataclass(frozen=True)
class SyncSettings:
    """Immutable runtime options for a synchronization run."""

    portal_base_url: str = DEFAULT_PORTAL_BASE_URL
    max_workers: int = 4
    request_timeout: float = 15.0
    max_retries: int = 3
    retry_backoff: float = 1.0
    session_ttl_minutes: int = 20
    persistence_retries: int = 3
    database_path: str = str(DEFAULT_DATABASE_PATH)


def _int_env(name, default):
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    try:
        return int(value)
    except ValueError:
        raise ValueError(f"Environment variable {name} must be an integer, got {value!r}")


def _float_env(name, default):
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    try:
        return float(value)
    except ValueError:
        raise ValueError(f"Environment variable {name} must be a number, got {value!r}")


def load_settings() -> SyncSettings:
    """
    Build the synchronization settings from the process environment.

    Returns:
        SyncSettings: Settings with defaults for every unset variable
    """
    settings = SyncSettings(
        portal_base_url=os.getenv('PORTAL_BASE_URL', DEFAULT_PORTAL_BASE_URL).rstrip('/'),
        max_workers=_int_env('SYNC_MAX_WORKERS', 4),
        request_timeout=_float_env('REQUEST_TIMEOUT', 15.0),
        max_retries=_int_env('MAX_RETRIES', 3),
        retry_backoff=_float_env('RETRY_BACKOFF', 1.0),
        session_ttl_minutes=_int_env('SESSION_TTL_MINUTES', 20),
        persistence_retries=_int_env('PERSISTENCE_RETRIES', 3),
        database_path=os.getenv('DATABASE_PATH', str(DEFAULT_DATABASE_PATH)),
    )

    if settings.max_workers < 1:
        raise ValueError("SYNC_MAX_WORKERS must be at least 1")
    if settings.max_retries < 0 or settings.persistence_retries < 0:
        raise ValueError("Retry budgets cannot be negative")

    return settings
