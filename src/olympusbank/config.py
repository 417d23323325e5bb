"""Configuration constants for Olympus Bank."""
from __future__ import annotations

import os
from datetime import timedelta

from dotenv import load_dotenv

load_dotenv()


def _float_env(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError:
        return default


LOCAL_DB_FILE_NAME = os.environ.get("OLYMPUS_LOCAL_DB", "olympusbank.db")
REMOTE_URL = os.environ.get("OLYMPUS_REMOTE_URL", "").strip()
MEMORY_REMOTE_URL = "memory://"
DEFAULT_FAMILY_ID = os.environ.get("OLYMPUS_DEFAULT_FAMILY_ID", "default-family")
SESSION_SECRET = os.environ.get("OLYMPUS_SESSION_SECRET", "change-this-session-secret")
LOG_PATH = os.environ.get("OLYMPUS_LOG_PATH") or None

INITIAL_SYNC_DELAY_SECONDS = _float_env("OLYMPUS_INITIAL_SYNC_DELAY", 5.0)
SYNC_INTERVAL_SECONDS = _float_env("OLYMPUS_SYNC_INTERVAL", 30.0)
REMOTE_TIMEOUT_SECONDS = _float_env("OLYMPUS_REMOTE_TIMEOUT", 10.0)
INTEREST_CHECK_INTERVAL_SECONDS = _float_env("OLYMPUS_INTEREST_CHECK_INTERVAL", 24 * 60 * 60.0)

INTEREST_PERIOD = timedelta(days=30)

# Local key layout.
FAMILY_KEY_PREFIX = "store:"
LEGACY_RECORD_KEY = "olympusBank"
ACTIVE_FAMILY_KEY = "olympusBankFamilyId"
AUTH_STATE_KEY = "olympusBankAuthState"
CONNECTIVITY_KEY = "olympusBankConnection"

# Remote layout.
REMOTE_COLLECTION = "families"
CONNECTION_TEST_COLLECTION = "connection_test"

__all__ = [
    "LOCAL_DB_FILE_NAME",
    "REMOTE_URL",
    "MEMORY_REMOTE_URL",
    "DEFAULT_FAMILY_ID",
    "SESSION_SECRET",
    "LOG_PATH",
    "INITIAL_SYNC_DELAY_SECONDS",
    "SYNC_INTERVAL_SECONDS",
    "REMOTE_TIMEOUT_SECONDS",
    "INTEREST_CHECK_INTERVAL_SECONDS",
    "INTEREST_PERIOD",
    "FAMILY_KEY_PREFIX",
    "LEGACY_RECORD_KEY",
    "ACTIVE_FAMILY_KEY",
    "AUTH_STATE_KEY",
    "CONNECTIVITY_KEY",
    "REMOTE_COLLECTION",
    "CONNECTION_TEST_COLLECTION",
]
