"""Configuration loader.

Reads environment variables and `.env` to configure the service.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import List, Optional

from dotenv import load_dotenv

from .errors import ConfigurationError

# Load variables from a .env file if present (project root).
load_dotenv(dotenv_path=Path(__file__).resolve().parents[1] / ".env")


def _get_env(name: str, default: Optional[str] = None) -> Optional[str]:
    return os.environ.get(name, default)


def _parse_bool(value: Optional[str], default: bool = False) -> bool:
    if value is None:
        return default
    return value.lower() in ("1", "true", "yes")


def _parse_int(value: Optional[str], default: int) -> int:
    try:
        return int(value) if value is not None else default
    except ValueError:
        return default


def _parse_float(value: Optional[str], default: float) -> float:
    try:
        return float(value) if value is not None else default
    except ValueError:
        return default


def _get_list(name: str) -> list[str]:
    raw = _get_env(name, "") or ""
    return [s.strip() for s in raw.split(",") if s.strip()]


# ---- Telegram ----------------------------------------------------------------

# Bot token from @BotFather. Required.
TELEGRAM_BOT_TOKEN: Optional[str] = _get_env("TELEGRAM_BOT_TOKEN")

# Long-poll timeout for incoming updates (seconds).
TELEGRAM_POLL_TIMEOUT: int = _parse_int(_get_env("TELEGRAM_POLL_TIMEOUT", "30"), 30)

# Optional allowlist of chat ids allowed to issue commands (comma-separated).
ALLOWED_CHAT_IDS: List[str] = _get_list("ALLOWED_CHAT_IDS")

# ---- Scheduling ----------------------------------------------------------------

# Minutes between sweeps; sweeps fire on wall-clock boundaries (*/N).
CHECK_INTERVAL: int = _parse_int(_get_env("CHECK_INTERVAL", "5"), 5)

# Delay before the one-off sweep right after startup.
INITIAL_SWEEP_DELAY_SECONDS: float = _parse_float(_get_env("INITIAL_SWEEP_DELAY_SECONDS", "2"), 2.0)

# Random pause between acquisitions in /trackall (seconds).
TRACK_ALL_DELAY_MIN: float = _parse_float(_get_env("TRACK_ALL_DELAY_MIN", "2"), 2.0)
TRACK_ALL_DELAY_MAX: float = _parse_float(_get_env("TRACK_ALL_DELAY_MAX", "5"), 5.0)

# ---- Acquisition ---------------------------------------------------------------

BASE_URL: str = _get_env("BASE_URL", "https://goldapple.ru") or "https://goldapple.ru"

# Attempts per acquisition (not additional retries).
MAX_RETRIES: int = _parse_int(_get_env("MAX_RETRIES", "3"), 3)

BROWSER_HEADLESS: bool = _parse_bool(_get_env("BROWSER_HEADLESS", "true"), True)
BROWSER_TIMEOUT_MS: int = _parse_int(_get_env("BROWSER_TIMEOUT_MS", "60000"), 60000)

# Optional path to a system Chrome/Chromium build.
BROWSER_EXECUTABLE_PATH: Optional[str] = _get_env("BROWSER_EXECUTABLE_PATH") or None

# ---- Storage -------------------------------------------------------------------

DATA_DIR: str = _get_env("DATA_DIR", "data") or "data"
SUBSCRIPTIONS_FILE: str = str(Path(DATA_DIR) / "subscriptions.json")
CATEGORIES_FILE: str = str(Path(DATA_DIR) / "categories.json")
HISTORY_LIMIT: int = _parse_int(_get_env("HISTORY_LIMIT", "100"), 100)

# Logging level: DEBUG, INFO, WARNING, ERROR.
LOG_LEVEL: str = _get_env("LOG_LEVEL", "INFO") or "INFO"


# ---- Validation --------------------------------------------------------------

def validate() -> None:
    """Validate required configuration parameters."""
    if not TELEGRAM_BOT_TOKEN:
        raise ConfigurationError(
            "TELEGRAM_BOT_TOKEN must be set. See .env.example for details."
        )
    if CHECK_INTERVAL < 1:
        raise ConfigurationError("CHECK_INTERVAL must be a whole number of minutes >= 1.")


__all__ = [
    "TELEGRAM_BOT_TOKEN",
    "TELEGRAM_POLL_TIMEOUT",
    "ALLOWED_CHAT_IDS",
    "CHECK_INTERVAL",
    "INITIAL_SWEEP_DELAY_SECONDS",
    "TRACK_ALL_DELAY_MIN",
    "TRACK_ALL_DELAY_MAX",
    "BASE_URL",
    "MAX_RETRIES",
    "BROWSER_HEADLESS",
    "BROWSER_TIMEOUT_MS",
    "BROWSER_EXECUTABLE_PATH",
    "DATA_DIR",
    "SUBSCRIPTIONS_FILE",
    "CATEGORIES_FILE",
    "HISTORY_LIMIT",
    "LOG_LEVEL",
    "validate",
]
