"""
Runtime configuration.

Values come from the environment, with a .env file at the project root loaded
first via python-dotenv:

    OPENAI_API_KEY=sk-...
    FIREBASE_CREDENTIALS_PATH=./firebase-credentials.json

Timing values are in milliseconds.
"""

import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv

from .logger import logger

DEFAULT_CLASSIFIER_MODEL = "gpt-4o-mini"
DEFAULT_DURATION_TICK_MS = 1000
DEFAULT_VALIDATION_INTERVAL_MS = 3000
DEFAULT_ADVANCE_GRACE_MS = 2000
DEFAULT_TAP_APPROVE_PROBABILITY = 0.7


@dataclass
class Settings:
    openai_api_key: Optional[str] = None
    classifier_model: str = DEFAULT_CLASSIFIER_MODEL
    firebase_credentials_path: Optional[str] = None

    duration_tick_ms: int = DEFAULT_DURATION_TICK_MS
    validation_interval_ms: int = DEFAULT_VALIDATION_INTERVAL_MS
    advance_grace_ms: int = DEFAULT_ADVANCE_GRACE_MS
    tap_approve_probability: float = DEFAULT_TAP_APPROVE_PROBABILITY

    debug: bool = True

    @property
    def masked_api_key(self) -> str:
        """API key with only the first 8 and last 4 characters visible."""
        key = self.openai_api_key
        if not key:
            return ""
        return f"{key[:8]}...{key[-4:]}" if len(key) > 12 else "***"


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = int(raw)
    except ValueError:
        logger.warning(f"{name}={raw!r} is not an integer, using {default}")
        return default
    if value <= 0:
        logger.warning(f"{name} must be positive, using {default}")
        return default
    return value


def _env_probability(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = float(raw)
    except ValueError:
        logger.warning(f"{name}={raw!r} is not a number, using {default}")
        return default
    if not 0.0 <= value <= 1.0:
        logger.warning(f"{name} must be between 0 and 1, using {default}")
        return default
    return value


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def load_settings(dotenv: bool = True) -> Settings:
    """Load settings from the environment (and .env unless disabled)."""
    if dotenv:
        logger.env("Loading environment variables from .env file...")
        if load_dotenv():
            logger.env_success("dotenv file loaded successfully")
        else:
            logger.warning("No .env file found or file is empty")

    settings = Settings(
        openai_api_key=os.getenv("OPENAI_API_KEY") or None,
        classifier_model=os.getenv("LESSONBUDDY_CLASSIFIER_MODEL") or DEFAULT_CLASSIFIER_MODEL,
        firebase_credentials_path=os.getenv("FIREBASE_CREDENTIALS_PATH") or None,
        duration_tick_ms=_env_int("LESSONBUDDY_DURATION_TICK_MS", DEFAULT_DURATION_TICK_MS),
        validation_interval_ms=_env_int(
            "LESSONBUDDY_VALIDATION_INTERVAL_MS", DEFAULT_VALIDATION_INTERVAL_MS
        ),
        advance_grace_ms=_env_int("LESSONBUDDY_ADVANCE_GRACE_MS", DEFAULT_ADVANCE_GRACE_MS),
        tap_approve_probability=_env_probability(
            "LESSONBUDDY_TAP_APPROVE_PROBABILITY", DEFAULT_TAP_APPROVE_PROBABILITY
        ),
        debug=_env_bool("LESSONBUDDY_DEBUG", True),
    )

    if settings.openai_api_key:
        logger.env_success(f"OPENAI_API_KEY found: {settings.masked_api_key}")
    else:
        logger.env_error("OPENAI_API_KEY not found in environment!")
        logger.warning("Tap steps will use the stub classifier")

    logger.env(f"Classifier model: {settings.classifier_model}")
    return settings
