"""Environment variable validation and management."""

import os
import logging
from typing import Dict, Optional

logger = logging.getLogger(__name__)


class EnvironmentError(Exception):
    """Raised when required environment variables are missing or invalid."""
    pass


def validate_environment() -> None:
    """Validate critical environment variables.

    Raises EnvironmentError if validation fails.
    """
    # Nothing is strictly required: without GENAI_URL the generator runs in
    # offline demo mode and the database defaults to a local file.
    required_vars: Dict[str, str] = {}

    defaults = {
        "DB_PATH": os.getenv("DB_PATH") or "data.db",
    }

    for var, value in defaults.items():
        if not os.getenv(var):
            os.environ[var] = value
            logger.info("Environment variable %s not set; using default '%s'", var, value)

    optional_vars = {
        "GENAI_URL": "Chat-completions endpoint for question and hint generation",
        "GENAI_API_KEY": "Bearer token for the generation endpoint",
        "GENAI_MODEL_ID": "Model used to generate questions",
        "GENAI_HINT_MODEL_ID": "Model used to generate study hints",
        "QUIZ_AWAIT_COMMITS": "Wait for pending writes before advancing a session",
        "QUIZ_MAX_SESSIONS": "Upper bound on sessions kept in memory by the API",
    }

    missing = []
    for var, description in required_vars.items():
        if not os.getenv(var):
            missing.append(f"{var} ({description})")

    if missing:
        raise EnvironmentError(
            f"Missing required environment variables: {', '.join(missing)}"
        )

    value = os.getenv("GENAI_URL")
    if value and not (value.startswith("http://") or value.startswith("https://")):
        raise EnvironmentError(f"Invalid URL format for GENAI_URL: {value}")

    timeout = os.getenv("GENAI_TIMEOUT")
    if timeout:
        try:
            if float(timeout) <= 0:
                raise ValueError(timeout)
        except ValueError as exc:
            raise EnvironmentError(f"GENAI_TIMEOUT must be a positive number of seconds: {timeout}") from exc

    for var, description in optional_vars.items():
        if not os.getenv(var):
            logger.warning("Optional environment variable not set: %s (%s)", var, description)


def get_env_bool(name: str, default: bool = False) -> bool:
    """Get boolean value from environment variable."""
    value = os.getenv(name)
    if value is None:
        return default
    return value.lower() in {"1", "true", "yes", "on", "enabled"}


def get_env_float(name: str, default: Optional[float] = None) -> Optional[float]:
    """Get a float from the environment, ``default`` when unset or unparsable."""
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    try:
        return float(value)
    except ValueError:
        logger.warning("Ignoring non-numeric value for %s: %r", name, value)
        return default


def get_env_int(name: str, default: int) -> int:
    """Get an int from the environment, ``default`` when unset or unparsable."""
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    try:
        return int(value)
    except ValueError:
        logger.warning("Ignoring non-integer value for %s: %r", name, value)
        return default
