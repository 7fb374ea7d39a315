import os
import logging
from dotenv import load_dotenv
from limits.util import parse_many

# config.py

load_dotenv()


def _get_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


# Server
HOST: str = os.getenv("HOST", "0.0.0.0")
PORT = os.getenv("PORT", "8000")

LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO").upper()

# Uploads larger than this are rejected before the image is decoded
MAX_UPLOAD_SIZE_MB = os.getenv("MAX_UPLOAD_SIZE_MB", "20")

# Rate limiting for POST /process (slowapi / limits syntax, e.g. "120/minute")
PROCESS_RATE_LIMIT: str = os.getenv("PROCESS_RATE_LIMIT", "120/minute")
RATE_LIMIT_ENABLED: bool = _get_bool("RATE_LIMIT_ENABLED", "true")

# When enabled, unrecognised form values are rejected instead of falling back to defaults
STRICT_PARAMS: bool = _get_bool("STRICT_PARAMS", "false")

# Sentry is only initialised when a DSN is provided
SENTRY_DSN: str = os.getenv("SENTRY_DSN", "")


def validate_configuration():
    """
    Validates the loaded settings and converts the numeric ones in place.
    Raises ValueError listing every problem found.
    """
    global PORT, MAX_UPLOAD_SIZE_MB
    problems = []

    try:
        port = int(PORT)
        if not 1 <= port <= 65535:
            problems.append(f"PORT (must be between 1 and 65535, got {port})")
    except (TypeError, ValueError):
        problems.append(f"PORT (must be an integer, got '{PORT}')")

    try:
        max_upload = int(MAX_UPLOAD_SIZE_MB)
        if max_upload <= 0:
            problems.append(f"MAX_UPLOAD_SIZE_MB (must be positive, got {max_upload})")
    except (TypeError, ValueError):
        problems.append(f"MAX_UPLOAD_SIZE_MB (must be an integer, got '{MAX_UPLOAD_SIZE_MB}')")

    if not isinstance(logging.getLevelName(LOG_LEVEL), int):
        problems.append(f"LOG_LEVEL (unknown level '{LOG_LEVEL}')")

    try:
        if not parse_many(PROCESS_RATE_LIMIT):
            problems.append("PROCESS_RATE_LIMIT (is empty)")
    except ValueError:
        problems.append(f"PROCESS_RATE_LIMIT (cannot parse '{PROCESS_RATE_LIMIT}')")

    if problems:
        raise ValueError(
            "Configuration problems found:\n - " + "\n - ".join(problems)
        )

    PORT = port
    MAX_UPLOAD_SIZE_MB = max_upload


validate_configuration()

MAX_UPLOAD_SIZE_BYTES: int = MAX_UPLOAD_SIZE_MB * 1024 * 1024
