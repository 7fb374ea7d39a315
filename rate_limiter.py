# rate_limiter.py
import logging
from fastapi import Request
from slowapi import Limiter
from slowapi.util import get_remote_address
from config import PROCESS_RATE_LIMIT, RATE_LIMIT_ENABLED

logger = logging.getLogger(__name__)

# --- Step 1: Define a Key Function ---
# There are no user accounts, so every caller is identified by IP address.
def get_request_identifier(request: Request) -> str:
    """
    Identifies the requester by client IP and remembers the key on the request
    so the 429 handler can report it.
    """
    key = f"ip:{get_remote_address(request)}"
    request.state.rate_limit_key = key
    return key

# --- Step 2: Initialize the Limiter with the Key Function ---
limiter = Limiter(
    key_func=get_request_identifier,
    strategy="moving-window",
    enabled=RATE_LIMIT_ENABLED,
)

if not RATE_LIMIT_ENABLED:
    logger.warning("Rate limiting is disabled (RATE_LIMIT_ENABLED is false).")

# --- Step 3: Rate limit for the processing endpoint ---
def get_process_rate_limit() -> str:
    return PROCESS_RATE_LIMIT
