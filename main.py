# main.py
# The file is responsible for:
# Creating the FastAPI app instance.
# Configuring and adding middleware (Request ID, Logging, Security, CORS, Upload size).
# Setting up global services like logging and Sentry.
# Registering the error handlers that turn service errors into plain-text responses.
# Including the routers, which contain the actual endpoint logic.

import uuid
import time
import logging
from contextvars import ContextVar
from contextlib import asynccontextmanager

from pythonjsonlogger import jsonlogger

from fastapi import FastAPI, Request, status
from fastapi.exception_handlers import http_exception_handler
from fastapi.responses import PlainTextResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request as StarletteRequest # Renamed to avoid shadowing
from starlette.responses import Response as StarletteResponse
from starlette.types import ASGIApp

# --- Rate Limiting Imports ---
from slowapi.errors import RateLimitExceeded
from rate_limiter import limiter

# --- Local Project Imports ---
import config
from config import HOST, PORT, LOG_LEVEL, SENTRY_DSN, MAX_UPLOAD_SIZE_BYTES
from routers import health as health_router
from routers import process as process_router
from services.errors import ImageServiceError, MalformedForm, MethodNotAllowed

import sentry_sdk
from sentry_sdk.integrations.logging import LoggingIntegration

# --- Type Hinting ---
from typing import Callable, Awaitable

RequestResponseCall = Callable[[StarletteRequest], Awaitable[StarletteResponse]]


# --- Logging Configuration ---
# Configure this early so all subsequent modules can use it.
request_id_var: ContextVar[str] = ContextVar("request_id", default="N/A")

_original_record_factory = logging.getLogRecordFactory()


def _record_factory(*args, **kwargs):
    # Every record carries the id of the request being handled (if any).
    record = _original_record_factory(*args, **kwargs)
    record.request_id = request_id_var.get()
    return record


logging.setLogRecordFactory(_record_factory)

log_handler = logging.StreamHandler()
formatter = jsonlogger.JsonFormatter(
    '%(asctime)s %(levelname)s %(name)s %(module)s %(funcName)s %(lineno)d %(message)s '
    '%(request_id)s %(path)s %(method)s %(status_code)s %(response_time_ms)s'
)
log_handler.setFormatter(formatter)

# Configure the root logger to capture logs from all libraries (e.g., uvicorn, PIL)
root_logger = logging.getLogger()
root_logger.setLevel(LOG_LEVEL)
# Remove any default handlers to avoid duplicate logs
for handler in root_logger.handlers[:]:
    root_logger.removeHandler(handler)
root_logger.addHandler(log_handler)

# PIL logs every plugin it tries at DEBUG
logging.getLogger("PIL").setLevel(max(logging.INFO, root_logger.level))

logger = logging.getLogger(__name__)


# --- Sentry Initialization ---
if SENTRY_DSN:
    sentry_logging = LoggingIntegration(
        level=logging.INFO,         # Breadcrumbs level
        event_level=logging.ERROR   # Event level
    )
    sentry_sdk.init(
        dsn=SENTRY_DSN,
        integrations=[sentry_logging],
        traces_sample_rate=1.0,
    )
    logger.info("Sentry initialized.")
else:
    logger.info("SENTRY_DSN not set. Sentry will not be initialized.")


# --- Constants ---
# Room for the multipart boundaries and the small text fields around the file.
MULTIPART_OVERHEAD_BYTES = 1 * 1024 * 1024


# --- Middleware Definitions ---

class RequestIdMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: StarletteRequest, call_next: RequestResponseCall) -> StarletteResponse:
        request_id = uuid.uuid4().hex
        request.state.request_id = request_id
        token = request_id_var.set(request_id)
        try:
            response = await call_next(request)
        finally:
            request_id_var.reset(token)

        response.headers['X-Request-ID'] = request_id
        return response

class ResponseTimeLoggingMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: StarletteRequest, call_next: RequestResponseCall) -> StarletteResponse:
        start_time = time.time()
        response = await call_next(request)
        process_time_ms = (time.time() - start_time) * 1000

        log_details = {
            "path": request.url.path,
            "method": request.method,
            "status_code": response.status_code,
            "response_time_ms": round(process_time_ms, 2)
        }
        logger.info("Request processed", extra=log_details)
        return response

class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: StarletteRequest, call_next: RequestResponseCall) -> StarletteResponse:
        response = await call_next(request)
        response.headers['X-Content-Type-Options'] = 'nosniff'
        response.headers['X-Frame-Options'] = 'DENY'
        response.headers['Content-Security-Policy'] = "default-src 'self'; object-src 'none'; frame-ancestors 'none';"
        response.headers['Strict-Transport-Security'] = 'max-age=31536000; includeSubDomains'
        return response

class CORSHeadersMiddleware(BaseHTTPMiddleware):
    """Adds the permissive CORS headers to every /process response, errors included."""
    async def dispatch(self, request: StarletteRequest, call_next: RequestResponseCall) -> StarletteResponse:
        response = await call_next(request)
        if request.url.path == process_router.PROCESS_PATH:
            response.headers.update(process_router.CORS_HEADERS)
        return response

class UploadSizeLimitMiddleware(BaseHTTPMiddleware):
    """
    Rejects uploads whose declared Content-Length is over the limit before the
    multipart body is parsed. Chunked uploads carry no length and are bounded by
    the router, which reads at most one byte past the limit.
    """
    def __init__(self, app: ASGIApp, max_size: int):
        super().__init__(app)
        self.max_size = max_size

    async def dispatch(self, request: StarletteRequest, call_next: RequestResponseCall) -> StarletteResponse:
        if request.method != "POST" or request.url.path != process_router.PROCESS_PATH:
            return await call_next(request)

        content_length_header = request.headers.get("content-length")
        if content_length_header:
            try:
                content_length = int(content_length_header)
            except ValueError:
                logger.warning(f"Invalid Content-Length header: {content_length_header}")
                return await call_next(request)
            if content_length > self.max_size:
                exc = MalformedForm(
                    f"request body too large ({content_length} bytes, maximum is {config.MAX_UPLOAD_SIZE_MB}MB)",
                    too_large=True,
                )
                logger.warning(exc.message)
                return PlainTextResponse(exc.message, status_code=exc.status_code)

        return await call_next(request)


# --- Exception Handlers ---

async def image_service_error_handler(request: Request, exc: ImageServiceError):
    """Renders service errors as plain text with the status each error carries."""
    if exc.status_code >= status.HTTP_500_INTERNAL_SERVER_ERROR:
        logger.error(f"Request to {request.url.path} failed: {exc.message}", exc_info=exc)
    else:
        logger.warning(f"Request to {request.url.path} rejected: {exc.message}")

    headers = None
    if isinstance(exc, MethodNotAllowed):
        headers = {"Allow": ", ".join(process_router.ALLOWED_METHODS)}
    return PlainTextResponse(exc.message, status_code=exc.status_code, headers=headers)

async def method_not_allowed_handler(request: Request, exc: StarletteHTTPException):
    """Any verb routed to /process without a handler of its own gets the plain-text 405."""
    if request.url.path == process_router.PROCESS_PATH:
        return await image_service_error_handler(request, MethodNotAllowed(request.method))
    return await http_exception_handler(request, exc)

async def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded):
    """Custom handler to add rate limit headers to 429 responses."""
    logger.warning(
        f"Rate limit exceeded for {getattr(request.state, 'rate_limit_key', 'unknown')}: {exc.detail}"
    )
    response = PlainTextResponse(
        f"Rate limit exceeded: {exc.detail}",
        status_code=status.HTTP_429_TOO_MANY_REQUESTS,
    )
    limit_item = getattr(getattr(exc, "limit", None), "limit", None)
    if limit_item is not None:
        response.headers["X-RateLimit-Limit"] = str(limit_item.amount)
        response.headers["X-RateLimit-Remaining"] = "0"
        response.headers["Retry-After"] = str(limit_item.get_expiry())
    return response


# --- FastAPI Application Setup ---

@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(
        "Application starting up...",
        extra={"max_upload_bytes": MAX_UPLOAD_SIZE_BYTES, "strict_params": config.STRICT_PARAMS},
    )
    yield
    logger.info("Application shutting down.")


app = FastAPI(
    lifespan=lifespan,
    title="Image Resize API",
    description="Resizes an uploaded image, adjusts contrast and sharpness, and returns it as PNG.",
    version="1.0.0"
)

# Add Rate Limiter state and exception handlers
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)
app.add_exception_handler(ImageServiceError, image_service_error_handler)
app.add_exception_handler(status.HTTP_405_METHOD_NOT_ALLOWED, method_not_allowed_handler)

# Add Middlewares (the last one added is the outermost)
app.add_middleware(UploadSizeLimitMiddleware, max_size=MAX_UPLOAD_SIZE_BYTES + MULTIPART_OVERHEAD_BYTES)
app.add_middleware(CORSHeadersMiddleware)
app.add_middleware(SecurityHeadersMiddleware)
app.add_middleware(ResponseTimeLoggingMiddleware)
app.add_middleware(RequestIdMiddleware)


# --- Include Routers ---
app.include_router(health_router.router, tags=["Health"])
app.include_router(process_router.router, tags=["Image Processing"])


# --- Root Endpoint ---
@app.get("/", tags=["Root"])
async def root():
    """A simple root endpoint to confirm the API is running."""
    return {"message": "Image Resize API is running."}


if __name__ == "__main__":
    import uvicorn

    logger.info(f"Starting server on {HOST}:{PORT}")
    # log_config=None keeps uvicorn on the JSON handler configured above
    uvicorn.run(app, host=HOST, port=PORT, log_config=None)
