# media_bridge/transport/http_app.py
"""
HTTP surface for the two conversion pipelines.

Routes:
- POST /convert-image      {"imageUrl" | "url"} → base64 / data URI / inlineData
- GET  /convert-image?url= same, via query string
- POST /decrypt-media      multipart: mediaKey + file → decrypted bytes
- GET  /health             liveness
- GET  /                   service info
- GET  /metrics            counters and histograms (token-protected if configured)

Status mapping:
- 200 success
- 400 missing / malformed input, or the remote fetch failed
- 500 decryption failure or any unexpected fault
"""
from __future__ import annotations

import time
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from fastapi import Depends, FastAPI, File, Form, Query, Request, UploadFile
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from starlette.exceptions import HTTPException as StarletteHTTPException

from media_bridge.config import settings
from media_bridge.core.domain import ErrorCode, FetchResult
from media_bridge.infra.logging_config import get_logger, mask_url, setup_logging
from media_bridge.infra.media_crypto import decrypt_media_async
from media_bridge.infra.media_fetcher import fetch_and_encode, fetch_until_disconnected
from media_bridge.infra.metrics import get_metrics_collector
from media_bridge.infra.rate_limiter import InMemoryRateLimiter, RateLimitDependency
from media_bridge.transport.errors import ApiError, error_envelope
from media_bridge.transport.middleware import (
    BodySizeLimitMiddleware,
    ErrorHandlingMiddleware,
    RequestIDMiddleware,
    RequestLoggingMiddleware,
    SecurityHeadersMiddleware,
)
from media_bridge.transport.schemas import ConvertImageIn, ConvertImageOut, ErrorOut
from media_bridge.transport.security import require_metrics_auth, sanitize_error_message
from media_bridge.transport.validation import (
    require_file_bytes,
    require_media_key,
    require_target_url,
)

# Initialize logging first
setup_logging(
    level=settings.log_level,
    use_json=settings.is_production
)

logger = get_logger(__name__)

SERVICE_NAME = "Media Bridge"
SERVICE_VERSION = "1.0.0"

_STARTED_AT = time.monotonic()


# ============================================================================
# DEPENDENCIES
# ============================================================================

async def rate_limit_check(request: Request) -> None:
    """Rate limit dependency for conversion endpoints"""
    limiter_dep = request.app.state.rate_limiter
    await limiter_dep(request)


# ============================================================================
# LIFESPAN
# ============================================================================

@asynccontextmanager
async def lifespan(fastapi_app: FastAPI):
    """Application lifecycle: startup and shutdown"""

    # STARTUP
    logger.info(f"Starting application: env={settings.app_env}")

    if settings.is_production:
        problems = settings.validate_required_for_production()
        if problems:
            logger.critical(f"Invalid production settings: {problems}")
            raise RuntimeError(f"Invalid production config: {problems}")

    logger.info(
        f"Fetch limits: timeout={settings.fetch_timeout_seconds}s, "
        f"max_bytes={settings.fetch_max_bytes}, max_redirects={settings.fetch_max_redirects}"
    )
    logger.info("Application startup complete")

    yield

    # SHUTDOWN
    logger.info("Shutting down application")

    from media_bridge.infra.http_client import close_all_sessions
    await close_all_sessions()

    logger.info("Application shutdown complete")


# ============================================================================
# CREATE APP
# ============================================================================

app = FastAPI(
    title=SERVICE_NAME,
    description="Fetch remote images as base64 payloads and decrypt AES-256-CBC media blobs",
    version=SERVICE_VERSION,
    lifespan=lifespan,
    docs_url=None if settings.is_production else "/docs",
    redoc_url=None if settings.is_production else "/redoc",
    openapi_url=None if settings.is_production else "/openapi.json",
)

app.state.rate_limiter = RateLimitDependency(
    InMemoryRateLimiter(
        max_requests=settings.rate_limit_per_minute,
        window_seconds=60,
    )
)

if settings.is_production or settings.is_staging:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins if settings.allowed_origins != ["*"] else [],
        allow_credentials=False,
        allow_methods=["GET", "POST"],
        allow_headers=["Content-Type", "Authorization", "X-Request-ID"],
    )
else:
    # More permissive in dev
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )

app.add_middleware(SecurityHeadersMiddleware)
app.add_middleware(BodySizeLimitMiddleware, max_bytes=settings.max_request_body_bytes)

# Add custom middleware
app.add_middleware(ErrorHandlingMiddleware)
app.add_middleware(RequestLoggingMiddleware, enabled=settings.enable_request_logging)
app.add_middleware(RequestIDMiddleware)


# ============================================================================
# EXCEPTION HANDLERS
# ============================================================================

_STATUS_CODES = {
    400: ErrorCode.INVALID_REQUEST,
    401: ErrorCode.UNAUTHORIZED,
    404: ErrorCode.NOT_FOUND,
    405: ErrorCode.NOT_FOUND,
    413: ErrorCode.PAYLOAD_TOO_LARGE,
    429: ErrorCode.RATE_LIMITED,
}


@app.exception_handler(ApiError)
async def api_error_handler(request: Request, exc: ApiError):
    """Render boundary errors (missing / invalid input) as the error envelope"""
    logger.info(f"Request rejected: code={exc.code.value} message={exc.message}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_envelope())


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    """Render Starlette / FastAPI HTTP errors (404, 401, 429, ...) as the error envelope"""
    if exc.status_code >= 500:
        logger.error(f"Server error: {exc.detail}", extra={"status_code": exc.status_code})

    code = _STATUS_CODES.get(
        exc.status_code,
        ErrorCode.INTERNAL_ERROR if exc.status_code >= 500 else ErrorCode.INVALID_REQUEST,
    )
    return JSONResponse(
        status_code=exc.status_code,
        content=error_envelope(str(exc.detail), code),
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Malformed JSON / form bodies are client errors, not 422s"""
    first = exc.errors()[0] if exc.errors() else {}
    location = ".".join(str(p) for p in first.get("loc", ()))
    message = f"Invalid request: {first.get('msg', 'malformed body')}"
    if location:
        message += f" ({location})"
    return JSONResponse(
        status_code=400,
        content=error_envelope(message, ErrorCode.INVALID_REQUEST),
    )


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    """500 INTERNAL_ERROR for anything the route did not handle"""
    logger.error(f"Unhandled exception: {exc.__class__.__name__}", exc_info=True)

    return JSONResponse(
        status_code=500,
        content=error_envelope(
            sanitize_error_message(exc, settings.is_production),
            ErrorCode.INTERNAL_ERROR,
        ),
    )


# ============================================================================
# CONVERSION ENDPOINTS
# ============================================================================

# nginx convention for "client closed request"; the body is never read
CLIENT_CLOSED_REQUEST = 499


def _fetch_response(result: FetchResult | None) -> Response:
    if result is None:
        return Response(status_code=CLIENT_CLOSED_REQUEST)
    return JSONResponse(
        status_code=200 if result.success else 400,
        content=result.to_envelope(),
    )


@app.post(
    "/convert-image",
    dependencies=[Depends(rate_limit_check)],
    responses={200: {"model": ConvertImageOut}, 400: {"model": ErrorOut}},
)
async def convert_image(request: Request, payload: ConvertImageIn | None = None):
    """
    Fetch an image by URL and return it as base64, data URI and
    Vertex AI ``inlineData``.

    Body: ``{"imageUrl": "https://..."}`` (``url`` is accepted as an alias).
    """
    payload = payload or ConvertImageIn()
    target_url = require_target_url(payload.imageUrl, payload.url)

    result = await fetch_until_disconnected(fetch_and_encode(target_url), request.is_disconnected)
    if result is not None and not result.success:
        logger.info(f"convert-image failed for {mask_url(target_url)}: {result.error.code}")
    return _fetch_response(result)


@app.get(
    "/convert-image",
    dependencies=[Depends(rate_limit_check)],
    responses={200: {"model": ConvertImageOut}, 400: {"model": ErrorOut}},
)
async def convert_image_get(
    request: Request,
    url: str | None = Query(default=None, max_length=8192),
):
    """Same as POST /convert-image, for quick tests: ``GET /convert-image?url=...``"""
    target_url = require_target_url(url)

    result = await fetch_until_disconnected(fetch_and_encode(target_url), request.is_disconnected)
    return _fetch_response(result)


@app.post(
    "/decrypt-media",
    dependencies=[Depends(rate_limit_check)],
    responses={
        200: {"content": {"image/jpeg": {}}},
        400: {"model": ErrorOut},
        500: {"model": ErrorOut},
    },
)
async def decrypt_media_endpoint(
    mediaKey: str | None = Form(default=None),
    file: UploadFile | None = File(default=None),
):
    """
    Decrypt an AES-256-CBC media blob (16-byte IV prefix, PKCS#7 padding).

    Form fields:
    - ``mediaKey``: base64 of the 32-byte key
    - ``file``: the encrypted blob

    The decrypted bytes are returned as-is. Their media type is not sniffed;
    the response declares settings.decrypted_content_type.
    """
    data = await file.read() if file is not None else None
    encrypted = require_file_bytes(data)
    media_key = require_media_key(mediaKey)

    result = await decrypt_media_async(media_key, encrypted)

    if not result.success:
        return JSONResponse(status_code=500, content=result.to_error_payload())

    return Response(
        content=result.plaintext,
        media_type=settings.decrypted_content_type,
        headers={"Content-Disposition": "inline"},
    )


# ============================================================================
# PUBLIC ENDPOINTS
# ============================================================================

@app.get("/health")
def health():
    """Liveness probe; not rate limited."""
    return {
        "status": "OK",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "uptime": round(time.monotonic() - _STARTED_AT, 3),
    }


@app.get("/")
def root_info():
    """Service name, version and usage examples"""
    return {
        "name": SERVICE_NAME,
        "version": SERVICE_VERSION,
        "endpoints": {
            "POST /convert-image": "Convert an image URL to base64",
            "GET /convert-image?url=": "Convert an image URL to base64 via GET",
            "POST /decrypt-media": "Decrypt an AES-256-CBC media file (multipart: mediaKey, file)",
            "GET /health": "Health check",
        },
        "usage": {
            "post": 'POST /convert-image { "imageUrl": "https://example.com/image.jpg" }',
            "get": "GET /convert-image?url=https://example.com/image.jpg",
            "decrypt": "POST /decrypt-media (multipart/form-data) mediaKey=<base64 key>, file=<encrypted blob>",
        },
    }


@app.get("/metrics", dependencies=[Depends(require_metrics_auth)])
def metrics():
    """
    Metrics endpoint.
    Exposes fetch / decrypt counters and fetch duration histograms.
    """
    return get_metrics_collector().get_metrics()


@app.api_route("/{path:path}", methods=["GET", "POST", "PUT", "DELETE", "PATCH"], include_in_schema=False)
async def catch_all(path: str):
    """Unknown paths and methods get the NOT_FOUND envelope."""
    logger.info(f"No route for /{path}")
    raise StarletteHTTPException(status_code=404, detail="Endpoint not found")


def main() -> None:
    import uvicorn

    uvicorn.run(
        "media_bridge.transport.http_app:app",
        host=settings.host,
        port=settings.port,
        reload=not settings.is_production,
        log_level=settings.log_level.lower(),
        access_log=False,  # RequestLoggingMiddleware logs requests
        server_header=False,
        date_header=False,
    )


if __name__ == "__main__":
    main()
