# media_bridge/transport/middleware.py
"""
Starlette middleware for the HTTP app.

Registration order in http_app (outermost first):
RequestID → RequestLogging → ErrorHandling → BodySizeLimit → SecurityHeaders → CORS
"""
import re
import time
import uuid
from typing import Callable

from fastapi import Request, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

from media_bridge.core.domain import ErrorCode
from media_bridge.infra.logging_config import LogContext, get_logger
from media_bridge.transport.errors import error_envelope
from media_bridge.transport.security import SecurityHeaders

logger = get_logger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"
_REQUEST_ID_PATTERN = re.compile(r"^[A-Za-z0-9._:-]{1,128}$")


class RequestIDMiddleware(BaseHTTPMiddleware):
    """Reuse a well-formed inbound X-Request-ID or mint a UUID4; echo it on the response"""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        inbound = request.headers.get(REQUEST_ID_HEADER, "")
        request_id = inbound if _REQUEST_ID_PATTERN.match(inbound) else str(uuid.uuid4())
        request.state.request_id = request_id

        response = await call_next(request)
        response.headers[REQUEST_ID_HEADER] = request_id
        return response


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """One line per request on completion, plus an error line if the app raised"""

    def __init__(self, app: ASGIApp, enabled: bool = True):
        super().__init__(app)
        self.enabled = enabled

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        if not self.enabled:
            return await call_next(request)

        log_ctx = LogContext(logger, request_id=getattr(request.state, "request_id", None))
        method, path = request.method, request.url.path
        started = time.perf_counter()

        try:
            response = await call_next(request)
        except Exception as exc:
            log_ctx.error(
                f"{method} {path} raised {exc.__class__.__name__} "
                f"after {(time.perf_counter() - started) * 1000:.1f}ms",
                extra={"method": method, "path": path, "error_type": exc.__class__.__name__},
            )
            raise

        duration_ms = (time.perf_counter() - started) * 1000
        log_ctx.info(
            f"{method} {path} -> {response.status_code} in {duration_ms:.1f}ms",
            extra={
                "method": method,
                "path": path,
                "status_code": response.status_code,
                "duration_ms": round(duration_ms, 1),
                "client_ip": request.client.host if request.client else None,
            },
        )
        return response


class ErrorHandlingMiddleware(BaseHTTPMiddleware):
    """Last-resort catch: any escaped exception becomes a 500 INTERNAL_ERROR envelope"""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        try:
            return await call_next(request)
        except Exception as exc:
            request_id = getattr(request.state, "request_id", "unknown")
            LogContext(logger, request_id=request_id).error(
                f"Unhandled {exc.__class__.__name__} on {request.method} {request.url.path}: {exc}",
                exc_info=True,
            )
            return JSONResponse(
                status_code=500,
                content=error_envelope(
                    "Internal server error",
                    ErrorCode.INTERNAL_ERROR,
                    request_id=request_id,
                ),
            )


class BodySizeLimitMiddleware(BaseHTTPMiddleware):
    """
    413 PAYLOAD_TOO_LARGE when the declared Content-Length exceeds ``max_bytes``.

    Bodies sent without Content-Length are not counted here.
    """

    def __init__(self, app: ASGIApp, max_bytes: int):
        super().__init__(app)
        self.max_bytes = max_bytes

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        declared = request.headers.get("Content-Length")
        if declared is None:
            return await call_next(request)

        if not declared.isdigit():
            return JSONResponse(
                status_code=400,
                content=error_envelope("Invalid Content-Length header", ErrorCode.INVALID_REQUEST),
            )

        if int(declared) > self.max_bytes:
            logger.warning(
                f"Rejected {request.method} {request.url.path}: "
                f"body of {declared} bytes exceeds {self.max_bytes}"
            )
            return JSONResponse(
                status_code=413,
                content=error_envelope(
                    f"Request body exceeds {self.max_bytes} bytes",
                    ErrorCode.PAYLOAD_TOO_LARGE,
                ),
            )

        return await call_next(request)


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Apply SecurityHeaders to every response"""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        return SecurityHeaders.add_security_headers(await call_next(request))
