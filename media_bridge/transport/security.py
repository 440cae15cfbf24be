# media_bridge/transport/security.py
"""
HTTP security helpers: response headers, client IP resolution,
metrics authentication, and error message sanitization.
"""
from __future__ import annotations

import hmac

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from media_bridge.config import settings
from media_bridge.infra.logging_config import get_logger

logger = get_logger(__name__)

metrics_bearer_scheme = HTTPBearer(auto_error=False)

# Headers for a JSON / binary API that never serves HTML
API_SECURITY_HEADERS = {
    "X-Frame-Options": "DENY",
    # Decrypted media is served with a declared type; browsers must not guess another
    "X-Content-Type-Options": "nosniff",
    "Referrer-Policy": "strict-origin-when-cross-origin",
    "Content-Security-Policy": "default-src 'none'; frame-ancestors 'none'",
    "Cross-Origin-Opener-Policy": "same-origin",
    "Cross-Origin-Resource-Policy": "cross-origin",
}

HSTS_VALUE = "max-age=31536000; includeSubDomains"
DEFAULT_CACHE_CONTROL = "no-store, no-cache, must-revalidate"


class SecurityHeaders:
    """Helmet-style response headers"""

    @staticmethod
    def add_security_headers(response):
        response.headers.update(API_SECURITY_HEADERS)

        # Routes may set their own caching policy
        if "Cache-Control" not in response.headers:
            response.headers["Cache-Control"] = DEFAULT_CACHE_CONTROL

        if settings.is_production or settings.is_staging:
            response.headers["Strict-Transport-Security"] = HSTS_VALUE

        return response


def get_client_ip(request: Request) -> str:
    """
    Resolve the caller's IP for rate limiting and audit logs.

    Proxy headers (X-Forwarded-For, then X-Real-IP) are consulted only when
    TRUST_PROXY_HEADERS=true; otherwise they are client-controlled input.
    """
    direct = request.client.host if request.client else "unknown"
    if not settings.trust_proxy_headers:
        return direct

    forwarded = request.headers.get("X-Forwarded-For", "")
    first_hop = forwarded.split(",")[0].strip()
    if first_hop:
        return first_hop

    real_ip = request.headers.get("X-Real-IP", "").strip()
    return real_ip or direct


def require_metrics_auth(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(metrics_bearer_scheme),
):
    """
    Guard for GET /metrics.

    - ENABLE_METRICS=false: 404, as if the route did not exist
    - METRICS_TOKEN unset: open
    - METRICS_TOKEN set: ``Authorization: Bearer <token>`` required
    """
    if not settings.enable_metrics:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Endpoint not found")

    expected = settings.metrics_token
    if not expected:
        return

    supplied = credentials.credentials if credentials else ""
    if supplied and hmac.compare_digest(supplied.encode(), expected.encode()):
        return

    logger.warning(
        "Rejected /metrics request: %s token",
        "invalid" if supplied else "missing",
        extra={"client_ip": get_client_ip(request)},
    )
    raise HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Invalid token" if supplied else "Authentication required",
        headers={"WWW-Authenticate": "Bearer"},
    )


# Production replies for unexpected exceptions, most specific class first
_PRODUCTION_MESSAGES: tuple[tuple[type[BaseException], str], ...] = (
    (TimeoutError, "Request timeout"),
    (ConnectionError, "Service temporarily unavailable"),
    (ValueError, "Invalid input"),
    (KeyError, "Invalid request"),
)


def sanitize_error_message(error: Exception, is_production: bool) -> str:
    """
    Message for a 500 body: the exception text in dev, a fixed phrase in prod.
    """
    if not is_production:
        return str(error) or "Internal server error"

    for exc_type, message in _PRODUCTION_MESSAGES:
        if isinstance(error, exc_type):
            return message
    return "Internal server error"
