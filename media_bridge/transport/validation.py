# media_bridge/transport/validation.py
"""Boundary checks run before either pipeline is invoked."""
from __future__ import annotations

from urllib.parse import urlsplit

from media_bridge.core.domain import ErrorCode
from media_bridge.transport.errors import InputValidationError

ALLOWED_URL_SCHEMES = ("http", "https")


def require_target_url(*candidates: str | None) -> str:
    """
    Return the first non-empty candidate as a validated absolute URL.

    Raises:
        InputValidationError: MISSING_URL when every candidate is empty,
            INVALID_URL when the value is not an absolute http(s) URL
    """
    raw = next((c.strip() for c in candidates if c and c.strip()), None)
    if raw is None:
        raise InputValidationError("Image URL is required", ErrorCode.MISSING_URL)

    try:
        parts = urlsplit(raw)
        # .port raises ValueError on out-of-range / non-numeric ports
        _ = parts.port
    except ValueError:
        raise InputValidationError("Invalid URL", ErrorCode.INVALID_URL)

    if not parts.scheme or not parts.hostname:
        raise InputValidationError("Invalid URL", ErrorCode.INVALID_URL)

    if parts.scheme.lower() not in ALLOWED_URL_SCHEMES:
        raise InputValidationError(
            f"Unsupported URL scheme: {parts.scheme}", ErrorCode.INVALID_URL
        )

    return raw


def require_media_key(value: str | None) -> str:
    if not value or not value.strip():
        raise InputValidationError("mediaKey is required", ErrorCode.MISSING_KEY)
    return value.strip()


def require_file_bytes(data: bytes | None) -> bytes:
    if not data:
        raise InputValidationError("Encrypted file is required", ErrorCode.MISSING_FILE)
    return data
