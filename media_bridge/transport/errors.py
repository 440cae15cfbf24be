# media_bridge/transport/errors.py
"""
Typed API errors for the HTTP layer.

Each error carries an HTTP status and an ``ErrorCode``. Route handlers raise
them for boundary failures (missing / malformed input); the exception handler
in http_app renders the common JSON envelope:

    {"success": false, "error": {"message": "...", "code": "..."}}
"""
from __future__ import annotations

from typing import Any

from media_bridge.core.domain import ErrorCode


class ApiError(Exception):
    """Base class for errors rendered as the JSON error envelope."""

    status_code: int = 500
    code: ErrorCode = ErrorCode.INTERNAL_ERROR

    def __init__(self, message: str = "Internal server error", code: ErrorCode | None = None):
        self.message = message
        if code is not None:
            self.code = code
        super().__init__(message)

    def to_envelope(self) -> dict[str, Any]:
        return error_envelope(self.message, self.code)


class InputValidationError(ApiError):
    """Missing or malformed request input (400)."""

    status_code = 400


def error_envelope(message: str, code: ErrorCode | str, **extra: Any) -> dict[str, Any]:
    """Build the ``{"success": false, "error": {...}}`` body."""
    if isinstance(code, ErrorCode):
        code = code.value
    return {"success": False, "error": {"message": message, "code": code, **extra}}
