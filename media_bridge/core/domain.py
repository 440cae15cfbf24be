# media_bridge/core/domain.py
"""
Pure domain types for the two conversion pipelines.

Nothing here performs I/O. Results are immutable, tagged success/failure
values: the pipelines never raise to their callers, the HTTP layer maps the
tags to status codes.
"""
from __future__ import annotations

import base64
import binascii
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

AES_KEY_SIZE = 32   # AES-256
AES_BLOCK_SIZE = 16  # also the IV size


class ErrorCode(str, Enum):
    """Error codes exposed to API callers."""
    MISSING_URL = "MISSING_URL"
    MISSING_FILE = "MISSING_FILE"
    MISSING_KEY = "MISSING_KEY"
    INVALID_URL = "INVALID_URL"
    DECRYPTION_FAILED = "DECRYPTION_FAILED"
    INVALID_REQUEST = "INVALID_REQUEST"
    PAYLOAD_TOO_LARGE = "PAYLOAD_TOO_LARGE"
    RATE_LIMITED = "RATE_LIMITED"
    UNAUTHORIZED = "UNAUTHORIZED"
    NOT_FOUND = "NOT_FOUND"
    INTERNAL_ERROR = "INTERNAL_ERROR"


class FetchErrorCode(str, Enum):
    """Classification of remote fetch failures."""
    TIMEOUT = "TIMEOUT"
    UPSTREAM_HTTP_ERROR = "UPSTREAM_HTTP_ERROR"
    RESPONSE_TOO_LARGE = "RESPONSE_TOO_LARGE"
    TOO_MANY_REDIRECTS = "TOO_MANY_REDIRECTS"
    DNS_ERROR = "DNS_ERROR"
    TLS_ERROR = "TLS_ERROR"
    CONNECTION_ERROR = "CONNECTION_ERROR"
    UNKNOWN_ERROR = "UNKNOWN_ERROR"


class DecryptFailureCause(str, Enum):
    """Internal reason a decryption failed. Logged, never returned to callers."""
    KEY_ENCODING = "key_encoding"
    KEY_LENGTH = "key_length"
    BUFFER_TOO_SHORT = "buffer_too_short"
    CIPHERTEXT_LENGTH = "ciphertext_length"
    BAD_PADDING = "bad_padding"
    CIPHER_ERROR = "cipher_error"


# ============================================================================
# FETCH
# ============================================================================

@dataclass(frozen=True)
class EncodedMedia:
    """Base64 rendition of a fetched resource.

    The raw bytes are not kept: only the encoded form and the original size.
    """

    base64: str
    content_type: str
    size_bytes: int
    source_url: str = ""

    @classmethod
    def from_bytes(cls, data: bytes, content_type: str, source_url: str = "") -> "EncodedMedia":
        return cls(
            base64=base64.b64encode(data).decode("ascii"),
            content_type=content_type,
            size_bytes=len(data),
            source_url=source_url,
        )

    @property
    def data_uri(self) -> str:
        return f"data:{self.content_type};base64,{self.base64}"

    @property
    def inline_data(self) -> dict[str, Any]:
        """Part shape used by Gemini / Vertex AI ``generateContent`` requests."""
        return {
            "inlineData": {
                "mimeType": self.content_type,
                "data": self.base64,
            }
        }

    def to_payload(self) -> dict[str, Any]:
        return {
            "base64Image": self.base64,
            "mimeType": self.content_type,
            "dataUri": self.data_uri,
            "originalUrl": self.source_url,
            "size": self.size_bytes,
            "vertexAI": self.inline_data,
        }


@dataclass(frozen=True)
class FetchError:
    message: str
    code: str = FetchErrorCode.UNKNOWN_ERROR.value
    status: Optional[int] = None

    def to_payload(self) -> dict[str, Any]:
        return {"message": self.message, "code": self.code, "status": self.status}


@dataclass(frozen=True)
class FetchResult:
    """Outcome of a fetch-and-encode call: exactly one of media / error is set."""

    media: Optional[EncodedMedia] = None
    error: Optional[FetchError] = None

    def __post_init__(self):
        if (self.media is None) == (self.error is None):
            raise ValueError("FetchResult needs exactly one of media or error")

    @classmethod
    def ok(cls, media: EncodedMedia) -> "FetchResult":
        return cls(media=media)

    @classmethod
    def failed(
        cls,
        message: str,
        code: str | FetchErrorCode = FetchErrorCode.UNKNOWN_ERROR,
        status: Optional[int] = None,
    ) -> "FetchResult":
        if isinstance(code, FetchErrorCode):
            code = code.value
        return cls(error=FetchError(message=message, code=code, status=status))

    @property
    def success(self) -> bool:
        return self.media is not None

    def to_envelope(self) -> dict[str, Any]:
        if self.media is not None:
            return {"success": True, "data": self.media.to_payload()}
        return {"success": False, "error": self.error.to_payload()}


# ============================================================================
# DECRYPT
# ============================================================================

class MediaKeyError(ValueError):
    """Raised when key material cannot be parsed into a MediaKey."""

    def __init__(self, message: str, cause: DecryptFailureCause):
        self.cause = cause
        super().__init__(message)


@dataclass(frozen=True)
class MediaKey:
    """A ready-to-use AES-256 key. Construction guarantees the length."""

    raw: bytes = field(repr=False)

    def __post_init__(self):
        if len(self.raw) != AES_KEY_SIZE:
            raise MediaKeyError(
                f"Media key must be {AES_KEY_SIZE} bytes, got {len(self.raw)}",
                DecryptFailureCause.KEY_LENGTH,
            )

    @classmethod
    def from_base64(cls, value: str) -> "MediaKey":
        """Parse a base64 (standard or URL-safe alphabet) key string."""
        text = value.strip()
        if "-" in text or "_" in text:
            text = text.replace("-", "+").replace("_", "/")
        # Tolerate missing padding, which some clients strip
        text += "=" * (-len(text) % 4)
        try:
            raw = base64.b64decode(text, validate=True)
        except (binascii.Error, ValueError) as exc:
            raise MediaKeyError(
                f"Media key is not valid base64: {exc}",
                DecryptFailureCause.KEY_ENCODING,
            ) from exc
        return cls(raw)


@dataclass(frozen=True)
class DecryptResult:
    """Outcome of a decrypt call: plaintext on success, generic failure otherwise."""

    plaintext: Optional[bytes] = field(default=None, repr=False)
    cause: Optional[DecryptFailureCause] = None

    GENERIC_MESSAGE = "Failed to decrypt media"

    @classmethod
    def ok(cls, plaintext: bytes) -> "DecryptResult":
        return cls(plaintext=plaintext)

    @classmethod
    def failed(cls, cause: DecryptFailureCause) -> "DecryptResult":
        return cls(cause=cause)

    @property
    def success(self) -> bool:
        return self.plaintext is not None

    @property
    def error_code(self) -> Optional[str]:
        return None if self.success else ErrorCode.DECRYPTION_FAILED.value

    def to_error_payload(self) -> dict[str, Any]:
        # Same body for every cause
        return {
            "success": False,
            "error": {
                "message": self.GENERIC_MESSAGE,
                "code": ErrorCode.DECRYPTION_FAILED.value,
            },
        }
