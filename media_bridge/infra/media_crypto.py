# media_bridge/infra/media_crypto.py
"""
AES-256-CBC media decryption.

Wire format of an encrypted blob:

    +----------------+-------------------------------------------+
    | IV (16 bytes)  | AES-256-CBC(key, IV, PKCS#7(plaintext))   |
    +----------------+-------------------------------------------+

The key is supplied by the caller, base64-encoded (32 raw bytes). There is
no MAC: PKCS#7 unpadding is the only integrity check available, so every
failure collapses to one external code and one generic message. The precise
cause is logged for operators only.

Usage:
    result = decrypt_media(media_key_b64, encrypted_bytes)
    if result.success:
        body = result.plaintext

    # From async code (large buffers run in a worker thread):
    result = await decrypt_media_async(media_key_b64, encrypted_bytes)

Fixture generation:
    python scripts/encrypt_media.py --help
"""
from __future__ import annotations

import asyncio
import os

from cryptography.hazmat.primitives import padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

from media_bridge.core.domain import (
    AES_BLOCK_SIZE,
    DecryptFailureCause,
    DecryptResult,
    MediaKey,
    MediaKeyError,
)
from media_bridge.infra.logging_config import get_logger
from media_bridge.infra.metrics import inc_counter, timed

logger = get_logger(__name__)


class MediaDecryptionError(Exception):
    """Raised inside the decryptor; converted to a failed DecryptResult at its edge."""

    def __init__(self, message: str, cause: DecryptFailureCause):
        self.cause = cause
        super().__init__(message)


class MediaDecryptor:
    """Stateless AES-256-CBC + PKCS#7 decryptor for IV-prefixed blobs."""

    def decrypt(self, media_key_b64: str, encrypted: bytes) -> DecryptResult:
        """
        Decrypt ``encrypted`` with the base64 key.

        Never raises: bad key encoding, wrong key length, short buffers,
        misaligned ciphertext and bad padding all yield a failed result.
        """
        try:
            key = MediaKey.from_base64(media_key_b64)
            plaintext = self.decrypt_with_key(key, encrypted)
        except (MediaKeyError, MediaDecryptionError) as exc:
            return self._failure(exc.cause, str(exc))
        except Exception as exc:
            # cryptography backend errors we did not anticipate
            return self._failure(DecryptFailureCause.CIPHER_ERROR, f"{type(exc).__name__}: {exc}")

        inc_counter("decrypt_requests", outcome="success")
        logger.info(
            f"Media decrypted: {len(encrypted)} bytes in, {len(plaintext)} bytes out"
        )
        return DecryptResult.ok(plaintext)

    def decrypt_with_key(self, key: MediaKey, encrypted: bytes) -> bytes:
        """
        Decrypt with an already-parsed key.

        Raises:
            MediaDecryptionError: if the buffer is malformed or padding is invalid
        """
        if isinstance(encrypted, memoryview):
            encrypted = bytes(encrypted)

        if len(encrypted) < AES_BLOCK_SIZE:
            raise MediaDecryptionError(
                f"Encrypted buffer is {len(encrypted)} bytes, shorter than the IV",
                DecryptFailureCause.BUFFER_TOO_SHORT,
            )

        iv = encrypted[:AES_BLOCK_SIZE]
        ciphertext = encrypted[AES_BLOCK_SIZE:]

        if not ciphertext or len(ciphertext) % AES_BLOCK_SIZE:
            raise MediaDecryptionError(
                f"Ciphertext length {len(ciphertext)} is not a positive multiple of {AES_BLOCK_SIZE}",
                DecryptFailureCause.CIPHERTEXT_LENGTH,
            )

        decryptor = Cipher(algorithms.AES(key.raw), modes.CBC(iv)).decryptor()
        padded = decryptor.update(ciphertext) + decryptor.finalize()

        unpadder = padding.PKCS7(AES_BLOCK_SIZE * 8).unpadder()
        try:
            return unpadder.update(padded) + unpadder.finalize()
        except ValueError as exc:
            raise MediaDecryptionError(
                "Invalid PKCS#7 padding", DecryptFailureCause.BAD_PADDING
            ) from exc

    @staticmethod
    def _failure(cause: DecryptFailureCause, detail: str) -> DecryptResult:
        inc_counter("decrypt_requests", outcome="failure", cause=cause.value)
        logger.warning(f"Media decryption failed: cause={cause.value} ({detail})")
        return DecryptResult.failed(cause)


def encrypt_media(key: MediaKey, plaintext: bytes, iv: bytes | None = None) -> bytes:
    """
    Produce ``IV || AES-256-CBC(PKCS#7(plaintext))``, the format decrypt() reads.

    A random IV is generated when none is given.
    """
    if iv is None:
        iv = os.urandom(AES_BLOCK_SIZE)
    if len(iv) != AES_BLOCK_SIZE:
        raise ValueError(f"IV must be {AES_BLOCK_SIZE} bytes, got {len(iv)}")

    padder = padding.PKCS7(AES_BLOCK_SIZE * 8).padder()
    padded = padder.update(plaintext) + padder.finalize()

    encryptor = Cipher(algorithms.AES(key.raw), modes.CBC(iv)).encryptor()
    return iv + encryptor.update(padded) + encryptor.finalize()


# ---------------------------------------------------------------------------
# Module-level helpers
# ---------------------------------------------------------------------------

_decryptor = MediaDecryptor()


def decrypt_media(media_key_b64: str, encrypted: bytes) -> DecryptResult:
    """Decrypt with the shared stateless decryptor."""
    with timed("decrypt_duration_ms"):
        return _decryptor.decrypt(media_key_b64, encrypted)


async def decrypt_media_async(
    media_key_b64: str,
    encrypted: bytes,
    offload_threshold: int | None = None,
) -> DecryptResult:
    """
    Decrypt without stalling the event loop on large buffers.

    Buffers larger than ``offload_threshold`` bytes (default from
    settings.decrypt_offload_threshold_bytes) run in the default executor.
    """
    if offload_threshold is None:
        from media_bridge.config import settings
        offload_threshold = settings.decrypt_offload_threshold_bytes

    if len(encrypted) <= offload_threshold:
        return decrypt_media(media_key_b64, encrypted)

    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(None, decrypt_media, media_key_b64, encrypted)
