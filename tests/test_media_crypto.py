# tests/test_media_crypto.py
"""Tests for AES-256-CBC media decryption."""
import asyncio
import base64
import os
from unittest.mock import patch

import pytest
from cryptography.hazmat.primitives import padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

from media_bridge.core.domain import DecryptFailureCause, ErrorCode, MediaKey
from media_bridge.infra.media_crypto import (
    MediaDecryptionError,
    MediaDecryptor,
    decrypt_media,
    decrypt_media_async,
    encrypt_media,
)
from media_bridge.infra.metrics import get_metrics_collector


def _reference_encrypt(key: bytes, iv: bytes, plaintext: bytes) -> bytes:
    """Encrypt independently of encrypt_media, straight from the primitives."""
    padder = padding.PKCS7(128).padder()
    padded = padder.update(plaintext) + padder.finalize()
    encryptor = Cipher(algorithms.AES(key), modes.CBC(iv)).encryptor()
    return encryptor.update(padded) + encryptor.finalize()


# ---------------------------------------------------------------------------
# Successful decryption
# ---------------------------------------------------------------------------

class TestDecryptSuccess:

    def test_known_vector_hello(self):
        """Key of ASCII '0' x32, zero IV, 'hello' → 'hello'."""
        key = b"0" * 32
        iv = bytes(16)
        blob = iv + _reference_encrypt(key, iv, b"hello")

        result = decrypt_media(base64.b64encode(key).decode(), blob)

        assert result.success
        assert result.plaintext == b"hello"
        assert result.error_code is None

    @pytest.mark.parametrize("size", [1, 15, 16, 17, 1000, 64 * 1024 + 3])
    def test_round_trip_random_iv(self, media_key_b64, size):
        key = base64.b64decode(media_key_b64)
        iv = os.urandom(16)
        plaintext = os.urandom(size)
        blob = iv + _reference_encrypt(key, iv, plaintext)

        result = decrypt_media(media_key_b64, blob)

        assert result.success
        assert result.plaintext == plaintext

    def test_encrypt_media_is_readable_by_decrypt(self, media_key_b64, encrypt):
        plaintext = b"\xff\xd8\xff\xe0 fake jpeg body \xff\xd9"
        result = decrypt_media(media_key_b64, encrypt(plaintext))
        assert result.plaintext == plaintext

    def test_plaintext_length_comes_from_unpadding(self, media_key_b64, encrypt):
        """A 32-byte plaintext pads to 48; the result must be 32 again."""
        blob = encrypt(b"A" * 32)
        assert len(blob) == 16 + 48
        result = decrypt_media(media_key_b64, blob)
        assert len(result.plaintext) == 32

    def test_url_safe_key_without_padding(self):
        raw = bytes(range(250, 256)) + os.urandom(26)
        key_b64 = base64.urlsafe_b64encode(raw).decode().rstrip("=")
        blob = encrypt_media(MediaKey(raw), b"payload")

        result = decrypt_media(key_b64, blob)

        assert result.plaintext == b"payload"

    def test_accepts_memoryview(self, media_key_b64, encrypt):
        blob = encrypt(b"view")
        result = decrypt_media(media_key_b64, memoryview(blob))
        assert result.plaintext == b"view"

    def test_success_counter(self, media_key_b64, encrypt):
        decrypt_media(media_key_b64, encrypt(b"x"))
        collector = get_metrics_collector()
        assert collector.get_counter("decrypt_requests", {"outcome": "success"}) == 1


# ---------------------------------------------------------------------------
# Failures: all collapse to DECRYPTION_FAILED
# ---------------------------------------------------------------------------

class TestDecryptFailures:

    @pytest.mark.parametrize("length", [0, 1, 15])
    def test_buffer_shorter_than_iv(self, media_key_b64, length):
        result = decrypt_media(media_key_b64, os.urandom(length))
        assert not result.success
        assert result.error_code == ErrorCode.DECRYPTION_FAILED.value
        assert result.cause == DecryptFailureCause.BUFFER_TOO_SHORT

    def test_iv_only_buffer(self, media_key_b64):
        result = decrypt_media(media_key_b64, os.urandom(16))
        assert result.error_code == ErrorCode.DECRYPTION_FAILED.value
        assert result.cause == DecryptFailureCause.CIPHERTEXT_LENGTH

    def test_misaligned_ciphertext(self, media_key_b64, encrypt):
        blob = encrypt(b"hello world")[:-1]
        result = decrypt_media(media_key_b64, blob)
        assert result.error_code == ErrorCode.DECRYPTION_FAILED.value
        assert result.cause == DecryptFailureCause.CIPHERTEXT_LENGTH

    @pytest.mark.parametrize("key_len", [0, 1, 16, 24, 31, 33, 64])
    def test_wrong_key_length(self, key_len, encrypt):
        key_b64 = base64.b64encode(os.urandom(key_len)).decode()
        result = decrypt_media(key_b64, encrypt(b"hello"))
        assert result.error_code == ErrorCode.DECRYPTION_FAILED.value
        assert result.cause in (DecryptFailureCause.KEY_LENGTH, DecryptFailureCause.KEY_ENCODING)

    @pytest.mark.parametrize("bad_key", ["not base64!!", "@@@@", "ab$c", "%%%%%%%%"])
    def test_malformed_base64_key(self, bad_key, encrypt):
        result = decrypt_media(bad_key, encrypt(b"hello"))
        assert result.error_code == ErrorCode.DECRYPTION_FAILED.value
        assert result.cause == DecryptFailureCause.KEY_ENCODING

    def test_tampered_padding(self):
        """Flip the last byte of the final block's predecessor → padding breaks."""
        key = os.urandom(32)
        iv = os.urandom(16)
        # 16-byte plaintext → full padding block of 0x10 bytes
        ciphertext = bytearray(_reference_encrypt(key, iv, b"B" * 16))
        # In CBC, flipping a byte of block n-1 flips the same byte of plaintext block n
        ciphertext[-17] ^= 0x01

        result = decrypt_media(base64.b64encode(key).decode(), iv + bytes(ciphertext))

        assert result.error_code == ErrorCode.DECRYPTION_FAILED.value
        assert result.cause == DecryptFailureCause.BAD_PADDING

    def test_wrong_key_never_raises(self, encrypt):
        """A different key yields garbage; it must fail cleanly or return bytes, never raise."""
        other = base64.b64encode(os.urandom(32)).decode()
        for _ in range(20):
            result = decrypt_media(other, encrypt(os.urandom(40)))
            assert result.success or result.error_code == ErrorCode.DECRYPTION_FAILED.value

    def test_error_payload_is_generic(self, media_key_b64):
        short = decrypt_media(media_key_b64, b"short")
        bad_key = decrypt_media("@@", os.urandom(48))

        assert short.to_error_payload() == bad_key.to_error_payload()
        payload = short.to_error_payload()
        assert payload["success"] is False
        assert payload["error"]["code"] == "DECRYPTION_FAILED"
        assert "cause" not in payload["error"]
        assert "short" not in payload["error"]["message"].lower()

    def test_unexpected_backend_error_is_contained(self, media_key_b64, encrypt):
        blob = encrypt(b"hello")
        with patch(
            "media_bridge.infra.media_crypto.Cipher",
            side_effect=RuntimeError("backend exploded"),
        ):
            result = decrypt_media(media_key_b64, blob)

        assert result.error_code == ErrorCode.DECRYPTION_FAILED.value
        assert result.cause == DecryptFailureCause.CIPHER_ERROR

    def test_failure_counter_has_cause_label(self, media_key_b64):
        decrypt_media(media_key_b64, b"tiny")
        collector = get_metrics_collector()
        assert collector.get_counter(
            "decrypt_requests",
            {"outcome": "failure", "cause": "buffer_too_short"},
        ) == 1


class TestDecryptWithKey:
    """decrypt_with_key raises; decrypt() wraps it."""

    def test_raises_on_short_buffer(self, media_key):
        with pytest.raises(MediaDecryptionError) as exc_info:
            MediaDecryptor().decrypt_with_key(media_key, b"123")
        assert exc_info.value.cause == DecryptFailureCause.BUFFER_TOO_SHORT

    def test_returns_plaintext(self, media_key, encrypt):
        assert MediaDecryptor().decrypt_with_key(media_key, encrypt(b"ok")) == b"ok"


class TestEncryptMedia:

    def test_layout(self, media_key):
        iv = bytes(range(16))
        blob = encrypt_media(media_key, b"hello", iv=iv)
        assert blob[:16] == iv
        assert len(blob) == 32

    def test_random_iv_differs(self, media_key):
        assert encrypt_media(media_key, b"same")[:16] != encrypt_media(media_key, b"same")[:16]

    def test_rejects_bad_iv(self, media_key):
        with pytest.raises(ValueError, match="IV must be 16 bytes"):
            encrypt_media(media_key, b"x", iv=b"short")


# ---------------------------------------------------------------------------
# Async wrapper
# ---------------------------------------------------------------------------

class TestDecryptAsync:

    @pytest.mark.asyncio
    async def test_small_buffer_runs_inline(self, media_key_b64, encrypt):
        loop = asyncio.get_running_loop()
        with patch.object(loop, "run_in_executor") as executor:
            result = await decrypt_media_async(media_key_b64, encrypt(b"tiny"), offload_threshold=1024)

        executor.assert_not_called()
        assert result.plaintext == b"tiny"

    @pytest.mark.asyncio
    async def test_large_buffer_is_offloaded(self, media_key_b64, encrypt):
        plaintext = os.urandom(4096)
        blob = encrypt(plaintext)

        result = await decrypt_media_async(media_key_b64, blob, offload_threshold=1024)

        assert result.plaintext == plaintext

    @pytest.mark.asyncio
    async def test_offloaded_failure_is_tagged(self, media_key_b64):
        result = await decrypt_media_async(media_key_b64, os.urandom(4097), offload_threshold=16)
        assert result.error_code == ErrorCode.DECRYPTION_FAILED.value
