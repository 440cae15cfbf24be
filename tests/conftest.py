# tests/conftest.py
"""Pytest configuration and fixtures"""
import base64
import os
import sys
from pathlib import Path

import pytest

# Add project root to Python path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from media_bridge.core.domain import MediaKey  # noqa: E402
from media_bridge.infra.media_crypto import encrypt_media  # noqa: E402


@pytest.fixture
def media_key_b64():
    """Random base64 AES-256 key"""
    return base64.b64encode(os.urandom(32)).decode("ascii")


@pytest.fixture
def media_key(media_key_b64):
    return MediaKey.from_base64(media_key_b64)


@pytest.fixture
def encrypt(media_key):
    """Encrypt bytes with the test key (random IV)"""
    def _encrypt(plaintext: bytes, iv: bytes | None = None) -> bytes:
        return encrypt_media(media_key, plaintext, iv=iv)
    return _encrypt


@pytest.fixture
def png_bytes():
    """Ten bytes starting with the PNG signature"""
    return b"\x89PNG\r\n\x1a\n\x00\x01"


@pytest.fixture(autouse=True)
def _reset_globals():
    """Fresh fetcher singleton and metrics for every test (the app's rate limiter is swapped in test_http_app)"""
    from media_bridge.infra.media_fetcher import reset_media_fetcher
    from media_bridge.infra.metrics import get_metrics_collector

    reset_media_fetcher()
    get_metrics_collector().reset()
    yield
    reset_media_fetcher()
