#!/usr/bin/env python3
"""
Encrypt a media file in the format POST /decrypt-media expects.

Output layout: 16-byte random IV, then AES-256-CBC ciphertext of the
PKCS#7-padded file contents.

Usage (after `pip install -e .`):
    # Generate a key and encrypt
    python scripts/encrypt_media.py photo.jpg photo.enc --new-key

    # Encrypt with an existing key
    python scripts/encrypt_media.py photo.jpg photo.enc --key "$MEDIA_KEY"

    # Print a ready-to-run curl command as well
    python scripts/encrypt_media.py photo.jpg photo.enc --new-key --curl --host http://localhost:3001

Environment:
    MEDIA_KEY: base64 of a 32-byte key (used when --key / --new-key are absent)
"""
import argparse
import base64
import os
import sys
from pathlib import Path

from media_bridge.core.domain import AES_KEY_SIZE, MediaKey, MediaKeyError
from media_bridge.infra.media_crypto import encrypt_media


def main():
    parser = argparse.ArgumentParser(
        description="Encrypt a file with AES-256-CBC (IV-prefixed, PKCS#7)",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__
    )
    parser.add_argument("source", type=Path, help="Plaintext file")
    parser.add_argument("target", type=Path, help="Where to write the encrypted blob")
    parser.add_argument("--key", "-k", help="Base64 key (or use MEDIA_KEY env var)")
    parser.add_argument("--new-key", "-n", action="store_true", help="Generate a random key")
    parser.add_argument("--curl", "-c", action="store_true", help="Print a curl command for /decrypt-media")
    parser.add_argument("--host", "-H", default="http://localhost:3001", help="Host URL for curl")

    args = parser.parse_args()

    if args.new_key:
        key_b64 = base64.b64encode(os.urandom(AES_KEY_SIZE)).decode("ascii")
    else:
        key_b64 = args.key or os.environ.get("MEDIA_KEY")
        if not key_b64:
            print("Error: pass --key, --new-key or set MEDIA_KEY", file=sys.stderr)
            sys.exit(1)

    try:
        key = MediaKey.from_base64(key_b64)
    except MediaKeyError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        sys.exit(1)

    plaintext = args.source.read_bytes()
    args.target.write_bytes(encrypt_media(key, plaintext))

    print(f"# Encrypted {len(plaintext)} bytes -> {args.target}")
    print(f"MEDIA_KEY={key_b64}")

    if args.curl:
        print(
            f'curl -X POST -F "mediaKey={key_b64}" -F "file=@{args.target}" '
            f'-o decrypted.bin "{args.host}/decrypt-media"'
        )


if __name__ == "__main__":
    main()
