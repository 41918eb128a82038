#!/usr/bin/env python3
"""
Generate a VAPID key pair for Web Push.

    python scripts/generate_vapid_keys.py

Prints the three environment variables to set. The public key goes to the
browser (PushManager.subscribe); the private key never leaves the server.
"""
import base64
import sys

from cryptography.hazmat.primitives import serialization
from py_vapid import Vapid


def _b64url(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")


def generate() -> tuple[str, str]:
    """Returns (public_key, private_key), both base64url without padding"""
    vapid = Vapid()
    vapid.generate_keys()

    public_raw = vapid.public_key.public_bytes(
        encoding=serialization.Encoding.X962,
        format=serialization.PublicFormat.UncompressedPoint,
    )
    private_raw = vapid.private_key.private_numbers().private_value.to_bytes(32, "big")
    return _b64url(public_raw), _b64url(private_raw)


def main() -> int:
    subject = sys.argv[1] if len(sys.argv) > 1 else "mailto:admin@example.com"
    public_key, private_key = generate()
    print(f"WEB_PUSH_SUBJECT={subject}")
    print(f"WEB_PUSH_PUBLIC_KEY={public_key}")
    print(f"WEB_PUSH_PRIVATE_KEY={private_key}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
