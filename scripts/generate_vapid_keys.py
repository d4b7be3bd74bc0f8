#!/usr/bin/env python3
"""Generates a VAPID key pair for Web Push and prints the .env lines. From the project root: python3 scripts/generate_vapid_keys.py"""
import base64

from cryptography.hazmat.primitives import serialization
from py_vapid import Vapid


def b64url(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).decode("ascii").rstrip("=")


def main():
    vapid = Vapid()
    vapid.generate_keys()

    # Browsers want the raw uncompressed point as applicationServerKey
    public_key = vapid.public_key.public_bytes(
        encoding=serialization.Encoding.X962,
        format=serialization.PublicFormat.UncompressedPoint,
    )
    private_key = vapid.private_key.private_bytes(
        encoding=serialization.Encoding.DER,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    )

    print("Add these to .env:\n")
    print(f"VAPID_PUBLIC_KEY={b64url(public_key)}")
    print(f"VAPID_PRIVATE_KEY={b64url(private_key)}")
    print("VAPID_ADMIN_EMAIL=admin@fitlife.vn")


if __name__ == "__main__":
    main()
