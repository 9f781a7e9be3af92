#!/usr/bin/env python3
"""Print a fresh signing keypair and token encryption key as env assignments.

Usage: python scripts/generate_jwt_keys.py >> .env
"""

import secrets

from mia.crypto.keys import generate_rsa_keypair


def _escape(pem: str) -> str:
    return pem.strip().replace("\n", "\\n")


def main() -> None:
    keypair = generate_rsa_keypair()
    print(f'AUTH_JWT_PRIVATE_KEY="{_escape(keypair.private_key_pem)}"')
    print(f'AUTH_JWT_PUBLIC_KEY="{_escape(keypair.public_key_pem)}"')
    print(f"AUTH_JWT_KEY_ID={keypair.kid}")
    print(f"AUTH_TOKEN_ENCRYPTION_KEY={secrets.token_hex(32)}")


if __name__ == "__main__":
    main()
