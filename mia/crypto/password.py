"""Password hashing and verification for the consent login step (Argon2id)."""

import argon2

_hasher = argon2.PasswordHasher(
    time_cost=2,
    memory_cost=65536,
    parallelism=1,
)

# Verified against when the email is unknown so both paths cost the same.
_DUMMY_HASH = _hasher.hash("mia-dummy-password")


def hash_password(password: str) -> str:
    """Hash a password using Argon2id."""
    return _hasher.hash(password)


def verify_password(plain: str, hashed: str | None) -> bool:
    """Verify a plaintext password against its Argon2 hash."""
    try:
        return _hasher.verify(hashed or _DUMMY_HASH, plain) and hashed is not None
    except argon2.exceptions.VerifyMismatchError:
        return False
    except argon2.exceptions.InvalidHashError:
        return False
