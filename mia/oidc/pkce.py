"""PKCE (RFC 7636) challenge computation and verification."""

import hashlib
import secrets
from base64 import urlsafe_b64encode

S256 = "S256"
PLAIN = "plain"


def create_code_verifier() -> str:
    """Generate a high-entropy verifier (43 base64url chars)."""
    return secrets.token_urlsafe(32)


def compute_s256_challenge(code_verifier: str) -> str:
    """BASE64URL(SHA256(verifier)) without padding."""
    digest = hashlib.sha256(code_verifier.encode("ascii")).digest()
    return urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")


def verify_pkce(
    code_verifier: str,
    code_challenge: str,
    method: str = S256,
    *,
    allow_plain: bool = False,
) -> bool:
    """Check a verifier against the stored challenge for ``method``."""
    if not code_verifier or not code_challenge:
        return False
    if method == S256:
        try:
            computed = compute_s256_challenge(code_verifier)
        except UnicodeEncodeError:
            return False
        return secrets.compare_digest(computed.encode(), code_challenge.encode())
    if method == PLAIN and allow_plain:
        return secrets.compare_digest(code_verifier.encode(), code_challenge.encode())
    return False
