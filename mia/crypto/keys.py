"""RSA signing key loading, generation, and JWK conversion."""

import base64
import logging
import secrets

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.hazmat.primitives.asymmetric.rsa import RSAPrivateKey, RSAPublicKey

from mia.core.errors import ConfigurationError
from mia.core.settings import AuthSettings
from mia.crypto.types import JWKEntry, JWKSResponse, SigningKeyData

logger = logging.getLogger(__name__)

RSA_KEY_SIZE = 2048
RSA_PUBLIC_EXPONENT = 65537


def generate_rsa_keypair() -> SigningKeyData:
    """Generate a new RSA-2048 keypair for JWT signing."""
    private_key = rsa.generate_private_key(
        public_exponent=RSA_PUBLIC_EXPONENT,
        key_size=RSA_KEY_SIZE,
    )
    private_pem = private_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    ).decode()
    public_pem = (
        private_key.public_key()
        .public_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PublicFormat.SubjectPublicKeyInfo,
        )
        .decode()
    )
    kid = f"mia-{secrets.token_hex(4)}"
    return SigningKeyData(
        kid=kid, private_key_pem=private_pem, public_key_pem=public_pem
    )


def normalize_pem(value: str) -> str:
    """Undo ``\\n`` escaping commonly applied to PEM values in env files."""
    return value.replace("\\n", "\n").strip()


def _int_to_base64url(value: int) -> str:
    """Encode an integer as base64url without padding."""
    byte_length = (value.bit_length() + 7) // 8
    raw = value.to_bytes(byte_length, byteorder="big")
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode()


def public_key_to_jwk_entry(public_key: RSAPublicKey, kid: str) -> JWKEntry:
    """Convert a loaded RSA public key to JWK format."""
    numbers = public_key.public_numbers()
    return JWKEntry(
        kid=kid,
        n=_int_to_base64url(numbers.n),
        e=_int_to_base64url(numbers.e),
    )


def pem_to_jwk_entry(public_key_pem: str, kid: str) -> JWKEntry:
    """Convert a PEM public key to JWK format."""
    return public_key_to_jwk_entry(_load_public_key(public_key_pem, kid), kid)


def _load_public_key(pem: str, name: str) -> RSAPublicKey:
    try:
        loaded = serialization.load_pem_public_key(normalize_pem(pem).encode())
    except ValueError as exc:
        raise ConfigurationError(f"Public key {name!r} is not a valid PEM") from exc
    if not isinstance(loaded, RSAPublicKey):
        raise ConfigurationError(f"Public key {name!r} is not an RSA key")
    return loaded


class KeyManager:
    """Holds the signing keypair and any keys still accepted for verification.

    PEM material is parsed on first use and cached on the instance. Missing
    or malformed material raises ConfigurationError at that point.
    """

    def __init__(
        self,
        *,
        private_key_pem: str,
        public_key_pem: str,
        kid: str,
        previous_keys: dict[str, str] | None = None,
    ) -> None:
        self._private_key_pem = private_key_pem
        self._public_key_pem = public_key_pem
        self._kid = kid
        self._previous_pems = dict(previous_keys or {})
        self._private_key: RSAPrivateKey | None = None
        self._public_keys: dict[str, RSAPublicKey] | None = None

    @classmethod
    def from_settings(cls, settings: AuthSettings) -> "KeyManager":
        previous: dict[str, str] = {}
        if settings.jwt_previous_public_key and settings.jwt_previous_key_id:
            previous[settings.jwt_previous_key_id] = settings.jwt_previous_public_key
        return cls(
            private_key_pem=settings.jwt_private_key,
            public_key_pem=settings.jwt_public_key,
            kid=settings.jwt_key_id,
            previous_keys=previous,
        )

    @property
    def kid(self) -> str:
        return self._kid

    def signing_key(self) -> RSAPrivateKey:
        """Return the private key used to sign new tokens."""
        if self._private_key is None:
            if not self._private_key_pem:
                raise ConfigurationError(
                    "AUTH_JWT_PRIVATE_KEY is not set; "
                    "generate keys with scripts/generate_jwt_keys.py"
                )
            try:
                loaded = serialization.load_pem_private_key(
                    normalize_pem(self._private_key_pem).encode(), password=None
                )
            except (ValueError, TypeError) as exc:
                raise ConfigurationError(
                    "AUTH_JWT_PRIVATE_KEY is not a valid unencrypted PEM"
                ) from exc
            if not isinstance(loaded, RSAPrivateKey):
                raise ConfigurationError("AUTH_JWT_PRIVATE_KEY is not an RSA key")
            self._private_key = loaded
            logger.info("Loaded signing key %s", self._kid)
        return self._private_key

    def _verification_keys(self) -> dict[str, RSAPublicKey]:
        if self._public_keys is None:
            if not self._public_key_pem:
                raise ConfigurationError(
                    "AUTH_JWT_PUBLIC_KEY is not set; "
                    "generate keys with scripts/generate_jwt_keys.py"
                )
            keys = {self._kid: _load_public_key(self._public_key_pem, self._kid)}
            for kid, pem in self._previous_pems.items():
                keys[kid] = _load_public_key(pem, kid)
            self._public_keys = keys
        return self._public_keys

    def verification_key(self, kid: str | None) -> RSAPublicKey | None:
        """Public key for ``kid``; tokens without a kid use the current key."""
        keys = self._verification_keys()
        return keys.get(kid or self._kid)

    def jwks(self) -> JWKSResponse:
        """Public keys as a JSON Web Key Set, current key first."""
        keys = self._verification_keys()
        return JWKSResponse(
            keys=[public_key_to_jwk_entry(key, kid) for kid, key in keys.items()]
        )
