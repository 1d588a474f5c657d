"""Salted scrypt hashing for service-client secrets.

Stored format: ``{hex_salt}:{hex_derived_key}``.

scrypt is CPU-bound; async callers should run these functions
through ``asyncio.to_thread`` so other requests keep flowing.
"""

import hashlib
import hmac
import secrets

__all__ = ["hash_secret", "verify_secret"]

_SALT_BYTES = 16
_KEY_LENGTH = 64
# Changing these invalidates every stored secret hash.
_SCRYPT_N = 16384
_SCRYPT_R = 8
_SCRYPT_P = 1


def _derive(secret: str, salt: str) -> bytes:
    return hashlib.scrypt(
        secret.encode("utf-8"),
        salt=salt.encode("utf-8"),
        n=_SCRYPT_N,
        r=_SCRYPT_R,
        p=_SCRYPT_P,
        dklen=_KEY_LENGTH,
    )


def hash_secret(secret: str) -> str:
    """Hash ``secret`` with a fresh random salt."""
    salt = secrets.token_hex(_SALT_BYTES)
    return f"{salt}:{_derive(secret, salt).hex()}"


def verify_secret(secret: str, stored: str) -> bool:
    """Check ``secret`` against a stored ``salt:hash`` value in constant time."""
    salt, sep, hashed = stored.partition(":")
    if not sep or not salt or not hashed:
        return False
    try:
        expected = bytes.fromhex(hashed)
    except ValueError:
        return False
    # compare_digest treats a length mismatch as a non-match.
    return hmac.compare_digest(_derive(secret, salt), expected)
