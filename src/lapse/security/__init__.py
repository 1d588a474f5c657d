# Token signing and secret hashing.
# Created: 2026-03-02

from lapse.security.secret_hasher import hash_secret, verify_secret
from lapse.security.tokens import (
    DELEGATED_AUDIENCE,
    DELEGATED_ISSUER,
    DelegatedClaims,
    PrimaryClaims,
    TokenClaims,
    TokenIssuer,
    get_token_issuer,
    reset_token_issuer,
)

__all__ = [
    "DELEGATED_AUDIENCE",
    "DELEGATED_ISSUER",
    "DelegatedClaims",
    "PrimaryClaims",
    "TokenClaims",
    "TokenIssuer",
    "get_token_issuer",
    "hash_secret",
    "reset_token_issuer",
    "verify_secret",
]
