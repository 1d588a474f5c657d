"""Primary and on-behalf-of (delegated) JWTs.

Two token shapes share one signing secret:

``primary``    ``{userId, email, iat, exp}`` -- the user's own session.
``delegated``  ``{userId, email, actorId, scopes, aud, iss, iat, exp}`` --
               a service client acting for the user within ``scopes``.

A token carrying any delegated-shaped claim (``actorId``, or the fixed
``aud``/``iss``) is never accepted as a primary token, and a delegated token
that fails verification is never retried as a primary one.

Verification never raises for a bad token: it returns ``None``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Any, Literal

import jwt

__all__ = [
    "DELEGATED_AUDIENCE",
    "DELEGATED_ISSUER",
    "DelegatedClaims",
    "PrimaryClaims",
    "TokenClaims",
    "TokenIssuer",
    "get_token_issuer",
    "reset_token_issuer",
]

logger = logging.getLogger(__name__)

DELEGATED_AUDIENCE = "lapse-rest"
DELEGATED_ISSUER = "lapse"

PRIMARY_TOKEN_TTL = timedelta(days=30)


@dataclass(frozen=True)
class PrimaryClaims:
    user_id: str
    email: str
    issued_at: int
    expires_at: int
    kind: Literal["primary"] = "primary"


@dataclass(frozen=True)
class DelegatedClaims:
    user_id: str
    email: str
    actor_id: str
    scopes: tuple[str, ...]
    audience: str
    issuer: str
    issued_at: int
    expires_at: int
    kind: Literal["delegated"] = "delegated"


TokenClaims = PrimaryClaims | DelegatedClaims


def _has_delegated_claims(payload: dict[str, Any]) -> bool:
    return (
        "actorId" in payload
        or payload.get("aud") == DELEGATED_AUDIENCE
        or payload.get("iss") == DELEGATED_ISSUER
    )


def _clean_scopes(raw: Any) -> tuple[str, ...] | None:
    if not isinstance(raw, list):
        return None
    scopes = [s.strip() for s in raw if isinstance(s, str) and s.strip()]
    if not scopes or len(scopes) != len(set(scopes)):
        return None
    return tuple(scopes)


class TokenIssuer:
    """Signs and verifies both token shapes with a shared HMAC secret."""

    def __init__(
        self,
        secret: str,
        algorithm: str = "HS256",
        primary_ttl: timedelta = PRIMARY_TOKEN_TTL,
    ):
        if not secret:
            raise ValueError("TokenIssuer requires a non-empty secret")
        self._secret = secret
        self.algorithm = algorithm
        self.primary_ttl = primary_ttl

    # -- issuing ------------------------------------------------------------

    def _sign(self, claims: dict[str, Any], ttl: timedelta) -> str:
        now = datetime.now(UTC)
        payload = {**claims, "iat": now, "exp": now + ttl}
        return jwt.encode(payload, self._secret, algorithm=self.algorithm)

    def issue_primary(self, user_id: str, email: str) -> str:
        return self._sign({"userId": user_id, "email": email}, self.primary_ttl)

    def issue_delegated(
        self,
        user_id: str,
        email: str,
        actor_id: str,
        scopes: list[str] | tuple[str, ...],
        ttl_seconds: int,
    ) -> str:
        """Sign a delegated token.

        ``scopes`` must already be validated (non-empty, trimmed, unique);
        they are not re-checked here.
        """
        claims = {
            "userId": user_id,
            "email": email,
            "actorId": actor_id,
            "scopes": list(scopes),
            "aud": DELEGATED_AUDIENCE,
            "iss": DELEGATED_ISSUER,
        }
        return self._sign(claims, timedelta(seconds=ttl_seconds))

    # -- verifying ----------------------------------------------------------

    def verify_primary(self, token: str) -> PrimaryClaims | None:
        try:
            payload = jwt.decode(
                token,
                self._secret,
                algorithms=[self.algorithm],
                options={"require": ["exp"]},
            )
        except jwt.PyJWTError as exc:
            logger.debug("Primary token rejected: %s", exc)
            return None

        if _has_delegated_claims(payload):
            return None

        user_id = payload.get("userId")
        if not isinstance(user_id, str) or not user_id:
            return None

        return PrimaryClaims(
            user_id=user_id,
            email=str(payload.get("email", "")),
            issued_at=int(payload.get("iat", 0)),
            expires_at=int(payload["exp"]),
        )

    def verify_delegated(self, token: str) -> DelegatedClaims | None:
        try:
            payload = jwt.decode(
                token,
                self._secret,
                algorithms=[self.algorithm],
                audience=DELEGATED_AUDIENCE,
                issuer=DELEGATED_ISSUER,
                options={"require": ["exp", "aud", "iss"]},
            )
        except jwt.PyJWTError as exc:
            logger.debug("Delegated token rejected: %s", exc)
            return None

        user_id = payload.get("userId")
        actor_id = payload.get("actorId")
        if not isinstance(user_id, str) or not user_id:
            return None
        if not isinstance(actor_id, str) or not actor_id:
            return None

        scopes = _clean_scopes(payload.get("scopes"))
        if scopes is None:
            return None

        return DelegatedClaims(
            user_id=user_id,
            email=str(payload.get("email", "")),
            actor_id=actor_id,
            scopes=scopes,
            audience=DELEGATED_AUDIENCE,
            issuer=DELEGATED_ISSUER,
            issued_at=int(payload.get("iat", 0)),
            expires_at=int(payload["exp"]),
        )

    @staticmethod
    def looks_delegated(token: str) -> bool:
        """Report delegated-shaped claims without checking the signature.

        Only ever used to refuse a fallback, never to grant access.
        """
        try:
            payload = jwt.decode(token, options={"verify_signature": False})
        except jwt.PyJWTError:
            return False
        return isinstance(payload, dict) and _has_delegated_claims(payload)

    def resolve(self, token: str) -> TokenClaims | None:
        """Verify ``token`` as whichever shape it claims to be.

        A delegated-looking token that fails delegated verification is
        rejected outright.
        """
        delegated = self.verify_delegated(token)
        if delegated is not None:
            return delegated
        if self.looks_delegated(token):
            logger.info("Rejected delegated-shaped token that failed verification")
            return None
        return self.verify_primary(token)


# Singleton
_issuer: TokenIssuer | None = None


def get_token_issuer() -> TokenIssuer:
    global _issuer
    if _issuer is None:
        from lapse.config import get_settings

        settings = get_settings()
        _issuer = TokenIssuer(
            secret=settings.resolved_jwt_secret(),
            algorithm=settings.jwt_algorithm,
            primary_ttl=timedelta(days=settings.primary_token_ttl_days),
        )
    return _issuer


def reset_token_issuer() -> None:
    """Reset singleton (for testing)."""
    global _issuer
    _issuer = None
