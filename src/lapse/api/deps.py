# Shared request helpers for the API layer: bearer extraction and caller
# resolution.
# Created: 2026-03-02

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any

from fastapi import Request
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from lapse.db.models import ServiceClient, User
from lapse.oauth.errors import ConsentError, OAuthError
from lapse.oauth.registry import ServiceClientRegistry
from lapse.security.tokens import DelegatedClaims, TokenClaims, TokenIssuer

logger = logging.getLogger(__name__)


def extract_token(request: Request) -> str | None:
    """Bearer header first, then the auth cookie.

    The cookie only ever carries a primary session token; a delegated token
    found there is dropped so it cannot act through the browser session.
    """
    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Bearer "):
        token = auth_header.removeprefix("Bearer ").strip()
        if token:
            return token

    from lapse.config import get_settings

    cookie = request.cookies.get(get_settings().auth_cookie_name)
    if not cookie:
        return None
    if TokenIssuer.looks_delegated(cookie):
        logger.info("Ignored delegated token in the auth cookie")
        return None
    return cookie


def client_ip(request: Request) -> str | None:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip() or None
    return request.client.host if request.client else None


@dataclass
class AuthContext:
    """Who is calling: a user, optionally through a service client."""

    user: User
    claims: TokenClaims
    actor: ServiceClient | None = None

    @property
    def is_delegated(self) -> bool:
        return self.actor is not None

    @property
    def scopes(self) -> frozenset[str]:
        if isinstance(self.claims, DelegatedClaims):
            return frozenset(self.claims.scopes)
        return frozenset()


def resolve_auth_context(
    session: Session, issuer: TokenIssuer, token: str | None
) -> AuthContext | None:
    """Resolve a bearer token to an :class:`AuthContext`.

    Delegated tokens need both their user and a live (non-revoked) actor
    client; anything missing is treated as unauthenticated.
    """
    if not token:
        return None
    claims = issuer.resolve(token)
    if claims is None:
        return None

    user = session.get(User, claims.user_id)
    if user is None:
        logger.info("Token for unknown user %s ignored", claims.user_id)
        return None

    if isinstance(claims, DelegatedClaims):
        actor = ServiceClientRegistry(session).get_active_by_pk(claims.actor_id)
        if actor is None:
            logger.info("Delegated token for revoked or unknown client %s", claims.actor_id)
            return None
        return AuthContext(user=user, claims=claims, actor=actor)

    return AuthContext(user=user, claims=claims)


def require_primary_user(session: Session, issuer: TokenIssuer, token: str | None) -> User:
    """Return the signed-in user, refusing delegated callers.

    Raises :class:`ConsentError` (401) when there is no usable primary token.
    """
    claims = issuer.resolve(token) if token else None
    if claims is None or isinstance(claims, DelegatedClaims):
        raise ConsentError("Authentication required.", 401)
    user = session.get(User, claims.user_id)
    if user is None:
        raise ConsentError("Authentication required.", 401)
    return user


async def read_json_body(request: Request) -> Any:
    """Decode the JSON body; an empty body is ``{}``."""
    raw = await request.body()
    if not raw:
        return {}
    try:
        return json.loads(raw)
    except ValueError as exc:
        raise ConsentError("Invalid request payload.", 400) from exc


def error_response(exc: ConsentError | OAuthError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())
