# RFC 8693 token exchange: a service client trades a user's primary token
# for a short-lived delegated token.
# Created: 2026-03-02
#
# Rejections are raised as OAuthError and rendered by the router as
# {error, error_description}.  Nothing is written (grant touch, audit row)
# unless every check passes.

from __future__ import annotations

import base64
import binascii
import logging
from dataclasses import dataclass
from typing import Any
from urllib.parse import unquote

from lapse.db.database import Database
from lapse.db.models import User
from lapse.oauth.audit import TokenAuditLog
from lapse.oauth.consent import DEFAULT_TOKEN_TTL_SECONDS
from lapse.oauth.errors import OAuthError, ProtocolError
from lapse.oauth.grants import GrantStore
from lapse.oauth.registry import ServiceClientRegistry
from lapse.scopes import ScopeCatalog, has_duplicates, normalize_scopes, split_scope_string
from lapse.security.tokens import DELEGATED_AUDIENCE, DELEGATED_ISSUER, TokenIssuer

logger = logging.getLogger(__name__)

TOKEN_EXCHANGE_GRANT_TYPE = "urn:ietf:params:oauth:grant-type:token-exchange"
ACCESS_TOKEN_TYPE = "urn:ietf:params:oauth:token-type:access_token"
JWT_TOKEN_TYPE = "urn:ietf:params:oauth:token-type:jwt"
ID_TOKEN_TYPE = "urn:ietf:params:oauth:token-type:id_token"

SUPPORTED_SUBJECT_TOKEN_TYPES = frozenset({ACCESS_TOKEN_TYPE, JWT_TOKEN_TYPE})


@dataclass(frozen=True)
class ClientCredentials:
    client_id: str
    client_secret: str


def parse_basic_auth(header: str | None) -> ClientCredentials | None:
    """Decode an ``Authorization: Basic`` header into client credentials.

    Both halves are form-urlencoded per RFC 6749 §2.3.1.  Anything malformed
    yields None.
    """
    if not header:
        return None
    scheme, _, encoded = header.partition(" ")
    if scheme.lower() != "basic" or not encoded.strip():
        return None
    try:
        decoded = base64.b64decode(encoded.strip(), validate=True).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError):
        return None
    client_id, sep, client_secret = decoded.partition(":")
    if not sep or not client_id or not client_secret:
        return None
    return ClientCredentials(unquote(client_id), unquote(client_secret))


def _reject(error: ProtocolError, description: str, status_code: int = 400) -> OAuthError:
    logger.info("Token exchange rejected (%s): %s", error.value, description)
    return OAuthError(error, description, status_code)


class TokenExchange:
    """Validates a token exchange request and mints the delegated token."""

    def __init__(
        self,
        database: Database,
        issuer: TokenIssuer,
        catalog: ScopeCatalog,
        token_ttl_seconds: int = DEFAULT_TOKEN_TTL_SECONDS,
    ):
        self.database = database
        self.issuer = issuer
        self.catalog = catalog
        self.token_ttl_seconds = token_ttl_seconds

    def exchange(
        self,
        credentials: ClientCredentials | None,
        subject_token: str,
        subject_token_type: str,
        scope: str | None = None,
        ip: str | None = None,
        user_agent: str | None = None,
    ) -> dict[str, Any]:
        if credentials is None:
            raise _reject(ProtocolError.INVALID_CLIENT, "Client authentication required.", 401)

        with self.database.session() as session:
            registry = ServiceClientRegistry(session)
            client = registry.authenticate(credentials.client_id, credentials.client_secret)
            if client is None:
                raise _reject(ProtocolError.INVALID_CLIENT, "Invalid client credentials.", 401)

            if subject_token_type not in SUPPORTED_SUBJECT_TOKEN_TYPES:
                raise _reject(ProtocolError.INVALID_REQUEST, "Unsupported subject_token_type.")

            requested = split_scope_string(scope)
            unknown = self.catalog.unknown(requested)
            if unknown:
                raise _reject(
                    ProtocolError.INVALID_SCOPE, f"Unknown scopes: {', '.join(unknown)}"
                )
            allowed = set(client.scopes)
            if any(s not in allowed for s in requested):
                raise _reject(
                    ProtocolError.INVALID_SCOPE, "Requested scopes exceed client permissions.", 403
                )

            # A delegated token is never a valid subject: no chaining.
            if self.issuer.looks_delegated(subject_token):
                raise _reject(ProtocolError.INVALID_REQUEST, "Invalid subject token.")
            subject = self.issuer.verify_primary(subject_token)
            if subject is None:
                raise _reject(ProtocolError.INVALID_REQUEST, "Invalid subject token.")

            user = session.get(User, subject.user_id)
            if user is None:
                raise _reject(ProtocolError.INVALID_REQUEST, "Subject user not found.")

            grants = GrantStore(session)
            grant = grants.find_active(client.id, user.id)
            if grant is None:
                raise _reject(ProtocolError.ACCESS_DENIED, "User has not granted access.", 403)

            granted = normalize_scopes(grant.scopes)
            if requested:
                final = [s for s in requested if s in granted]
            else:
                final = granted
            if not final:
                raise _reject(ProtocolError.ACCESS_DENIED, "No granted scopes requested.", 403)
            if has_duplicates(final):
                raise _reject(ProtocolError.INVALID_SCOPE, "Duplicate scopes are not allowed.")

            access_token = self.issuer.issue_delegated(
                user.id, user.email, client.id, final, self.token_ttl_seconds
            )
            registry.touch(client)
            grants.touch(grant)
            TokenAuditLog(session).append(client.id, user.id, final, ip=ip, user_agent=user_agent)

            logger.info(
                "Issued delegated token for user %s to client %s", user.id, client.client_id
            )
            return {
                "access_token": access_token,
                "issued_token_type": ACCESS_TOKEN_TYPE,
                "token_type": "Bearer",
                "expires_in": self.token_ttl_seconds,
                "scope": " ".join(final),
                "audience": DELEGATED_AUDIENCE,
                "issuer": DELEGATED_ISSUER,
            }
