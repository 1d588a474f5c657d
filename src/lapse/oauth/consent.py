# Consent flow: the browser-driven half of delegation.
# Created: 2026-03-02
#
#   INIT ──► AUTO_REISSUE                 (active grant exists)
#        └─► AWAITING_DECISION ──► APPROVED | DENIED
#
# Only a user holding a primary token may drive this flow; the HTTP layer
# turns delegated callers away before we get here.

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from sqlalchemy.orm import Session

from lapse.db.database import Database
from lapse.db.models import ServiceClient, User
from lapse.oauth.errors import ConsentError
from lapse.oauth.grants import GrantStore
from lapse.oauth.registry import ServiceClientRegistry
from lapse.scopes import ScopeCatalog, has_duplicates, normalize_scopes
from lapse.security.tokens import DelegatedClaims, TokenClaims, TokenIssuer

logger = logging.getLogger(__name__)

MAX_STATE_LENGTH = 256
DEFAULT_TOKEN_TTL_SECONDS = 900


class ConsentState(str, Enum):
    INIT = "INIT"
    AUTO_REISSUE = "AUTO_REISSUE"
    AWAITING_DECISION = "AWAITING_DECISION"
    APPROVED = "APPROVED"
    DENIED = "DENIED"


@dataclass
class AuthorizationRequest:
    client_id: str
    redirect_uri: str | None = None
    scopes: list[str] = field(default_factory=list)
    state: str | None = None


@dataclass
class ConsentOutcome:
    state: ConsentState
    redirect_url: str | None = None
    access_token: str | None = None
    grant_id: str | None = None
    client: dict[str, Any] | None = None

    def to_payload(self) -> dict[str, Any]:
        """Shape returned in ``{ok: true, data: ...}``."""
        if self.state is ConsentState.AWAITING_DECISION:
            return {"client": self.client}
        if self.state is ConsentState.DENIED:
            return {"redirectUrl": self.redirect_url}
        return {
            "redirectUrl": self.redirect_url,
            "accessToken": self.access_token,
            "grantId": self.grant_id,
        }


def build_redirect_url(redirect_uri: str, params: dict[str, str | None]) -> str:
    """Set ``params`` on ``redirect_uri``'s query string, skipping None values."""
    parts = urlsplit(redirect_uri)
    query = dict(parse_qsl(parts.query, keep_blank_values=True))
    for key, value in params.items():
        if value is not None:
            query[key] = value
    return urlunsplit(parts._replace(query=urlencode(query)))


class ConsentFlow:
    """Runs the authorize (INIT) and decision steps for one user at a time."""

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

    # -- shared validation ---------------------------------------------------

    @staticmethod
    def _resolve_user(session: Session, caller: TokenClaims) -> User:
        # No nested delegation: a delegated caller cannot consent for another client.
        if isinstance(caller, DelegatedClaims):
            logger.info("Delegated caller %s tried to drive consent", caller.actor_id)
            raise ConsentError("Authentication required.", 401)
        user = session.get(User, caller.user_id)
        if user is None:
            raise ConsentError("Authentication required.", 401)
        return user

    def _validate(
        self, registry: ServiceClientRegistry, request: AuthorizationRequest
    ) -> tuple[ServiceClient, str, list[str]]:
        if request.state is not None and len(request.state) > MAX_STATE_LENGTH:
            raise ConsentError("State is too long.", 400)

        scopes = normalize_scopes(request.scopes)
        unknown = self.catalog.unknown(scopes)
        if unknown:
            raise ConsentError(f"Unknown scopes: {', '.join(unknown)}", 400)

        client = registry.get_active(request.client_id)
        if client is None:
            raise ConsentError("Unknown client.", 404)

        redirect_uri = request.redirect_uri
        if not redirect_uri:
            raise ConsentError("Redirect URI required.", 400)
        if client.redirect_uris and redirect_uri not in client.redirect_uris:
            raise ConsentError("Invalid redirect URI.", 400)
        if not urlsplit(redirect_uri).scheme:
            raise ConsentError("Invalid redirect URI.", 400)

        return client, redirect_uri, scopes

    def _token_redirect(
        self,
        user: User,
        client: ServiceClient,
        redirect_uri: str,
        scopes: list[str],
        state: str | None,
    ) -> tuple[str, str]:
        token = self.issuer.issue_delegated(
            user.id, user.email, client.id, scopes, self.token_ttl_seconds
        )
        redirect_url = build_redirect_url(
            redirect_uri,
            {
                "access_token": token,
                "token_type": "Bearer",
                "expires_in": str(self.token_ttl_seconds),
                "scope": " ".join(scopes),
                "state": state,
            },
        )
        return token, redirect_url

    # -- INIT ------------------------------------------------------------------

    def begin(self, caller: TokenClaims, request: AuthorizationRequest) -> ConsentOutcome:
        """Start authorization: re-issue silently for an existing grant, or
        return the client's public metadata for a consent screen."""
        with self.database.session() as session:
            user = self._resolve_user(session, caller)
            registry = ServiceClientRegistry(session)
            client, redirect_uri, requested = self._validate(registry, request)

            grant = GrantStore(session).find_active(client.id, user.id)
            if grant is not None:
                stored = normalize_scopes(grant.scopes)
                if not stored or has_duplicates(stored):
                    logger.warning("Grant %s has invalid stored scopes", grant.id)
                    raise ConsentError("Invalid stored grant scopes.", 400)

                token, redirect_url = self._token_redirect(
                    user, client, redirect_uri, stored, request.state
                )
                logger.info("Re-issued delegated token for grant %s", grant.id)
                return ConsentOutcome(
                    state=ConsentState.AUTO_REISSUE,
                    redirect_url=redirect_url,
                    access_token=token,
                    grant_id=grant.id,
                )

            return ConsentOutcome(
                state=ConsentState.AWAITING_DECISION,
                client={
                    "id": client.id,
                    "name": client.name,
                    "clientId": client.client_id,
                    "scopes": list(client.scopes),
                    "requestedScopes": requested,
                    "scopeDescriptions": self.catalog.describe(requested or client.scopes),
                    "redirectUris": list(client.redirect_uris),
                    "trustLevel": client.trust_level.value,
                },
            )

    # -- decision --------------------------------------------------------------

    def decide(
        self,
        caller: TokenClaims,
        request: AuthorizationRequest,
        consent: bool,
    ) -> ConsentOutcome:
        with self.database.session() as session:
            user = self._resolve_user(session, caller)
            registry = ServiceClientRegistry(session)
            client, redirect_uri, requested = self._validate(registry, request)

            if not consent:
                logger.info("User %s denied client %s", user.id, client.client_id)
                return ConsentOutcome(
                    state=ConsentState.DENIED,
                    redirect_url=build_redirect_url(
                        redirect_uri, {"error": "access_denied", "state": request.state}
                    ),
                )

            if has_duplicates(requested):
                raise ConsentError("Duplicate scopes are not allowed.", 400)

            allowed = list(client.scopes)
            effective = [s for s in requested if s in allowed] if requested else allowed
            effective = normalize_scopes(effective)
            if not effective:
                raise ConsentError("Requested scopes are not allowed.", 400)
            if has_duplicates(effective):
                raise ConsentError("Duplicate scopes are not allowed.", 400)

            grant = GrantStore(session).upsert(client.id, user.id, effective)
            token, redirect_url = self._token_redirect(
                user, client, redirect_uri, effective, request.state
            )
            logger.info("User %s approved client %s", user.id, client.client_id)
            return ConsentOutcome(
                state=ConsentState.APPROVED,
                redirect_url=redirect_url,
                access_token=token,
                grant_id=grant.id,
            )
