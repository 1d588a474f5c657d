# OAuth2 schemas.
# Created: 2026-03-02

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, StrictBool

from lapse.oauth.consent import MAX_STATE_LENGTH
from lapse.oauth.exchange import TOKEN_EXCHANGE_GRANT_TYPE

MAX_SCOPE_PARAM_LENGTH = 512


class AuthorizeRequest(BaseModel):
    """Authorize (INIT) request from the signed-in user's browser."""

    client_id: str = Field(..., min_length=1)
    redirect_uri: str | None = None
    scope: list[str] = Field(default_factory=list)
    state: str | None = Field(default=None, max_length=MAX_STATE_LENGTH)


class ConsentDecisionRequest(AuthorizeRequest):
    """Consent decision; same fields plus the user's answer."""

    consent: StrictBool


class TokenExchangeRequest(BaseModel):
    """RFC 8693 token exchange request (form-encoded or JSON)."""

    model_config = ConfigDict(extra="ignore")

    grant_type: Literal[TOKEN_EXCHANGE_GRANT_TYPE]  # type: ignore[valid-type]
    subject_token: str = Field(..., min_length=1)
    subject_token_type: str = Field(..., min_length=1)
    scope: str | None = Field(default=None, max_length=MAX_SCOPE_PARAM_LENGTH)
    resource: str | None = None
    audience: str | None = None
    requested_token_type: str | None = None
    client_id: str | None = None
    client_secret: str | None = None


class TokenExchangeResponse(BaseModel):
    access_token: str
    issued_token_type: str
    token_type: str = "Bearer"
    expires_in: int
    scope: str
    audience: str
    issuer: str


class GrantRevokeRequest(BaseModel):
    grantId: str = Field(..., min_length=1)  # noqa: N815


class GrantInfo(BaseModel):
    """An active grant as shown to its owner."""

    id: str
    serviceClientId: str  # noqa: N815
    serviceName: str  # noqa: N815
    scopes: list[str]
    createdAt: str  # noqa: N815
    lastUsedAt: str | None = None  # noqa: N815
