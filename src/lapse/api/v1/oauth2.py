# OAuth2 router: consent (authorize), token exchange, scope catalog.
# Created: 2026-03-02

from __future__ import annotations

import asyncio
import logging

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from lapse.api.deps import client_ip, error_response, extract_token, read_json_body
from lapse.api.v1.schemas.common import MessageResponse, OkResponse, ProtocolErrorResponse
from lapse.api.v1.schemas.oauth2 import (
    AuthorizeRequest,
    ConsentDecisionRequest,
    TokenExchangeRequest,
    TokenExchangeResponse,
)
from lapse.oauth.consent import AuthorizationRequest, ConsentFlow
from lapse.oauth.errors import ConsentError, OAuthError, ProtocolError
from lapse.oauth.exchange import ClientCredentials, TokenExchange, parse_basic_auth

logger = logging.getLogger(__name__)

router = APIRouter(tags=["OAuth2"])

_FORM_CONTENT_TYPES = ("application/x-www-form-urlencoded", "multipart/form-data")

_CONSENT_ERRORS = {code: {"model": MessageResponse} for code in (400, 401, 404)}
_PROTOCOL_ERRORS = {code: {"model": ProtocolErrorResponse} for code in (400, 401, 403)}


def _consent_flow() -> ConsentFlow:
    from lapse.config import get_settings
    from lapse.db.database import get_database
    from lapse.scopes import get_scope_catalog
    from lapse.security.tokens import get_token_issuer

    return ConsentFlow(
        get_database(),
        get_token_issuer(),
        get_scope_catalog(),
        token_ttl_seconds=get_settings().delegated_token_ttl_seconds,
    )


def _token_exchange() -> TokenExchange:
    from lapse.config import get_settings
    from lapse.db.database import get_database
    from lapse.scopes import get_scope_catalog
    from lapse.security.tokens import get_token_issuer

    return TokenExchange(
        get_database(),
        get_token_issuer(),
        get_scope_catalog(),
        token_ttl_seconds=get_settings().delegated_token_ttl_seconds,
    )


def _to_authorization_request(body: AuthorizeRequest) -> AuthorizationRequest:
    return AuthorizationRequest(
        client_id=body.client_id,
        redirect_uri=body.redirect_uri,
        scopes=list(body.scope),
        state=body.state,
    )


def _caller(request: Request):
    from lapse.security.tokens import get_token_issuer

    token = extract_token(request)
    claims = get_token_issuer().resolve(token) if token else None
    if claims is None:
        raise ConsentError("Authentication required.", 401)
    return claims


@router.post("/oauth/authorize", response_model=OkResponse, responses=_CONSENT_ERRORS)
async def authorize(request: Request):
    """Start authorization: auto-reissue for an existing grant, or return
    client metadata for the consent screen."""
    try:
        caller = _caller(request)
        try:
            body = AuthorizeRequest.model_validate(await read_json_body(request))
        except ValidationError:
            raise ConsentError("Invalid authorization request.", 400) from None
        outcome = await asyncio.to_thread(
            _consent_flow().begin, caller, _to_authorization_request(body)
        )
    except ConsentError as exc:
        return error_response(exc)

    return {"ok": True, "data": outcome.to_payload()}


@router.put("/oauth/authorize", response_model=OkResponse, responses=_CONSENT_ERRORS)
async def authorize_decision(request: Request):
    """Record the user's consent decision."""
    try:
        caller = _caller(request)
        try:
            body = ConsentDecisionRequest.model_validate(await read_json_body(request))
        except ValidationError:
            raise ConsentError("Invalid authorization request.", 400) from None
        outcome = await asyncio.to_thread(
            _consent_flow().decide, caller, _to_authorization_request(body), body.consent
        )
    except ConsentError as exc:
        return error_response(exc)

    return {"ok": True, "data": outcome.to_payload()}


async def _read_token_request(request: Request) -> dict:
    content_type = request.headers.get("content-type", "")
    if content_type.startswith(_FORM_CONTENT_TYPES):
        form = await request.form()
        return {key: value for key, value in form.items() if isinstance(value, str)}
    try:
        data = await read_json_body(request)
    except ConsentError:
        raise OAuthError(ProtocolError.INVALID_REQUEST, "Malformed request body.") from None
    if not isinstance(data, dict):
        raise OAuthError(ProtocolError.INVALID_REQUEST, "Malformed request body.")
    return data


@router.post(
    "/oauth/token", response_model=TokenExchangeResponse, responses=_PROTOCOL_ERRORS
)
async def token_exchange(request: Request):
    """RFC 8693 token exchange: primary token in, delegated token out."""
    try:
        raw = await _read_token_request(request)
        try:
            body = TokenExchangeRequest.model_validate(raw)
        except ValidationError:
            raise OAuthError(ProtocolError.INVALID_REQUEST, "Invalid token request.") from None

        credentials = parse_basic_auth(request.headers.get("Authorization"))
        if credentials is None and body.client_id and body.client_secret:
            credentials = ClientCredentials(body.client_id, body.client_secret)

        # scrypt verification is CPU-bound; keep it off the event loop.
        result = await asyncio.to_thread(
            _token_exchange().exchange,
            credentials,
            body.subject_token,
            body.subject_token_type,
            body.scope,
            client_ip(request),
            request.headers.get("user-agent"),
        )
    except OAuthError as exc:
        return error_response(exc)

    return JSONResponse(
        content=result,
        headers={"Cache-Control": "no-store", "Pragma": "no-cache"},
    )


@router.api_route(
    "/oauth/token",
    methods=["GET", "PUT", "PATCH", "DELETE", "HEAD", "OPTIONS"],
    include_in_schema=False,
)
async def token_method_not_allowed():
    return error_response(
        OAuthError(ProtocolError.INVALID_REQUEST, "Method not allowed.", status_code=405)
    )


@router.get("/oauth/scopes", response_model=OkResponse)
async def list_scopes():
    """Recognised scopes with their descriptions, grouped for display."""
    from lapse.scopes import SCOPE_GROUPS, get_scope_catalog

    catalog = get_scope_catalog()
    scopes = [
        {"name": name, "description": catalog.descriptions[name], "group": group}
        for group, entries in SCOPE_GROUPS.items()
        for name in entries
        if name in catalog
    ]
    return {"ok": True, "data": {"scopes": scopes}}
