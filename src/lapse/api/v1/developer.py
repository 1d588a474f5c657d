# Developer router: register and manage your own service clients.
# Created: 2026-03-02
#
# The client secret is returned in plaintext only from create and
# rotate-secret; it is stored as an scrypt hash.

from __future__ import annotations

import asyncio
import logging
from urllib.parse import urlsplit

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from lapse.api.deps import error_response, extract_token, read_json_body, require_primary_user
from lapse.api.v1.schemas.common import MessageResponse, OkResponse
from lapse.api.v1.schemas.developer import CreateAppRequest, UpdateAppRequest
from lapse.db.models import ServiceClient
from lapse.oauth.audit import TokenAuditLog
from lapse.oauth.errors import ConsentError
from lapse.oauth.grants import GrantStore
from lapse.oauth.registry import ServiceClientRegistry, normalize_redirect_uris
from lapse.scopes import dedupe_scopes, get_scope_catalog, normalize_scopes

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Developer"])

_ERRORS = {code: {"model": MessageResponse} for code in (400, 401, 404)}


def app_info(client: ServiceClient) -> dict:
    return {
        "id": client.id,
        "name": client.name,
        "description": client.description,
        "homepageUrl": client.homepage_url,
        "iconUrl": client.icon_url,
        "clientId": client.client_id,
        "scopes": list(client.scopes),
        "redirectUris": list(client.redirect_uris),
        "trustLevel": client.trust_level.value,
    }


def _checked_scopes(raw: list[str]) -> list[str]:
    scopes = dedupe_scopes(normalize_scopes(raw))
    unknown = get_scope_catalog().unknown(scopes)
    if unknown:
        raise ConsentError(f"Unknown scopes: {', '.join(unknown)}", 400)
    if not scopes:
        raise ConsentError("At least one scope is required.", 400)
    return scopes


def _check_redirect_hosts(homepage_url: str, redirect_uris: list[str]) -> None:
    homepage_host = urlsplit(homepage_url).hostname
    if any(urlsplit(uri).hostname != homepage_host for uri in redirect_uris):
        raise ConsentError("Redirect URIs must match the homepage domain.", 400)


def _collaborators(request: Request):
    from lapse.db.database import get_database
    from lapse.security.tokens import get_token_issuer

    token = extract_token(request)
    return get_database(), get_token_issuer(), token


# -- blocking work (runs in a worker thread) --------------------------------


def _list_apps(request: Request) -> list[dict]:
    database, issuer, token = _collaborators(request)
    with database.session() as session:
        user = require_primary_user(session, issuer, token)
        return [app_info(c) for c in ServiceClientRegistry(session).list_for_owner(user.id)]


def _create_app(request: Request, body: CreateAppRequest) -> dict:
    database, issuer, token = _collaborators(request)
    with database.session() as session:
        user = require_primary_user(session, issuer, token)
        scopes = _checked_scopes(body.scopes)
        redirect_uris = normalize_redirect_uris(body.redirectUris)
        _check_redirect_hosts(body.homepageUrl, redirect_uris)

        client, secret = ServiceClientRegistry(session).create(
            name=body.name,
            scopes=scopes,
            redirect_uris=redirect_uris,
            created_by_user_id=user.id,
            description=body.description,
            homepage_url=body.homepageUrl,
            icon_url=body.iconUrl or "",
        )
        return {"app": app_info(client), "clientSecret": secret}


def _owned_app(
    session, request: Request, app_id: str
) -> tuple[ServiceClientRegistry, ServiceClient]:
    _, issuer, token = _collaborators(request)
    user = require_primary_user(session, issuer, token)
    registry = ServiceClientRegistry(session)
    client = registry.get_owned(app_id, user.id)
    if client is None:
        raise ConsentError("App not found.", 404)
    return registry, client


def _update_app(request: Request, app_id: str, body: UpdateAppRequest) -> dict:
    database, _, _ = _collaborators(request)
    with database.session() as session:
        registry, client = _owned_app(session, request, app_id)

        scopes = _checked_scopes(body.scopes) if body.scopes is not None else None
        redirect_uris = (
            normalize_redirect_uris(body.redirectUris) if body.redirectUris is not None else None
        )
        if body.homepageUrl is not None or redirect_uris is not None:
            _check_redirect_hosts(
                body.homepageUrl or client.homepage_url,
                redirect_uris if redirect_uris is not None else list(client.redirect_uris),
            )

        registry.update(
            client,
            name=body.name,
            description=body.description,
            homepage_url=body.homepageUrl,
            icon_url=body.iconUrl,
            scopes=scopes,
            redirect_uris=redirect_uris,
        )
        if scopes is not None:
            # Keep every grant within the client's allowed scopes.
            GrantStore(session).restrict_to(client.id, scopes)
        return {"app": app_info(client)}


def _delete_app(request: Request, app_id: str) -> None:
    database, _, _ = _collaborators(request)
    with database.session() as session:
        registry, client = _owned_app(session, request, app_id)
        registry.revoke(client)


def _rotate_secret(request: Request, app_id: str) -> dict:
    database, _, _ = _collaborators(request)
    with database.session() as session:
        registry, client = _owned_app(session, request, app_id)
        return {"clientSecret": registry.rotate_secret(client)}


def _list_audits(request: Request, app_id: str, limit: int) -> dict:
    database, _, _ = _collaborators(request)
    with database.session() as session:
        _, client = _owned_app(session, request, app_id)
        records = TokenAuditLog(session).list_for_client(client.id, limit=limit)
        return {
            "audits": [
                {
                    "id": r.id,
                    "userId": r.user_id,
                    "scope": r.scope,
                    "ip": r.ip,
                    "userAgent": r.user_agent,
                    "createdAt": r.created_at.isoformat(),
                }
                for r in records
            ]
        }


# -- routes -------------------------------------------------------------------


@router.get("/developer/apps", response_model=OkResponse, responses=_ERRORS)
async def list_apps(request: Request):
    try:
        apps = await asyncio.to_thread(_list_apps, request)
    except ConsentError as exc:
        return error_response(exc)
    return {"ok": True, "data": {"apps": apps}}


@router.post("/developer/apps", status_code=201, response_model=OkResponse, responses=_ERRORS)
async def create_app(request: Request):
    """Register a client. The plaintext secret is shown once."""
    try:
        try:
            body = CreateAppRequest.model_validate(await read_json_body(request))
        except ValidationError:
            raise ConsentError("Invalid app payload.", 400) from None
        data = await asyncio.to_thread(_create_app, request, body)
    except ConsentError as exc:
        return error_response(exc)
    return JSONResponse(status_code=201, content={"ok": True, "data": data})


@router.patch("/developer/apps/{app_id}", response_model=OkResponse, responses=_ERRORS)
async def update_app(app_id: str, request: Request):
    try:
        try:
            body = UpdateAppRequest.model_validate(await read_json_body(request))
        except ValidationError:
            raise ConsentError("Invalid update payload.", 400) from None
        data = await asyncio.to_thread(_update_app, request, app_id, body)
    except ConsentError as exc:
        return error_response(exc)
    return {"ok": True, "data": data}


@router.delete("/developer/apps/{app_id}", response_model=OkResponse, responses=_ERRORS)
async def delete_app(app_id: str, request: Request):
    """Revoke a client. Revoked clients fail all authentication."""
    try:
        await asyncio.to_thread(_delete_app, request, app_id)
    except ConsentError as exc:
        return error_response(exc)
    return {"ok": True, "data": {}}


@router.post(
    "/developer/apps/{app_id}/rotate-secret", response_model=OkResponse, responses=_ERRORS
)
async def rotate_secret(app_id: str, request: Request):
    try:
        data = await asyncio.to_thread(_rotate_secret, request, app_id)
    except ConsentError as exc:
        return error_response(exc)
    return {"ok": True, "data": data}


@router.get("/developer/apps/{app_id}/audits", response_model=OkResponse, responses=_ERRORS)
async def list_audits(app_id: str, request: Request, limit: int = 100):
    """Recent token exchanges for one of your clients."""
    try:
        data = await asyncio.to_thread(_list_audits, request, app_id, max(1, min(limit, 500)))
    except ConsentError as exc:
        return error_response(exc)
    return {"ok": True, "data": data}
