# Grants router: a user's view of the clients they have authorized.
# Created: 2026-03-02

from __future__ import annotations

import logging

from fastapi import APIRouter, Request
from pydantic import ValidationError

from lapse.api.deps import error_response, extract_token, read_json_body, require_primary_user
from lapse.api.v1.schemas.common import MessageResponse, OkResponse
from lapse.api.v1.schemas.oauth2 import GrantInfo, GrantRevokeRequest
from lapse.db.models import ServiceGrant
from lapse.oauth.errors import ConsentError
from lapse.oauth.grants import GrantStore

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Grants"])

_ERRORS = {code: {"model": MessageResponse} for code in (400, 401, 404)}


def _grant_info(grant: ServiceGrant) -> dict:
    return GrantInfo(
        id=grant.id,
        serviceClientId=grant.service_client_id,
        serviceName=grant.service_client.name,
        scopes=list(grant.scopes),
        createdAt=grant.created_at.isoformat(),
        lastUsedAt=grant.last_used_at.isoformat() if grant.last_used_at else None,
    ).model_dump()


@router.get("/oauth/grants", response_model=OkResponse, responses=_ERRORS)
def list_grants(request: Request):
    """Active grants for the signed-in user, most recent first."""
    from lapse.db.database import get_database
    from lapse.security.tokens import get_token_issuer

    try:
        with get_database().session() as session:
            user = require_primary_user(session, get_token_issuer(), extract_token(request))
            grants = [_grant_info(g) for g in GrantStore(session).list_active(user.id)]
    except ConsentError as exc:
        return error_response(exc)

    return {"ok": True, "data": {"grants": grants}}


@router.delete("/oauth/grants", response_model=OkResponse, responses=_ERRORS)
async def revoke_grant(request: Request):
    """Revoke one of the signed-in user's grants.

    Delegated tokens already issued from the grant stay valid until they
    expire.
    """
    from lapse.db.database import get_database
    from lapse.security.tokens import get_token_issuer

    try:
        payload = await read_json_body(request)
        with get_database().session() as session:
            user = require_primary_user(session, get_token_issuer(), extract_token(request))
            try:
                body = GrantRevokeRequest.model_validate(payload)
            except ValidationError:
                raise ConsentError("Missing grant id.", 400) from None
            if not GrantStore(session).revoke(body.grantId, user.id):
                raise ConsentError("Grant not found.", 404)
    except ConsentError as exc:
        return error_response(exc)

    return {"ok": True, "data": {}}
