# Admin router: trust review of registered service clients.
# Created: 2026-03-02

from __future__ import annotations

import asyncio
import logging

from fastapi import APIRouter, Request
from pydantic import ValidationError

from lapse.api.deps import error_response, extract_token, read_json_body, require_primary_user
from lapse.api.v1.schemas.common import MessageResponse, OkResponse
from lapse.api.v1.schemas.developer import ReviewAppRequest
from lapse.db.models import PermissionLevel
from lapse.oauth.errors import ConsentError
from lapse.oauth.registry import ServiceClientRegistry

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Admin"])

_ERRORS = {code: {"model": MessageResponse} for code in (400, 401, 403, 404)}

_ADMIN_LEVELS = (PermissionLevel.ADMIN, PermissionLevel.ROOT)


def _review(token: str | None, app_id: str, body: ReviewAppRequest) -> dict:
    from lapse.db.database import get_database
    from lapse.security.tokens import get_token_issuer

    with get_database().session() as session:
        user = require_primary_user(session, get_token_issuer(), token)
        if user.permission_level not in _ADMIN_LEVELS:
            raise ConsentError("Admin access required.", 403)

        registry = ServiceClientRegistry(session)
        client = registry.get_active_by_pk(app_id)
        if client is None:
            raise ConsentError("App not found.", 404)

        registry.set_trust_level(client, body.trustLevel, user.id, notes=body.notes or "")
        return {"trustLevel": client.trust_level.value}


@router.patch("/admin/apps/{app_id}", response_model=OkResponse, responses=_ERRORS)
async def review_app(app_id: str, request: Request):
    """Set a client's trust level. The consent screen uses it to decide
    whether to warn; it grants no extra access."""
    try:
        try:
            body = ReviewAppRequest.model_validate(await read_json_body(request))
        except ValidationError:
            raise ConsentError("Invalid update payload.", 400) from None
        data = await asyncio.to_thread(_review, extract_token(request), app_id, body)
    except ConsentError as exc:
        return error_response(exc)
    return {"ok": True, "data": data}
