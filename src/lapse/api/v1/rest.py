# REST router: scope-gated access to internal procedures.
# Created: 2026-03-02

from __future__ import annotations

import asyncio
import logging

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from lapse.api.deps import extract_token
from lapse.api.gateway import REST_PROCEDURES, ScopeGateway
from lapse.api.v1.schemas.common import OkResponse, ProtocolErrorResponse

logger = logging.getLogger(__name__)

router = APIRouter(tags=["REST"])

_GATEWAY_ERRORS = {
    code: {"model": ProtocolErrorResponse} for code in (400, 401, 403, 404, 405, 500)
}


def _gateway() -> ScopeGateway:
    from lapse.db.database import get_database
    from lapse.security.tokens import get_token_issuer

    return ScopeGateway(get_database(), get_token_issuer())


@router.get("/rest", response_model=OkResponse)
async def list_procedures():
    """Procedure catalog: method, required scopes, and whether auth is needed."""
    procedures = [
        {
            "router": router_name,
            "procedure": name,
            "method": spec.method,
            "type": spec.type,
            "scopes": list(spec.scopes),
            "summary": spec.summary,
            "requiresAuth": spec.requires_auth,
        }
        for router_name, entries in REST_PROCEDURES.items()
        for name, spec in entries.items()
    ]
    return {"ok": True, "data": {"procedures": procedures}}


async def call_procedure(router_name: str, procedure: str, request: Request):
    body = b"" if request.method == "GET" else await request.body()
    response = await asyncio.to_thread(
        _gateway().handle,
        request.method,
        router_name,
        procedure,
        extract_token(request),
        request.query_params.get("input"),
        body,
    )
    return JSONResponse(status_code=response.status_code, content=response.body)


# One route per method keeps operation IDs unique in the OpenAPI schema.
# Methods no procedure uses still reach the gateway so they get its 405
# envelope instead of the framework default.
for _method in ("GET", "POST", "PATCH", "DELETE", "PUT", "HEAD", "OPTIONS"):
    router.add_api_route(
        "/rest/{router_name}/{procedure}",
        call_procedure,
        methods=[_method],
        operation_id=f"call_procedure_{_method.lower()}",
        responses=_GATEWAY_ERRORS,
        include_in_schema=_method in ("GET", "POST", "PATCH", "DELETE"),
    )
