# Scope-enforcing REST gateway.
# Created: 2026-03-02
#
# Each (router, procedure) pair has a catalog entry declaring its HTTP
# method, whether it needs a signed-in user, and the scopes a delegated
# caller must hold.  Check order:
#
#   unknown pair -> 404, method mismatch -> 405, bad input -> 400,
#   auth required but absent -> 401, delegated caller missing any
#   declared scope -> 403, then dispatch.
#
# Primary callers are not scope-limited.

from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any, Literal

from lapse.api.deps import resolve_auth_context
from lapse.api.procedures import ProcedureContext, ProcedureRegistry, default_registry
from lapse.db.database import Database
from lapse.oauth.errors import ProtocolError
from lapse.security.tokens import TokenIssuer

logger = logging.getLogger(__name__)

RestMethod = Literal["GET", "POST", "PATCH", "DELETE"]

_METHOD_TYPES = {"GET": "query", "POST": "mutation", "PATCH": "mutation", "DELETE": "mutation"}


@dataclass(frozen=True)
class ProcedureSpec:
    method: RestMethod
    scopes: tuple[str, ...]
    summary: str
    requires_auth: bool

    @property
    def type(self) -> str:
        return _METHOD_TYPES[self.method]


def _proc(
    method: RestMethod, scope: str | None, summary: str, requires_auth: bool
) -> ProcedureSpec:
    return ProcedureSpec(method, (scope,) if scope else (), summary, requires_auth)


REST_PROCEDURES: Mapping[str, Mapping[str, ProcedureSpec]] = MappingProxyType({
    "timelapse": {
        "query": _proc("GET", "timelapse:read", "Fetch a timelapse by id", False),
        "createDraft": _proc("POST", "timelapse:write", "Create a draft timelapse", True),
        "commit": _proc("POST", "timelapse:write", "Commit a draft timelapse", True),
        "update": _proc("PATCH", "timelapse:write", "Update timelapse metadata", True),
        "delete": _proc("DELETE", "timelapse:write", "Delete a timelapse", True),
        "publish": _proc("POST", "timelapse:write", "Publish a timelapse", True),
        "findByUser": _proc("GET", "timelapse:read", "List timelapses by user", False),
        "syncWithHackatime": _proc("POST", "timelapse:write", "Sync with Hackatime", True),
    },
    "user": {
        "myself": _proc("GET", "user:read", "Get current user", False),
        "query": _proc("GET", "user:read", "Fetch user profile", False),
        "update": _proc("PATCH", "user:write", "Update user profile", True),
        "getDevices": _proc("GET", "user:read", "List registered devices", True),
        "registerDevice": _proc("POST", "user:write", "Register a new device", True),
        "removeDevice": _proc("DELETE", "user:write", "Remove a device", True),
        "signOut": _proc("POST", None, "Sign out the current user", False),
        "hackatimeProjects": _proc("GET", "user:read", "List Hackatime projects", True),
        "getTotalTimelapseTime": _proc("GET", "user:read", "Get total timelapse time", False),
        "emitHeartbeat": _proc("POST", "user:write", "Emit user heartbeat", True),
    },
    "snapshot": {
        "delete": _proc("DELETE", "snapshot:write", "Delete a snapshot", True),
        "findByTimelapse": _proc("GET", "snapshot:read", "List snapshots by timelapse", False),
    },
    "comment": {
        "create": _proc("POST", "comment:write", "Create a comment", True),
        "delete": _proc("DELETE", "comment:write", "Delete a comment", True),
    },
    "global": {
        "weeklyLeaderboard": _proc("GET", "global:read", "Get weekly leaderboard", False),
        "recentTimelapses": _proc("GET", "global:read", "Get recent timelapses", False),
        "activeUsers": _proc("GET", "global:read", "Get active users count", False),
    },
})


def get_procedure_spec(
    router: str,
    procedure: str,
    procedures: Mapping[str, Mapping[str, ProcedureSpec]] = REST_PROCEDURES,
) -> ProcedureSpec | None:
    entries = procedures.get(router)
    if entries is None:
        return None
    return entries.get(procedure)


class InvalidInput(ValueError):
    pass


def parse_input(method: str, query_input: str | None, body: bytes) -> Any:
    """Decode a procedure's input.

    GET reads JSON from the ``input`` query parameter; other methods read
    the request body.  Missing input is ``{}``.
    """
    raw: str | bytes | None = query_input if method == "GET" else body
    if not raw:
        return {}
    try:
        return json.loads(raw)
    except (ValueError, UnicodeDecodeError) as exc:
        raise InvalidInput(str(exc)) from exc


@dataclass
class GatewayResponse:
    status_code: int
    body: dict[str, Any]


def _protocol_error(status_code: int, error: ProtocolError, description: str) -> GatewayResponse:
    return GatewayResponse(status_code, {"error": error.value, "error_description": description})


class ScopeGateway:
    """Authorizes and dispatches one REST procedure call."""

    def __init__(
        self,
        database: Database,
        issuer: TokenIssuer,
        procedures: Mapping[str, Mapping[str, ProcedureSpec]] = REST_PROCEDURES,
        registry: ProcedureRegistry = default_registry,
    ):
        self.database = database
        self.issuer = issuer
        self.procedures = procedures
        self.registry = registry

    def handle(
        self,
        method: str,
        router: str,
        procedure: str,
        token: str | None,
        query_input: str | None = None,
        body: bytes = b"",
    ) -> GatewayResponse:
        spec = get_procedure_spec(router, procedure, self.procedures)
        if spec is None:
            return _protocol_error(404, ProtocolError.NOT_FOUND, "Unknown REST procedure.")
        if spec.method != method:
            return _protocol_error(405, ProtocolError.INVALID_REQUEST, "Method not allowed.")

        try:
            payload = parse_input(method, query_input, body)
        except InvalidInput:
            return _protocol_error(400, ProtocolError.INVALID_REQUEST, "Invalid input payload.")

        with self.database.session() as session:
            auth = resolve_auth_context(session, self.issuer, token)

            if spec.requires_auth and auth is None:
                return _protocol_error(401, ProtocolError.UNAUTHORIZED, "Authentication required.")

            if auth is not None and auth.is_delegated and spec.scopes:
                missing = [s for s in spec.scopes if s not in auth.scopes]
                if missing:
                    logger.info(
                        "Client %s lacks %s for %s.%s",
                        auth.actor.client_id,
                        " ".join(missing),
                        router,
                        procedure,
                    )
                    return _protocol_error(403, ProtocolError.FORBIDDEN, "Missing required scope.")

            handler = self.registry.get(router, procedure)
            if handler is None:
                return _protocol_error(404, ProtocolError.NOT_FOUND, "Unknown procedure handler.")

            ctx = ProcedureContext(
                session=session,
                user=auth.user if auth else None,
                actor=auth.actor if auth else None,
            )
            try:
                result = handler(ctx, payload)
            except Exception:
                logger.exception("Procedure %s.%s failed", router, procedure)
                session.rollback()
                return _protocol_error(
                    500, ProtocolError.INTERNAL_ERROR, "Failed to execute procedure."
                )

            return GatewayResponse(200, result)
