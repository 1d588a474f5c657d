# Internal procedures reachable through the REST gateway.
# Created: 2026-03-02
#
# Procedures return a result envelope rather than raising:
#   ok(data)               -> {"ok": True, "data": data}
#   api_err(code, message) -> {"ok": False, "error": code, "message": message}
# The gateway passes these through verbatim.

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from lapse.db.models import PermissionLevel, ServiceClient, User
from lapse.oauth.errors import ResultCode

logger = logging.getLogger(__name__)

_MAX_HANDLE_LENGTH = 32


def ok(data: dict[str, Any]) -> dict[str, Any]:
    return {"ok": True, "data": data}


def api_err(code: ResultCode, message: str) -> dict[str, Any]:
    return {"ok": False, "error": code.value, "message": message}


@dataclass
class ProcedureContext:
    session: Session
    user: User | None = None
    actor: ServiceClient | None = None


Procedure = Callable[[ProcedureContext, Any], dict[str, Any]]


class ProcedureRegistry:
    """Maps ``(router, procedure)`` to a handler callable."""

    def __init__(self):
        self._handlers: dict[tuple[str, str], Procedure] = {}

    def register(self, router: str, procedure: str) -> Callable[[Procedure], Procedure]:
        def decorator(fn: Procedure) -> Procedure:
            self._handlers[(router, procedure)] = fn
            return fn

        return decorator

    def get(self, router: str, procedure: str) -> Procedure | None:
        return self._handlers.get((router, procedure))

    def __contains__(self, key: tuple[str, str]) -> bool:
        return key in self._handlers


default_registry = ProcedureRegistry()


def _private_user(user: User) -> dict[str, Any]:
    return {
        "id": user.id,
        "email": user.email,
        "handle": user.handle,
        "permissionLevel": user.permission_level.value,
        "createdAt": user.created_at.isoformat() if user.created_at else None,
    }


def _public_user(user: User) -> dict[str, Any]:
    return {"id": user.id, "handle": user.handle}


@default_registry.register("user", "myself")
def user_myself(ctx: ProcedureContext, _input: Any) -> dict[str, Any]:
    if ctx.user is None:
        return ok({"user": None})
    return ok({"user": _private_user(ctx.user)})


@default_registry.register("user", "query")
def user_query(ctx: ProcedureContext, payload: Any) -> dict[str, Any]:
    """Find a profile by handle or id. Only the owner sees private fields."""
    if not isinstance(payload, dict):
        return api_err(ResultCode.MISSING_PARAMS, "No handle or user ID specified")
    handle = payload.get("handle")
    user_id = payload.get("id")
    if not handle and not user_id:
        return api_err(ResultCode.MISSING_PARAMS, "No handle or user ID specified")

    if handle:
        found = ctx.session.scalars(select(User).where(User.handle == str(handle).strip())).first()
    else:
        found = ctx.session.get(User, str(user_id))

    if found is None:
        return ok({"user": None})
    if ctx.user is not None and ctx.user.id == found.id:
        return ok({"user": _private_user(found)})
    return ok({"user": _public_user(found)})


@default_registry.register("user", "update")
def user_update(ctx: ProcedureContext, payload: Any) -> dict[str, Any]:
    if ctx.user is None:
        return api_err(ResultCode.NO_PERMISSION, "Authentication required")
    if not isinstance(payload, dict) or not payload.get("id"):
        return api_err(ResultCode.MISSING_PARAMS, "No user ID specified")

    target_id = str(payload["id"])
    if ctx.user.permission_level == PermissionLevel.USER and ctx.user.id != target_id:
        return api_err(ResultCode.NO_PERMISSION, "You can only edit your own profile")

    target = ctx.session.get(User, target_id)
    if target is None:
        return api_err(ResultCode.NOT_FOUND, "Could not find the user to edit")

    changes = payload.get("changes") or {}
    handle = changes.get("handle") if isinstance(changes, dict) else None
    if handle is not None:
        handle = str(handle).strip()
        if not handle or len(handle) > _MAX_HANDLE_LENGTH:
            return api_err(ResultCode.ERROR, "Invalid handle")
        target.handle = handle
        ctx.session.flush()
        logger.info("User %s updated handle of %s", ctx.user.id, target.id)

    return ok({"user": _private_user(target)})
