# Common API response schemas.
# Created: 2026-03-02

from __future__ import annotations

from typing import Any

from pydantic import BaseModel


class APIResponse(BaseModel):
    """Base response wrapper."""

    model_config = {"from_attributes": True}


class OkResponse(APIResponse):
    """``{ok: true, data}`` envelope for user-facing endpoints."""

    ok: bool = True
    data: dict[str, Any] = {}


class MessageResponse(APIResponse):
    """``{ok: false, message}`` envelope for user-facing rejections."""

    ok: bool = False
    message: str


class ProtocolErrorResponse(APIResponse):
    """``{error, error_description}`` envelope for protocol endpoints."""

    error: str
    error_description: str
