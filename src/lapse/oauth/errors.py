# Error vocabularies for the delegated-access core.
# Created: 2026-03-02
#
# Two vocabularies coexist:
#   ProtocolError -- OAuth-style and gateway boundaries ({error, error_description})
#   ResultCode    -- internal procedure results ({ok: false, error, message})

from __future__ import annotations

from enum import Enum


class ProtocolError(str, Enum):
    INVALID_REQUEST = "invalid_request"
    INVALID_CLIENT = "invalid_client"
    INVALID_SCOPE = "invalid_scope"
    ACCESS_DENIED = "access_denied"
    UNAUTHORIZED = "unauthorized"
    FORBIDDEN = "forbidden"
    NOT_FOUND = "not_found"
    INTERNAL_ERROR = "internal_error"


class ResultCode(str, Enum):
    NOT_FOUND = "NOT_FOUND"
    NO_PERMISSION = "NO_PERMISSION"
    MISSING_PARAMS = "MISSING_PARAMS"
    ERROR = "ERROR"


class OAuthError(Exception):
    """A protocol-level rejection, rendered as ``{error, error_description}``."""

    def __init__(self, error: ProtocolError, description: str, status_code: int = 400):
        super().__init__(description)
        self.error = error
        self.description = description
        self.status_code = status_code

    def to_dict(self) -> dict[str, str]:
        return {"error": self.error.value, "error_description": self.description}


class ConsentError(Exception):
    """A rejection from the user-facing endpoints, rendered as ``{ok: false, message}``."""

    def __init__(self, message: str, status_code: int = 400):
        super().__init__(message)
        self.message = message
        self.status_code = status_code

    def to_dict(self) -> dict[str, object]:
        return {"ok": False, "message": self.message}
