# Developer app and admin review schemas.
# Created: 2026-03-02

from __future__ import annotations

from urllib.parse import urlsplit

from pydantic import BaseModel, Field, field_validator

from lapse.db.models import TrustLevel


def _check_url(value: str) -> str:
    parts = urlsplit(value)
    if parts.scheme not in ("http", "https") or not parts.hostname:
        raise ValueError(f"not an absolute http(s) URL: {value!r}")
    return value


class CreateAppRequest(BaseModel):
    """Register a new service client."""

    name: str = Field(..., min_length=2, max_length=48)
    description: str = Field(default="", max_length=200)
    homepageUrl: str  # noqa: N815
    iconUrl: str | None = None  # noqa: N815
    redirectUris: list[str] = Field(..., min_length=1)  # noqa: N815
    scopes: list[str] = Field(..., min_length=1)

    @field_validator("homepageUrl", "iconUrl")
    @classmethod
    def _url(cls, value: str | None) -> str | None:
        return value if value is None else _check_url(value)

    @field_validator("redirectUris")
    @classmethod
    def _urls(cls, value: list[str]) -> list[str]:
        return [_check_url(v) for v in value]


class UpdateAppRequest(BaseModel):
    """Partial update; omitted fields are left unchanged."""

    name: str | None = Field(default=None, min_length=2, max_length=48)
    description: str | None = Field(default=None, max_length=200)
    homepageUrl: str | None = None  # noqa: N815
    iconUrl: str | None = None  # noqa: N815
    redirectUris: list[str] | None = None  # noqa: N815
    scopes: list[str] | None = None

    @field_validator("homepageUrl", "iconUrl")
    @classmethod
    def _url(cls, value: str | None) -> str | None:
        return value if value is None else _check_url(value)

    @field_validator("redirectUris")
    @classmethod
    def _urls(cls, value: list[str] | None) -> list[str] | None:
        return value if value is None else [_check_url(v) for v in value]


class ReviewAppRequest(BaseModel):
    """Administrator trust decision."""

    trustLevel: TrustLevel  # noqa: N815
    notes: str | None = None
