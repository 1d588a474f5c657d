"""
SQLAlchemy models for users, service clients, grants and token audits.

Array-valued fields (scopes, redirect URIs) are stored as JSON so the same
schema works on SQLite and PostgreSQL.
"""

from __future__ import annotations

import enum
import uuid
from datetime import UTC, datetime

from sqlalchemy import (
    JSON,
    Column,
    DateTime,
    Enum,
    ForeignKey,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()


def _uuid() -> str:
    return str(uuid.uuid4())


def utcnow() -> datetime:
    return datetime.now(UTC)


class PermissionLevel(str, enum.Enum):
    USER = "USER"
    ADMIN = "ADMIN"
    ROOT = "ROOT"


class TrustLevel(str, enum.Enum):
    UNTRUSTED = "UNTRUSTED"
    TRUSTED = "TRUSTED"


class User(Base):
    """User identity. Owned by the sign-in subsystem; referenced here by id."""

    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=_uuid)
    email = Column(String(255), unique=True, nullable=False, index=True)
    handle = Column(String(32), nullable=True)
    permission_level = Column(
        Enum(PermissionLevel, native_enum=False), nullable=False, default=PermissionLevel.USER
    )
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)


class ServiceClient(Base):
    """A registered third-party application. Revoked, never deleted."""

    __tablename__ = "service_clients"

    id = Column(String(36), primary_key=True, default=_uuid)
    client_id = Column(String(64), unique=True, nullable=False, index=True)
    client_secret_hash = Column(String(255), nullable=False)
    name = Column(String(64), nullable=False)
    description = Column(Text, nullable=False, default="")
    homepage_url = Column(String(512), nullable=False, default="")
    icon_url = Column(String(512), nullable=False, default="")
    scopes = Column(JSON, nullable=False, default=list)  # allowed scopes
    redirect_uris = Column(JSON, nullable=False, default=list)
    trust_level = Column(
        Enum(TrustLevel, native_enum=False), nullable=False, default=TrustLevel.UNTRUSTED
    )
    created_by_user_id = Column(String(36), ForeignKey("users.id"), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)
    last_used_at = Column(DateTime(timezone=True), nullable=True)
    revoked_at = Column(DateTime(timezone=True), nullable=True)

    grants = relationship("ServiceGrant", back_populates="service_client")

    @property
    def is_revoked(self) -> bool:
        return self.revoked_at is not None


class ServiceGrant(Base):
    """A user's consent for one client, unique per (client, user)."""

    __tablename__ = "service_grants"
    __table_args__ = (
        UniqueConstraint("service_client_id", "user_id", name="uq_service_grant_client_user"),
    )

    id = Column(String(36), primary_key=True, default=_uuid)
    service_client_id = Column(
        String(36), ForeignKey("service_clients.id"), nullable=False, index=True
    )
    user_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    scopes = Column(JSON, nullable=False, default=list)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)
    last_used_at = Column(DateTime(timezone=True), nullable=True)
    revoked_at = Column(DateTime(timezone=True), nullable=True)

    service_client = relationship("ServiceClient", back_populates="grants")


class ServiceTokenAudit(Base):
    """One row per successful token exchange. Append-only."""

    __tablename__ = "service_token_audits"

    id = Column(String(36), primary_key=True, default=_uuid)
    service_client_id = Column(
        String(36), ForeignKey("service_clients.id"), nullable=False, index=True
    )
    user_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    scope = Column(Text, nullable=False)  # space-joined
    ip = Column(String(255), nullable=True)
    user_agent = Column(String(512), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)


class ServiceClientReview(Base):
    """Trust-level decision made by an administrator. Append-only."""

    __tablename__ = "service_client_reviews"

    id = Column(String(36), primary_key=True, default=_uuid)
    service_client_id = Column(String(36), ForeignKey("service_clients.id"), nullable=False)
    reviewed_by_user_id = Column(String(36), ForeignKey("users.id"), nullable=False)
    status = Column(Enum(TrustLevel, native_enum=False), nullable=False)
    notes = Column(Text, nullable=False, default="")
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
