# Service client registry: lookup, authentication, registration, rotation.
# Created: 2026-03-02
#
# Client ids look like svc_<24 hex>, secrets like scs_<48 hex>.  Only scrypt
# hashes of secrets are stored; the plaintext is returned once at creation
# or rotation (like GitHub PATs).

from __future__ import annotations

import logging
import secrets
from datetime import UTC, datetime

from sqlalchemy import select
from sqlalchemy.orm import Session

from lapse.db.models import ServiceClient, ServiceClientReview, TrustLevel
from lapse.security.secret_hasher import hash_secret, verify_secret

logger = logging.getLogger(__name__)

_CLIENT_ID_PREFIX = "svc_"
_CLIENT_SECRET_PREFIX = "scs_"


def generate_client_id() -> str:
    return f"{_CLIENT_ID_PREFIX}{secrets.token_hex(12)}"


def generate_client_secret() -> str:
    return f"{_CLIENT_SECRET_PREFIX}{secrets.token_hex(24)}"


def normalize_redirect_uris(raw: list[str]) -> list[str]:
    return [uri.strip() for uri in raw if uri.strip()]


class ServiceClientRegistry:
    """Read/write access to registered service clients within one session."""

    def __init__(self, session: Session):
        self.session = session

    def get_active(self, client_id: str) -> ServiceClient | None:
        """Find a non-revoked client by its public ``client_id``."""
        stmt = select(ServiceClient).where(
            ServiceClient.client_id == client_id,
            ServiceClient.revoked_at.is_(None),
        )
        return self.session.scalars(stmt).first()

    def get_active_by_pk(self, pk: str) -> ServiceClient | None:
        client = self.session.get(ServiceClient, pk)
        if client is None or client.is_revoked:
            return None
        return client

    def authenticate(self, client_id: str, client_secret: str) -> ServiceClient | None:
        """Return the client if the secret matches, else None.

        Revoked and unknown clients fail the same way as a bad secret.
        """
        client = self.get_active(client_id)
        if client is None:
            logger.info("Client authentication failed: unknown client %s", client_id)
            return None
        if not verify_secret(client_secret, client.client_secret_hash):
            logger.info("Client authentication failed: bad secret for %s", client_id)
            return None
        return client

    def list_for_owner(self, user_id: str) -> list[ServiceClient]:
        stmt = (
            select(ServiceClient)
            .where(
                ServiceClient.created_by_user_id == user_id,
                ServiceClient.revoked_at.is_(None),
            )
            .order_by(ServiceClient.created_at.desc())
        )
        return list(self.session.scalars(stmt))

    def get_owned(self, pk: str, user_id: str) -> ServiceClient | None:
        client = self.get_active_by_pk(pk)
        if client is None or client.created_by_user_id != user_id:
            return None
        return client

    def create(
        self,
        name: str,
        scopes: list[str],
        redirect_uris: list[str],
        created_by_user_id: str | None = None,
        description: str = "",
        homepage_url: str = "",
        icon_url: str = "",
    ) -> tuple[ServiceClient, str]:
        """Register a client. Returns (client, plaintext_secret)."""
        plaintext = generate_client_secret()
        client = ServiceClient(
            client_id=generate_client_id(),
            client_secret_hash=hash_secret(plaintext),
            name=name,
            description=description,
            homepage_url=homepage_url,
            icon_url=icon_url,
            scopes=list(scopes),
            redirect_uris=normalize_redirect_uris(redirect_uris),
            created_by_user_id=created_by_user_id,
        )
        self.session.add(client)
        self.session.flush()
        logger.info("Registered service client %s (%s)", client.client_id, name)
        return client, plaintext

    def rotate_secret(self, client: ServiceClient) -> str:
        plaintext = generate_client_secret()
        client.client_secret_hash = hash_secret(plaintext)
        self.session.flush()
        logger.info("Rotated secret for service client %s", client.client_id)
        return plaintext

    def update(self, client: ServiceClient, **fields) -> ServiceClient:
        for key, value in fields.items():
            if value is not None:
                setattr(client, key, value)
        self.session.flush()
        return client

    def revoke(self, client: ServiceClient) -> None:
        client.revoked_at = datetime.now(UTC)
        self.session.flush()
        logger.info("Revoked service client %s", client.client_id)

    def set_trust_level(
        self,
        client: ServiceClient,
        trust_level: TrustLevel,
        reviewed_by_user_id: str,
        notes: str = "",
    ) -> ServiceClientReview:
        client.trust_level = trust_level
        review = ServiceClientReview(
            service_client_id=client.id,
            reviewed_by_user_id=reviewed_by_user_id,
            status=trust_level,
            notes=notes,
        )
        self.session.add(review)
        self.session.flush()
        logger.info(
            "Service client %s marked %s by %s",
            client.client_id,
            trust_level.value,
            reviewed_by_user_id,
        )
        return review

    def touch(self, client: ServiceClient) -> None:
        client.last_used_at = datetime.now(UTC)
        self.session.flush()
