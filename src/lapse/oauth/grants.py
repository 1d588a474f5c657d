# Grant store: per-(client, user) consent records.
# Created: 2026-03-02
#
# Create-or-update is one INSERT ... ON CONFLICT DO UPDATE against the
# (service_client_id, user_id) unique constraint, so concurrent approvals
# for the same pair land on a single row without an application lock.
#
# Revoking a grant does not invalidate delegated tokens already issued
# from it; those expire on their own (900 s by default).

from __future__ import annotations

import logging
from datetime import UTC, datetime

from sqlalchemy import select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.orm import Session, joinedload

from lapse.db.models import ServiceGrant

logger = logging.getLogger(__name__)

_UPSERT_DIALECTS = {
    "sqlite": sqlite.insert,
    "postgresql": postgresql.insert,
}


class GrantStore:
    """Read/write access to service grants within one session."""

    def __init__(self, session: Session):
        self.session = session

    def find_active(self, service_client_id: str, user_id: str) -> ServiceGrant | None:
        stmt = select(ServiceGrant).where(
            ServiceGrant.service_client_id == service_client_id,
            ServiceGrant.user_id == user_id,
            ServiceGrant.revoked_at.is_(None),
        )
        return self.session.scalars(stmt).first()

    def upsert(self, service_client_id: str, user_id: str, scopes: list[str]) -> ServiceGrant:
        """Create the grant, or replace its scopes and clear ``revoked_at``."""
        dialect = self.session.get_bind().dialect.name
        insert = _UPSERT_DIALECTS.get(dialect)
        if insert is None:
            raise RuntimeError(f"Grant upsert is not supported on the {dialect!r} dialect")

        now = datetime.now(UTC)
        stmt = insert(ServiceGrant).values(
            service_client_id=service_client_id,
            user_id=user_id,
            scopes=list(scopes),
            created_at=now,
            updated_at=now,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[ServiceGrant.service_client_id, ServiceGrant.user_id],
            set_={
                "scopes": stmt.excluded.scopes,
                "updated_at": stmt.excluded.updated_at,
                "revoked_at": None,
            },
        ).returning(ServiceGrant.id)
        grant_id = self.session.execute(stmt).scalar_one()

        grant = self.session.scalars(
            select(ServiceGrant)
            .where(ServiceGrant.id == grant_id)
            .execution_options(populate_existing=True)
        ).one()
        logger.info(
            "Grant %s for client %s / user %s now covers %s",
            grant.id,
            service_client_id,
            user_id,
            " ".join(grant.scopes),
        )
        return grant

    def list_active(self, user_id: str) -> list[ServiceGrant]:
        """Active grants for ``user_id``, most recently updated first."""
        stmt = (
            select(ServiceGrant)
            .options(joinedload(ServiceGrant.service_client))
            .where(ServiceGrant.user_id == user_id, ServiceGrant.revoked_at.is_(None))
            .order_by(ServiceGrant.updated_at.desc())
        )
        return list(self.session.scalars(stmt))

    def revoke(self, grant_id: str, user_id: str) -> bool:
        """Revoke a grant owned by ``user_id``. Returns False if not found."""
        stmt = select(ServiceGrant).where(
            ServiceGrant.id == grant_id,
            ServiceGrant.user_id == user_id,
        )
        grant = self.session.scalars(stmt).first()
        if grant is None:
            return False
        grant.revoked_at = datetime.now(UTC)
        self.session.flush()
        logger.info("Grant %s revoked by user %s", grant_id, user_id)
        return True

    def restrict_to(self, service_client_id: str, allowed: list[str]) -> int:
        """Drop scopes a client is no longer allowed from its active grants.

        Grants left with no scopes are revoked.  Returns the number of
        grants changed.
        """
        stmt = select(ServiceGrant).where(
            ServiceGrant.service_client_id == service_client_id,
            ServiceGrant.revoked_at.is_(None),
        )
        changed = 0
        for grant in self.session.scalars(stmt):
            kept = [s for s in grant.scopes if s in allowed]
            if kept == list(grant.scopes):
                continue
            if kept:
                grant.scopes = kept
            else:
                grant.revoked_at = datetime.now(UTC)
            changed += 1
        if changed:
            self.session.flush()
            logger.info("Narrowed %d grant(s) for client %s", changed, service_client_id)
        return changed

    def touch(self, grant: ServiceGrant) -> None:
        grant.last_used_at = datetime.now(UTC)
        self.session.flush()
