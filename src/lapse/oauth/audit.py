# Token exchange audit log.
# Created: 2026-03-02
#
# One row per successful token exchange.  Rows are never updated or
# deleted here; concurrent writers need no ordering between them.

from __future__ import annotations

import logging

from sqlalchemy import select
from sqlalchemy.orm import Session

from lapse.db.models import ServiceTokenAudit

logger = logging.getLogger("audit")


class TokenAuditLog:
    """Append-only access to ``service_token_audits``."""

    def __init__(self, session: Session):
        self.session = session

    def append(
        self,
        service_client_id: str,
        user_id: str,
        scopes: list[str],
        ip: str | None = None,
        user_agent: str | None = None,
    ) -> ServiceTokenAudit:
        record = ServiceTokenAudit(
            service_client_id=service_client_id,
            user_id=user_id,
            scope=" ".join(scopes),
            ip=ip,
            user_agent=user_agent,
        )
        self.session.add(record)
        self.session.flush()
        logger.info(
            "token_exchange client=%s user=%s scope=%r ip=%s",
            service_client_id,
            user_id,
            record.scope,
            ip or "-",
        )
        return record

    def list_for_client(self, service_client_id: str, limit: int = 100) -> list[ServiceTokenAudit]:
        stmt = (
            select(ServiceTokenAudit)
            .where(ServiceTokenAudit.service_client_id == service_client_id)
            .order_by(ServiceTokenAudit.created_at.desc())
            .limit(limit)
        )
        return list(self.session.scalars(stmt))
