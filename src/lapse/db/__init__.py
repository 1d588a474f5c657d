# Persistence layer.
# Created: 2026-03-02

from lapse.db.database import Database, get_database, reset_database
from lapse.db.models import (
    Base,
    PermissionLevel,
    ServiceClient,
    ServiceClientReview,
    ServiceGrant,
    ServiceTokenAudit,
    TrustLevel,
    User,
)

__all__ = [
    "Base",
    "Database",
    "PermissionLevel",
    "ServiceClient",
    "ServiceClientReview",
    "ServiceGrant",
    "ServiceTokenAudit",
    "TrustLevel",
    "User",
    "get_database",
    "reset_database",
]
