# Delegated-access core: client registry, grants, consent, token exchange.
# Created: 2026-03-02

from lapse.oauth.audit import TokenAuditLog
from lapse.oauth.consent import (
    AuthorizationRequest,
    ConsentFlow,
    ConsentOutcome,
    ConsentState,
)
from lapse.oauth.errors import ConsentError, OAuthError, ProtocolError, ResultCode
from lapse.oauth.exchange import ClientCredentials, TokenExchange, parse_basic_auth
from lapse.oauth.grants import GrantStore
from lapse.oauth.registry import ServiceClientRegistry

__all__ = [
    "AuthorizationRequest",
    "ClientCredentials",
    "ConsentError",
    "ConsentFlow",
    "ConsentOutcome",
    "ConsentState",
    "GrantStore",
    "OAuthError",
    "ProtocolError",
    "ResultCode",
    "ServiceClientRegistry",
    "TokenAuditLog",
    "TokenExchange",
    "parse_basic_auth",
]
