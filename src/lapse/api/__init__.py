# Lapse HTTP API layer
# Created: 2026-03-02
#
# Versioned REST endpoints for the consent flow, token exchange, grants,
# developer apps and the scope-gated procedure gateway, mounted at /api/v1/.
