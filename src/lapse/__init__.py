# Lapse delegated-access core.
# Created: 2026-03-02
#
# Primary user tokens, on-behalf-of (delegated) tokens for service clients,
# the consent and token-exchange flows, and the scope-gated REST gateway.

__all__ = ["__version__"]

__version__ = "0.4.0"
