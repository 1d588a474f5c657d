"""Process-wide configuration.

Settings are read once from ``LAPSE_*`` environment variables (and an optional
``.env`` file) and cached behind :func:`get_settings`.  Tests swap them out
with :func:`reset_settings`.
"""

from __future__ import annotations

import logging
import secrets
from pathlib import Path

from pydantic import SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)


def get_config_dir() -> Path:
    """Return ``~/.lapse``, creating it if needed."""
    path = Path.home() / ".lapse"
    path.mkdir(parents=True, exist_ok=True)
    return path


def _default_database_url() -> str:
    return f"sqlite:///{get_config_dir() / 'lapse.db'}"


class Settings(BaseSettings):
    """Runtime configuration for the delegated-access core."""

    model_config = SettingsConfigDict(env_prefix="LAPSE_", env_file=".env", extra="ignore")

    # Tokens
    jwt_secret: SecretStr = SecretStr("")
    jwt_algorithm: str = "HS256"
    primary_token_ttl_days: int = 30
    delegated_token_ttl_seconds: int = 900

    # Storage
    database_url: str = ""
    db_echo: bool = False

    # HTTP
    web_host: str = "127.0.0.1"
    web_port: int = 8888
    api_cors_allowed_origins: list[str] = []
    auth_cookie_name: str = "lapse-auth"

    log_level: str = "INFO"

    @field_validator("jwt_algorithm")
    @classmethod
    def _hmac_only(cls, value: str) -> str:
        if value not in ("HS256", "HS384", "HS512"):
            raise ValueError("jwt_algorithm must be one of HS256, HS384, HS512")
        return value

    def resolved_database_url(self) -> str:
        return self.database_url or _default_database_url()

    def resolved_jwt_secret(self) -> str:
        """Return the signing secret, generating an ephemeral one if unset."""
        value = self.jwt_secret.get_secret_value()
        if not value:
            logger.warning(
                "LAPSE_JWT_SECRET is not set; using an ephemeral secret. "
                "Issued tokens will not survive a restart."
            )
            value = secrets.token_urlsafe(48)
            self.jwt_secret = SecretStr(value)
        elif len(value) < 32:
            logger.warning("LAPSE_JWT_SECRET is shorter than 32 characters")
        return value


# Singleton
_settings: Settings | None = None


def get_settings() -> Settings:
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def reset_settings() -> None:
    """Reset singleton (for testing)."""
    global _settings
    _settings = None
