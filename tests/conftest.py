# Shared fixtures: in-memory database, token issuer, and record factories.
# Created: 2026-03-02

import uuid

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from lapse.config import Settings
from lapse.db.database import Database
from lapse.db.models import PermissionLevel, User
from lapse.oauth.registry import ServiceClientRegistry
from lapse.scopes import get_scope_catalog
from lapse.security.tokens import TokenIssuer

TEST_SECRET = "test-secret-for-lapse-0123456789-abcdefghijklmnop"
CALLBACK = "https://app.example/callback"


@pytest.fixture(autouse=True)
def settings(monkeypatch):
    import lapse.config as mod

    settings = Settings(_env_file=None, jwt_secret=TEST_SECRET, database_url="sqlite://")
    monkeypatch.setattr(mod, "_settings", settings)
    return settings


@pytest.fixture
def database(monkeypatch):
    import lapse.db.database as mod

    db = Database("sqlite://")
    db.create_all()
    monkeypatch.setattr(mod, "_database", db)
    yield db
    db.dispose()


@pytest.fixture
def issuer(monkeypatch):
    import lapse.security.tokens as mod

    issuer = TokenIssuer(TEST_SECRET)
    monkeypatch.setattr(mod, "_issuer", issuer)
    return issuer


@pytest.fixture
def catalog():
    return get_scope_catalog()


@pytest.fixture
def make_user(database):
    def _make(email: str | None = None, level: PermissionLevel = PermissionLevel.USER) -> User:
        with database.session() as session:
            user = User(
                email=email or f"{uuid.uuid4().hex[:10]}@example.com",
                permission_level=level,
            )
            session.add(user)
            session.flush()
            return user

    return _make


@pytest.fixture
def make_client(database):
    """Register a service client; returns (client, plaintext_secret)."""

    def _make(
        scopes=("timelapse:read", "user:read"),
        redirect_uris=(CALLBACK,),
        name="Test App",
        owner_id: str | None = None,
    ):
        with database.session() as session:
            return ServiceClientRegistry(session).create(
                name=name,
                scopes=list(scopes),
                redirect_uris=list(redirect_uris),
                created_by_user_id=owner_id,
                homepage_url="https://app.example",
            )

    return _make


@pytest.fixture
def api_app(database, issuer):
    from lapse.api.v1 import mount_v1_routers

    app = FastAPI()
    mount_v1_routers(app)
    return app


@pytest.fixture
def client(api_app):
    return TestClient(api_app)
