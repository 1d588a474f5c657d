# Tests for the client registry, grant store and token audit log.
# Created: 2026-03-02

import pytest

from lapse.db.database import Database
from lapse.db.models import ServiceGrant, TrustLevel, User
from lapse.oauth.audit import TokenAuditLog
from lapse.oauth.grants import GrantStore
from lapse.oauth.registry import ServiceClientRegistry
from lapse.security.secret_hasher import verify_secret

# ===================== ServiceClientRegistry =====================


class TestServiceClientRegistry:
    """Registration, authentication, rotation and revocation."""

    def test_create_formats(self, make_client):
        client, secret = make_client()
        assert client.client_id.startswith("svc_") and len(client.client_id) == 28
        assert secret.startswith("scs_") and len(secret) == 52
        assert secret not in client.client_secret_hash
        assert verify_secret(secret, client.client_secret_hash)
        assert client.trust_level == TrustLevel.UNTRUSTED

    def test_authenticate(self, database, make_client):
        client, secret = make_client()
        with database.session() as session:
            registry = ServiceClientRegistry(session)
            assert registry.authenticate(client.client_id, secret).id == client.id
            assert registry.authenticate(client.client_id, "scs_wrong") is None
            assert registry.authenticate("svc_unknown", secret) is None

    def test_revoked_client_fails_authentication(self, database, make_client):
        client, secret = make_client()
        with database.session() as session:
            registry = ServiceClientRegistry(session)
            registry.revoke(registry.get_active(client.client_id))
        with database.session() as session:
            registry = ServiceClientRegistry(session)
            assert registry.get_active(client.client_id) is None
            assert registry.authenticate(client.client_id, secret) is None

    def test_rotate_secret(self, database, make_client):
        client, old_secret = make_client()
        with database.session() as session:
            registry = ServiceClientRegistry(session)
            new_secret = registry.rotate_secret(registry.get_active(client.client_id))
        with database.session() as session:
            registry = ServiceClientRegistry(session)
            assert registry.authenticate(client.client_id, old_secret) is None
            assert registry.authenticate(client.client_id, new_secret) is not None

    def test_redirect_uris_normalised(self, make_client):
        client, _ = make_client(redirect_uris=[" https://app.example/cb ", ""])
        assert client.redirect_uris == ["https://app.example/cb"]

    def test_set_trust_level_records_review(self, database, make_client, make_user):
        admin = make_user()
        client, _ = make_client()
        with database.session() as session:
            registry = ServiceClientRegistry(session)
            review = registry.set_trust_level(
                registry.get_active(client.client_id), TrustLevel.TRUSTED, admin.id, "ok"
            )
            assert review.status == TrustLevel.TRUSTED
            assert review.reviewed_by_user_id == admin.id
        with database.session() as session:
            assert (
                ServiceClientRegistry(session).get_active(client.client_id).trust_level
                == TrustLevel.TRUSTED
            )


# ===================== GrantStore =====================


class TestGrantStore:
    """Atomic upsert, listing and revocation."""

    def test_upsert_creates(self, database, make_client, make_user):
        user = make_user()
        client, _ = make_client()
        with database.session() as session:
            grant = GrantStore(session).upsert(client.id, user.id, ["user:read"])
            assert grant.scopes == ["user:read"]
            assert grant.revoked_at is None

    def test_upsert_replaces_scopes_on_same_row(self, database, make_client, make_user):
        user = make_user()
        client, _ = make_client()
        with database.session() as session:
            first = GrantStore(session).upsert(client.id, user.id, ["user:read"])
        with database.session() as session:
            second = GrantStore(session).upsert(
                client.id, user.id, ["user:read", "timelapse:read"]
            )
        assert first.id == second.id
        assert second.scopes == ["user:read", "timelapse:read"]
        with database.session() as session:
            assert session.query(ServiceGrant).count() == 1

    def test_upsert_clears_revocation(self, database, make_client, make_user):
        user = make_user()
        client, _ = make_client()
        with database.session() as session:
            grant = GrantStore(session).upsert(client.id, user.id, ["user:read"])
        with database.session() as session:
            assert GrantStore(session).revoke(grant.id, user.id)
        with database.session() as session:
            store = GrantStore(session)
            assert store.find_active(client.id, user.id) is None
            again = store.upsert(client.id, user.id, ["user:read"])
            assert again.id == grant.id
            assert again.revoked_at is None
            assert store.find_active(client.id, user.id) is not None

    def test_revoke_only_by_owner(self, database, make_client, make_user):
        owner, stranger = make_user(), make_user()
        client, _ = make_client()
        with database.session() as session:
            grant = GrantStore(session).upsert(client.id, owner.id, ["user:read"])
        with database.session() as session:
            store = GrantStore(session)
            assert not store.revoke(grant.id, stranger.id)
            assert not store.revoke("missing", owner.id)
            assert store.find_active(client.id, owner.id) is not None

    def test_list_active_newest_first(self, database, make_client, make_user):
        user = make_user()
        older, _ = make_client(name="Older")
        newer, _ = make_client(name="Newer")
        with database.session() as session:
            GrantStore(session).upsert(older.id, user.id, ["user:read"])
        with database.session() as session:
            GrantStore(session).upsert(newer.id, user.id, ["user:read"])
        with database.session() as session:
            grants = GrantStore(session).list_active(user.id)
            assert [g.service_client.name for g in grants] == ["Newer", "Older"]

    def test_restrict_to_narrows_and_revokes(self, database, make_client, make_user):
        a, b = make_user(), make_user()
        client, _ = make_client()
        with database.session() as session:
            store = GrantStore(session)
            store.upsert(client.id, a.id, ["user:read", "timelapse:read"])
            store.upsert(client.id, b.id, ["timelapse:read"])
        with database.session() as session:
            assert GrantStore(session).restrict_to(client.id, ["user:read"]) == 2
        with database.session() as session:
            store = GrantStore(session)
            assert store.find_active(client.id, a.id).scopes == ["user:read"]
            assert store.find_active(client.id, b.id) is None

    def test_upsert_unsupported_dialect(self, monkeypatch, database, make_client, make_user):
        user = make_user()
        client, _ = make_client()
        with database.session() as session:
            monkeypatch.setattr(session.get_bind().dialect, "name", "mysql")
            with pytest.raises(RuntimeError, match="not supported"):
                GrantStore(session).upsert(client.id, user.id, ["user:read"])


# ===================== TokenAuditLog =====================


class TestTokenAuditLog:
    def test_append_and_list(self, database, make_client, make_user):
        user = make_user()
        client, _ = make_client()
        with database.session() as session:
            log = TokenAuditLog(session)
            log.append(client.id, user.id, ["user:read", "timelapse:read"], "10.0.0.1", "bot/1.0")
        with database.session() as session:
            records = TokenAuditLog(session).list_for_client(client.id)
            assert len(records) == 1
            assert records[0].scope == "user:read timelapse:read"
            assert records[0].ip == "10.0.0.1"
            assert records[0].user_agent == "bot/1.0"


def test_database_session_rolls_back_on_error():
    db = Database("sqlite://")
    db.create_all()

    with pytest.raises(RuntimeError):
        with db.session() as session:
            session.add(User(email="x@example.com"))
            session.flush()
            raise RuntimeError("boom")
    with db.session() as session:
        assert session.query(User).count() == 0
    db.dispose()
