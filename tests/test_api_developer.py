# Tests for developer app management and admin trust review.
# Created: 2026-03-02

import pytest

from lapse.db.models import PermissionLevel, ServiceClientReview
from lapse.oauth.audit import TokenAuditLog
from lapse.oauth.grants import GrantStore
from lapse.oauth.registry import ServiceClientRegistry
from lapse.security.secret_hasher import verify_secret


def bearer(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def dev(make_user):
    return make_user()


@pytest.fixture
def dev_headers(issuer, dev):
    return bearer(issuer.issue_primary(dev.id, dev.email))


def _app_payload(**overrides):
    payload = {
        "name": "Clock Bot",
        "description": "Posts your timelapses",
        "homepageUrl": "https://clock.example",
        "redirectUris": ["https://clock.example/callback"],
        "scopes": ["timelapse:read", "user:read"],
    }
    payload.update(overrides)
    return payload


@pytest.fixture
def created(client, dev_headers):
    resp = client.post("/api/v1/developer/apps", json=_app_payload(), headers=dev_headers)
    assert resp.status_code == 201
    return resp.json()["data"]


# ===================== Registration =====================


class TestCreateApp:
    def test_create_returns_secret_once(self, client, dev_headers, created, database):
        app = created["app"]
        assert app["clientId"].startswith("svc_")
        assert app["trustLevel"] == "UNTRUSTED"
        assert created["clientSecret"].startswith("scs_")

        with database.session() as session:
            stored = ServiceClientRegistry(session).get_active(app["clientId"])
            assert verify_secret(created["clientSecret"], stored.client_secret_hash)

        listed = client.get("/api/v1/developer/apps", headers=dev_headers).json()
        assert [a["id"] for a in listed["data"]["apps"]] == [app["id"]]
        assert "clientSecret" not in listed["data"]["apps"][0]

    def test_requires_sign_in(self, client):
        assert client.post("/api/v1/developer/apps", json=_app_payload()).status_code == 401

    def test_unknown_scope(self, client, dev_headers):
        resp = client.post(
            "/api/v1/developer/apps", json=_app_payload(scopes=["admin"]), headers=dev_headers
        )
        assert resp.status_code == 400
        assert resp.json()["message"] == "Unknown scopes: admin"

    def test_redirect_must_match_homepage(self, client, dev_headers):
        resp = client.post(
            "/api/v1/developer/apps",
            json=_app_payload(redirectUris=["https://elsewhere.example/cb"]),
            headers=dev_headers,
        )
        assert resp.status_code == 400
        assert resp.json()["message"] == "Redirect URIs must match the homepage domain."

    @pytest.mark.parametrize(
        "override",
        [
            {"name": "x"},
            {"homepageUrl": "ftp://clock.example"},
            {"redirectUris": []},
            {"scopes": []},
        ],
    )
    def test_invalid_payload(self, client, dev_headers, override):
        resp = client.post(
            "/api/v1/developer/apps", json=_app_payload(**override), headers=dev_headers
        )
        assert resp.status_code == 400
        assert resp.json()["message"] == "Invalid app payload."


# ===================== Management =====================


class TestManageApp:
    def test_update_narrows_grants(self, client, dev_headers, created, database, make_user):
        app = created["app"]
        user = make_user()
        with database.session() as session:
            GrantStore(session).upsert(app["id"], user.id, ["timelapse:read", "user:read"])

        resp = client.patch(
            f"/api/v1/developer/apps/{app['id']}",
            json={"scopes": ["user:read"], "name": "Clock Bot 2"},
            headers=dev_headers,
        )
        assert resp.status_code == 200
        assert resp.json()["data"]["app"]["scopes"] == ["user:read"]
        assert resp.json()["data"]["app"]["name"] == "Clock Bot 2"

        with database.session() as session:
            assert GrantStore(session).find_active(app["id"], user.id).scopes == ["user:read"]

    def test_update_checks_redirect_host(self, client, dev_headers, created):
        resp = client.patch(
            f"/api/v1/developer/apps/{created['app']['id']}",
            json={"homepageUrl": "https://moved.example"},
            headers=dev_headers,
        )
        assert resp.status_code == 400

    def test_other_developer_gets_404(self, client, issuer, make_user, created):
        other = make_user()
        headers = bearer(issuer.issue_primary(other.id, other.email))
        app_id = created["app"]["id"]
        assert client.patch(
            f"/api/v1/developer/apps/{app_id}", json={"name": "Mine"}, headers=headers
        ).status_code == 404
        assert client.delete(f"/api/v1/developer/apps/{app_id}", headers=headers).status_code == 404
        assert client.post(
            f"/api/v1/developer/apps/{app_id}/rotate-secret", headers=headers
        ).status_code == 404

    def test_rotate_secret(self, client, dev_headers, created, database):
        app = created["app"]
        resp = client.post(f"/api/v1/developer/apps/{app['id']}/rotate-secret", headers=dev_headers)
        assert resp.status_code == 200
        new_secret = resp.json()["data"]["clientSecret"]
        assert new_secret != created["clientSecret"]
        with database.session() as session:
            registry = ServiceClientRegistry(session)
            assert registry.authenticate(app["clientId"], created["clientSecret"]) is None
            assert registry.authenticate(app["clientId"], new_secret) is not None

    def test_delete_revokes(self, client, dev_headers, created, database):
        app = created["app"]
        resp = client.delete(f"/api/v1/developer/apps/{app['id']}", headers=dev_headers)
        assert resp.status_code == 200
        with database.session() as session:
            assert ServiceClientRegistry(session).get_active(app["clientId"]) is None
        listed = client.get("/api/v1/developer/apps", headers=dev_headers).json()
        assert listed["data"]["apps"] == []

    def test_audits(self, client, dev_headers, created, database, make_user):
        app = created["app"]
        user = make_user()
        with database.session() as session:
            TokenAuditLog(session).append(app["id"], user.id, ["user:read"], ip="1.1.1.1")
        resp = client.get(f"/api/v1/developer/apps/{app['id']}/audits", headers=dev_headers)
        assert resp.status_code == 200
        audits = resp.json()["data"]["audits"]
        assert len(audits) == 1
        assert audits[0]["userId"] == user.id
        assert audits[0]["scope"] == "user:read"
        assert audits[0]["ip"] == "1.1.1.1"


# ===================== Admin review =====================


class TestAdminReview:
    def test_requires_admin(self, client, dev_headers, created):
        resp = client.patch(
            f"/api/v1/admin/apps/{created['app']['id']}",
            json={"trustLevel": "TRUSTED"},
            headers=dev_headers,
        )
        assert resp.status_code == 403
        assert resp.json()["message"] == "Admin access required."

    @pytest.mark.parametrize("level", [PermissionLevel.ADMIN, PermissionLevel.ROOT])
    def test_admin_sets_trust(self, client, issuer, make_user, created, database, level):
        admin = make_user(level=level)
        resp = client.patch(
            f"/api/v1/admin/apps/{created['app']['id']}",
            json={"trustLevel": "TRUSTED", "notes": "Looks fine"},
            headers=bearer(issuer.issue_primary(admin.id, admin.email)),
        )
        assert resp.status_code == 200
        assert resp.json() == {"ok": True, "data": {"trustLevel": "TRUSTED"}}
        with database.session() as session:
            review = session.query(ServiceClientReview).one()
            assert review.reviewed_by_user_id == admin.id
            assert review.notes == "Looks fine"

    def test_unknown_app(self, client, issuer, make_user):
        admin = make_user(level=PermissionLevel.ADMIN)
        resp = client.patch(
            "/api/v1/admin/apps/missing",
            json={"trustLevel": "TRUSTED"},
            headers=bearer(issuer.issue_primary(admin.id, admin.email)),
        )
        assert resp.status_code == 404

    def test_invalid_level(self, client, issuer, make_user, created):
        admin = make_user(level=PermissionLevel.ADMIN)
        resp = client.patch(
            f"/api/v1/admin/apps/{created['app']['id']}",
            json={"trustLevel": "SUPREME"},
            headers=bearer(issuer.issue_primary(admin.id, admin.email)),
        )
        assert resp.status_code == 400
