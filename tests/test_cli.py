# Tests for the lapse command-line entry point.
# Created: 2026-03-09

import pytest
from sqlalchemy import select

from lapse.__main__ import build_parser, main
from lapse.db.models import PermissionLevel, ServiceClient, User
from lapse.oauth.registry import ServiceClientRegistry


@pytest.fixture
def cli_db(database, monkeypatch):
    """Keep the in-memory database alive across main()'s reset_database()."""
    monkeypatch.setattr("lapse.__main__.get_database", lambda: database)
    monkeypatch.setattr("lapse.db.database.reset_database", lambda: None)
    return database


def _run(argv) -> int:
    with pytest.raises(SystemExit) as exc:
        main(argv)
    return exc.value.code


class TestParser:
    def test_requires_command(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args([])

    def test_serve_defaults(self):
        args = build_parser().parse_args(["serve"])
        assert args.host is None
        assert args.port is None
        assert args.dev is False

    def test_repeatable_scopes(self):
        args = build_parser().parse_args(
            ["create-client", "--name", "Bot", "--scope", "user:read", "--scope", "timelapse:read"]
        )
        assert args.scope == ["user:read", "timelapse:read"]

    def test_promote_level_choices(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args(["promote", "a@example.com", "--level", "GOD"])


class TestCommands:
    def test_create_client(self, cli_db, capsys):
        code = _run(
            [
                "create-client",
                "--name",
                "Bot",
                "--scope",
                "user:read",
                "--redirect-uri",
                "https://bot.example/cb",
                "--owner-email",
                "owner@example.com",
            ]
        )
        assert code == 0
        out = capsys.readouterr().out
        assert "client_id:     svc_" in out
        assert "client_secret: scs_" in out

        with cli_db.session() as session:
            client = session.scalars(select(ServiceClient)).one()
            assert client.scopes == ["user:read"]
            assert client.redirect_uris == ["https://bot.example/cb"]
            owner = session.get(User, client.created_by_user_id)
            assert owner.email == "owner@example.com"

    def test_create_client_unknown_scope(self, cli_db):
        assert _run(["create-client", "--name", "Bot", "--scope", "admin"]) == 2

    def test_create_client_needs_scope(self, cli_db):
        assert _run(["create-client", "--name", "Bot"]) == 2

    def test_rotate_secret(self, cli_db, make_client, capsys):
        client, old_secret = make_client()
        assert _run(["rotate-secret", client.client_id]) == 0
        new_secret = capsys.readouterr().out.split("client_secret: ")[1].strip()
        with cli_db.session() as session:
            registry = ServiceClientRegistry(session)
            assert registry.authenticate(client.client_id, old_secret) is None
            assert registry.authenticate(client.client_id, new_secret) is not None

    def test_rotate_unknown_client(self, cli_db):
        assert _run(["rotate-secret", "svc_missing"]) == 1

    def test_issue_token(self, cli_db, issuer, capsys):
        assert _run(["issue-token", "dev@example.com"]) == 0
        token = capsys.readouterr().out.strip()
        claims = issuer.verify_primary(token)
        assert claims.email == "dev@example.com"

    def test_promote(self, cli_db, make_user):
        user = make_user(email="boss@example.com")
        assert _run(["promote", "boss@example.com", "--level", "ROOT"]) == 0
        with cli_db.session() as session:
            assert session.get(User, user.id).permission_level == PermissionLevel.ROOT

    def test_promote_unknown_user(self, cli_db):
        assert _run(["promote", "ghost@example.com"]) == 1
