"""Lapse entry point.

Changes:
  - 2026-03-09: Added ``promote`` to set a user's permission level.
  - 2026-03-04: Added ``issue-token`` for minting development primary tokens.
  - 2026-03-02: Subcommands ``serve``, ``init-db``, ``create-client``, ``rotate-secret``.
"""

import argparse
import logging
from importlib.metadata import PackageNotFoundError
from importlib.metadata import version as get_version

from sqlalchemy import select

from lapse.config import get_settings
from lapse.db.database import get_database
from lapse.db.models import PermissionLevel, User
from lapse.logging_setup import setup_logging
from lapse.oauth.registry import ServiceClientRegistry
from lapse.scopes import dedupe_scopes, get_scope_catalog, normalize_scopes
from lapse.security.tokens import get_token_issuer

logger = logging.getLogger(__name__)


def _package_version() -> str:
    try:
        return get_version("lapse")
    except PackageNotFoundError:
        from lapse import __version__

        return __version__


def _find_or_create_user(session, email: str) -> User:
    user = session.scalars(select(User).where(User.email == email)).first()
    if user is None:
        user = User(email=email)
        session.add(user)
        session.flush()
        logger.info("Created user %s (%s)", user.id, email)
    return user


def cmd_serve(args) -> int:
    from lapse.api.serve import run_api_server

    settings = get_settings()
    host = args.host or settings.web_host
    port = args.port or settings.web_port
    run_api_server(host=host, port=port, dev=args.dev)
    return 0


def cmd_init_db(args) -> int:
    get_database().create_all()
    return 0


def cmd_create_client(args) -> int:
    scopes = dedupe_scopes(normalize_scopes(args.scope))
    unknown = get_scope_catalog().unknown(scopes)
    if unknown:
        logger.error("Unknown scopes: %s", ", ".join(unknown))
        return 2
    if not scopes:
        logger.error("At least one --scope is required")
        return 2

    database = get_database()
    database.create_all()
    with database.session() as session:
        owner_id = None
        if args.owner_email:
            owner_id = _find_or_create_user(session, args.owner_email).id
        client, secret = ServiceClientRegistry(session).create(
            name=args.name,
            scopes=scopes,
            redirect_uris=args.redirect_uri,
            created_by_user_id=owner_id,
            description=args.description,
        )
        print(f"client_id:     {client.client_id}")
        print(f"client_secret: {secret}")
        print("The secret is shown only once. Store it now.")
    return 0


def cmd_rotate_secret(args) -> int:
    with get_database().session() as session:
        registry = ServiceClientRegistry(session)
        client = registry.get_active(args.client_id)
        if client is None:
            logger.error("No active client %s", args.client_id)
            return 1
        print(f"client_secret: {registry.rotate_secret(client)}")
    return 0


def cmd_issue_token(args) -> int:
    database = get_database()
    database.create_all()
    with database.session() as session:
        user = _find_or_create_user(session, args.email)
        print(get_token_issuer().issue_primary(user.id, user.email))
    return 0


def cmd_promote(args) -> int:
    with get_database().session() as session:
        user = session.scalars(select(User).where(User.email == args.email)).first()
        if user is None:
            logger.error("No user with email %s", args.email)
            return 1
        user.permission_level = PermissionLevel(args.level)
        logger.info("%s is now %s", args.email, args.level)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="lapse",
        description="Lapse delegated-access server",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  lapse serve                                  Start the API server
  lapse init-db                                Create database tables
  lapse create-client --name Bot --scope timelapse:read \\
        --redirect-uri https://bot.example/callback
  lapse rotate-secret svc_0123456789abcdef01234567
  lapse issue-token dev@example.com            Mint a primary token
  lapse promote admin@example.com --level ADMIN
""",
    )
    parser.add_argument(
        "--version",
        "-v",
        action="version",
        version=f"%(prog)s {_package_version()}",
    )
    parser.add_argument("--log-level", default=None, help="Override LAPSE_LOG_LEVEL")

    sub = parser.add_subparsers(dest="command", required=True)

    serve = sub.add_parser("serve", help="Start the API server")
    serve.add_argument("--host", type=str, default=None, help="Host to bind (default: config)")
    serve.add_argument("--port", "-p", type=int, default=None, help="Port (default: config)")
    serve.add_argument("--dev", action="store_true", help="Development mode with auto-reload")
    serve.set_defaults(func=cmd_serve)

    init_db = sub.add_parser("init-db", help="Create database tables")
    init_db.set_defaults(func=cmd_init_db)

    create = sub.add_parser("create-client", help="Register a service client")
    create.add_argument("--name", required=True)
    create.add_argument("--description", default="")
    create.add_argument("--scope", action="append", default=[], help="Allowed scope (repeatable)")
    create.add_argument(
        "--redirect-uri", action="append", default=[], help="Redirect URI (repeatable)"
    )
    create.add_argument("--owner-email", default=None)
    create.set_defaults(func=cmd_create_client)

    rotate = sub.add_parser("rotate-secret", help="Issue a new client secret")
    rotate.add_argument("client_id")
    rotate.set_defaults(func=cmd_rotate_secret)

    issue = sub.add_parser("issue-token", help="Mint a primary token (development only)")
    issue.add_argument("email")
    issue.set_defaults(func=cmd_issue_token)

    promote = sub.add_parser("promote", help="Set a user's permission level")
    promote.add_argument("email")
    promote.add_argument("--level", choices=[p.value for p in PermissionLevel], default="ADMIN")
    promote.set_defaults(func=cmd_promote)

    return parser


def main(argv: list[str] | None = None) -> None:
    """Main entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    setup_logging(level=args.log_level or get_settings().log_level)

    try:
        exit_code = args.func(args)
    except KeyboardInterrupt:
        logger.info("Lapse stopped.")
        exit_code = 0
    finally:
        from lapse.db.database import reset_database

        reset_database()
    raise SystemExit(exit_code)


if __name__ == "__main__":
    main()
