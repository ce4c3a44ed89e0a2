#!/usr/bin/env python3
"""
SSO -- Operator command line.

Usage:
  python main.py serve
  python main.py migrate
  python main.py add-app --id 1 --name web --secret "long-random-secret"
  python main.py set-admin --user-id 7
  python main.py set-admin --user-id 7 --revoke
  python main.py --config ./config/local.env serve

Configuration is read from environment variables and an env file (see
core/config.py). --config overrides the CONFIG_PATH variable.
"""

import argparse
import logging
import os
import sys

from pydantic import ValidationError

from auth.errors import StorageError
from auth.models import App
from auth.store import SqlStore
from core.config import Settings, get_settings
from core.logging_config import setup_logging

logger = logging.getLogger("sso.cli")


def _serve(settings: Settings, args: argparse.Namespace) -> int:
    import uvicorn

    from api.main import app

    logger.info("starting HTTP server on %s:%d", settings.http_host, settings.http_port)
    # log_config=None keeps uvicorn on the handlers set up by setup_logging().
    uvicorn.run(app, host=settings.http_host, port=settings.http_port, log_config=None)
    logger.info("application stopped")
    return 0


def _migrate(settings: Settings, args: argparse.Namespace) -> int:
    store = SqlStore(settings.storage_path, auto_migrate=False)
    try:
        applied = store.migrate()
    finally:
        store.close()
    print("migrations applied" if applied else "no migrations to apply")
    return 0


def _add_app(settings: Settings, args: argparse.Namespace) -> int:
    store = SqlStore(settings.storage_path)
    try:
        store.save_app(App(id=args.id, name=args.name, secret=args.secret))
    except StorageError as e:
        print(f"  [!] {e}", file=sys.stderr)
        return 1
    finally:
        store.close()
    print(f"app {args.id} ({args.name}) added")
    return 0


def _set_admin(settings: Settings, args: argparse.Namespace) -> int:
    store = SqlStore(settings.storage_path)
    try:
        store.set_admin(args.user_id, not args.revoke)
    except StorageError as e:
        print(f"  [!] {e}", file=sys.stderr)
        return 1
    finally:
        store.close()
    print(f"user {args.user_id} admin={'no' if args.revoke else 'yes'}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="sso",
        description="Credential authentication and token issuance service.",
    )
    parser.add_argument(
        "--config",
        metavar="PATH",
        help="Path to an env file with settings (default: $CONFIG_PATH or ./.env)",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    serve = sub.add_parser("serve", help="Run the HTTP API")
    serve.set_defaults(handler=_serve)

    migrate = sub.add_parser("migrate", help="Create or upgrade the database schema")
    migrate.set_defaults(handler=_migrate)

    add_app = sub.add_parser("add-app", help="Provision a client application")
    add_app.add_argument("--id", type=int, required=True, help="Application id clients send at login")
    add_app.add_argument("--name", required=True, help="Unique application name")
    add_app.add_argument("--secret", required=True, help="Token signing secret for this application")
    add_app.set_defaults(handler=_add_app)

    set_admin = sub.add_parser("set-admin", help="Grant or revoke a user's admin flag")
    set_admin.add_argument("--user-id", type=int, required=True)
    set_admin.add_argument("--revoke", action="store_true", help="Remove the admin flag instead of granting it")
    set_admin.set_defaults(handler=_set_admin)

    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)

    if args.config:
        # The API lifespan reads settings through get_settings(), which
        # honours CONFIG_PATH; setting it here keeps both paths consistent.
        os.environ["CONFIG_PATH"] = args.config
        get_settings.cache_clear()

    try:
        settings = get_settings()
    except (FileNotFoundError, ValidationError) as e:
        print(f"  [!] invalid configuration: {e}", file=sys.stderr)
        return 1

    setup_logging(settings.env)
    return args.handler(settings, args)


if __name__ == "__main__":
    sys.exit(main())
