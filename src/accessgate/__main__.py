"""accessgate entry point.

Commands:
  serve          Run the HTTP API (OAuth2 endpoints, discovery, admin).
  create-client  Register an OAuth client and print its secret once.
  rotate-secret  Replace a client's secret.
  create-user    Add a local username/password account.
  check-admin    Report whether any administrator can log in.
"""

from __future__ import annotations

import argparse
import getpass
import json
import logging
import sys
from importlib.metadata import PackageNotFoundError
from importlib.metadata import version as get_version

from accessgate.config import get_settings
from accessgate.errors import AccessGateError
from accessgate.logging_setup import setup_logging

logger = logging.getLogger(__name__)


def _version() -> str:
    try:
        return get_version("accessgate")
    except PackageNotFoundError:
        from accessgate import __version__

        return __version__


def cmd_serve(args: argparse.Namespace) -> int:
    from accessgate.api.serve import run_api_server

    settings = get_settings()
    run_api_server(
        host=args.host or settings.api_host,
        port=args.port or settings.api_port,
        dev=args.dev,
    )
    return 0


def cmd_create_client(args: argparse.Namespace) -> int:
    from accessgate.oauth2.clients import OAuthClientStore

    data = {
        "name": args.name,
        "description": args.description,
        "clientType": args.client_type,
        "scopes": args.scope or [],
        "redirectUris": args.redirect_uri or [],
        "grantTypes": args.grant_type or ["client_credentials"],
        "tokenExpirationMinutes": args.token_minutes,
    }
    client, secret = OAuthClientStore(audit=_audit()).create_oauth_client(data, created_by="cli")
    print(json.dumps({"clientId": client.client_id, "clientSecret": secret}, indent=2))
    if secret:
        print("Store the secret now; it cannot be shown again.", file=sys.stderr)
    return 0


def cmd_rotate_secret(args: argparse.Namespace) -> int:
    from accessgate.oauth2.clients import OAuthClientStore

    client_id, secret, rotated_at = OAuthClientStore(audit=_audit()).rotate_client_secret(
        args.client_id, rotated_by="cli"
    )
    payload = {"clientId": client_id, "clientSecret": secret, "rotatedAt": rotated_at}
    print(json.dumps(payload, indent=2))
    return 0


def cmd_create_user(args: argparse.Namespace) -> int:
    from accessgate.auth.users import UserManager

    password = args.password or getpass.getpass("Password: ")
    user = UserManager(audit=_audit()).create_local_user(
        args.username,
        password,
        email=args.email,
        name=args.name,
        internal_groups=args.group or [],
        created_by="cli",
    )
    print(json.dumps(user.to_public(), indent=2))
    return 0


def cmd_check_admin(args: argparse.Namespace) -> int:
    from accessgate.auth.users import UserManager

    manager = UserManager()
    manager.resolver.validate()
    if manager.rescue.has_any_admin():
        print("OK: at least one administrator is configured")
        return 0
    print("WARNING: no administrator configured; the next local/OIDC/proxy login will be promoted")
    return 1


def _audit():
    from accessgate.security.audit import get_audit_logger

    return get_audit_logger()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="accessgate",
        description="Group-based access control and OAuth2 authorization server",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  accessgate serve --port 8890
  accessgate create-client --name reporting --scope models:read
  accessgate create-client --name web --type public --grant-type authorization_code \\
      --redirect-uri https://app.example.com/callback
  accessgate rotate-secret client_0123abcd
  accessgate check-admin
""",
    )
    parser.add_argument("--version", "-v", action="version", version=f"%(prog)s {_version()}")
    parser.add_argument("--log-level", default=None, help="Override ACCESSGATE_LOG_LEVEL")
    sub = parser.add_subparsers(dest="command", required=True)

    serve = sub.add_parser("serve", help="Run the HTTP API")
    serve.add_argument("--host", default=None, help="Bind address (default: settings.api_host)")
    serve.add_argument("--port", type=int, default=None, help="Port (default: settings.api_port)")
    serve.add_argument("--dev", action="store_true", help="Auto-reload on code changes")
    serve.set_defaults(func=cmd_serve)

    create = sub.add_parser("create-client", help="Register an OAuth client")
    create.add_argument("--name", required=True)
    create.add_argument("--description", default="")
    create.add_argument(
        "--type", dest="client_type", choices=["confidential", "public"], default="confidential"
    )
    create.add_argument("--scope", action="append", help="Allowed scope (repeatable)")
    create.add_argument("--redirect-uri", action="append", help="Redirect URI (repeatable)")
    create.add_argument(
        "--grant-type",
        action="append",
        choices=["client_credentials", "authorization_code", "refresh_token"],
        help="Allowed grant (repeatable, default: client_credentials)",
    )
    create.add_argument("--token-minutes", type=int, default=60)
    create.set_defaults(func=cmd_create_client)

    rotate = sub.add_parser("rotate-secret", help="Replace a client's secret")
    rotate.add_argument("client_id")
    rotate.set_defaults(func=cmd_rotate_secret)

    user = sub.add_parser("create-user", help="Add a local account")
    user.add_argument("username")
    user.add_argument("--password", default=None, help="Prompted for when omitted")
    user.add_argument("--email", default=None)
    user.add_argument("--name", default=None)
    user.add_argument("--group", action="append", help="Internal group (repeatable)")
    user.set_defaults(func=cmd_create_user)

    check = sub.add_parser("check-admin", help="Report whether an administrator exists")
    check.set_defaults(func=cmd_check_admin)
    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    setup_logging(level=args.log_level or get_settings().log_level)

    try:
        return args.func(args)
    except (AccessGateError, ValueError) as exc:
        logger.error("%s", exc)
        return 2


if __name__ == "__main__":
    sys.exit(main())
