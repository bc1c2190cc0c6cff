#!/usr/bin/env python3
"""
keyshare -- administration CLI.

Usage:
  python main.py init
  python main.py create-root --email root@example.com
  python main.py create-root --email root@example.com --password 's3cret-passw0rd'
  python main.py purge-tokens

Environment variables (see core/config.py):
  SECRET_KEY    Required unless DEBUG=true. Signs tokens and salts identifiers.
  ROOT_LOGIN    Login of the root admin (default: root).
"""

import argparse
import getpass
import sys

from auth.store import UserStore
from core.config import get_settings
from core.exceptions import KeyshareError
from core.hashid import IdCodec
from services.access import AccessResolver
from services.keys import KeyService
from services.users import UserService
from vault.store import VaultStore


def _cmd_init(user_store: UserStore, vault_store: VaultStore, args: argparse.Namespace) -> int:
    # Constructing the stores already created the tables and seeded authorities.
    print(f"  Authorities: {', '.join(user_store.list_authorities())}")
    print("  Databases ready.")
    return 0


def _cmd_create_root(user_store: UserStore, vault_store: VaultStore, args: argparse.Namespace) -> int:
    settings = get_settings()
    password = args.password or getpass.getpass(f"Password for {settings.root_login}: ")
    if len(password) < 8:
        print("  [!] Password must be at least 8 characters.")
        return 1
    resolver = AccessResolver(user_store, vault_store)
    keys = KeyService(vault_store, user_store, resolver, IdCodec(settings.hashids_salt, settings.hashids_min_length))
    users = UserService(user_store, vault_store, keys, root_login=settings.root_login)
    try:
        user = users.create_root(args.email, password)
    except KeyshareError as exc:
        print(f"  [!] {exc.message}")
        return 1
    print(f"  Root user '{user.login}' created and activated.")
    return 0


def _cmd_purge_tokens(user_store: UserStore, vault_store: VaultStore, args: argparse.Namespace) -> int:
    print(f"  {user_store.purge_expired_tokens()} expired token(s) removed.")
    return 0


_COMMANDS = {
    "init": _cmd_init,
    "create-root": _cmd_create_root,
    "purge-tokens": _cmd_purge_tokens,
}


def main() -> None:
    parser = argparse.ArgumentParser(
        prog="keyshare",
        description="Administration commands for the keyshare server.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py init
  python main.py create-root --email root@example.com
  SECRET_KEY=... python main.py purge-tokens
        """,
    )
    sub = parser.add_subparsers(dest="command", metavar="COMMAND")
    sub.add_parser("init", help="Create database tables and seed authorities")
    root = sub.add_parser("create-root", help="Create the activated root admin (ROOT_LOGIN)")
    root.add_argument("--email", required=True, help="Email address of the root user")
    root.add_argument(
        "--password",
        default=None,
        help="Password of the root user (prompted for when omitted)",
    )
    sub.add_parser("purge-tokens", help="Delete expired OAuth2 access tokens")
    args = parser.parse_args()

    if args.command is None:
        parser.print_help()
        return

    user_store = UserStore()
    vault_store = VaultStore()
    try:
        code = _COMMANDS[args.command](user_store, vault_store, args)
    finally:
        user_store.close()
        vault_store.close()
    sys.exit(code)


if __name__ == "__main__":
    main()
