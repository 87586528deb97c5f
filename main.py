#!/usr/bin/env python3
"""
LicenseDesk -- license assignment inventory reconciled against LDAP / AD.

Usage:
  python main.py serve                      # HTTP server on HTTP_HOST:HTTP_PORT
  python main.py serve --port 9000
  python main.py sync                       # one reconciliation pass, then exit
  python main.py sync --only users

Configuration comes from the environment or a .env file; see core/config.py.
The directory is enabled when both LDAP_URL and LDAP_BASE_DN are set.
"""

import argparse
import logging
import sys
from typing import Optional

from core.config import get_settings

logger = logging.getLogger("licensedesk.cli")


def _serve(args: argparse.Namespace) -> int:
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "asgi:app",
        host=args.host or settings.http_host,
        port=args.port or settings.http_port,
        log_level=settings.log_level.lower(),
    )
    return 0


def _sync(args: argparse.Namespace) -> int:
    from directory.client import DirectoryClient, DirectoryUnavailable
    from directory.sync import Reconciler
    from inventory.store import InventoryStore

    settings = get_settings()
    if not settings.directory_enabled:
        print("  [!] LDAP_URL and LDAP_BASE_DN must be set to run a sync.")
        return 2

    store = InventoryStore(settings.db_url)
    reconciler = Reconciler(DirectoryClient(settings), store)
    passes = {"users": reconciler.sync_users, "computers": reconciler.sync_computers}
    selected = [args.only] if args.only else list(passes)
    failed = 0
    try:
        for name in selected:
            try:
                synced, deactivated = passes[name]()
            except DirectoryUnavailable as exc:
                print(f"  [!] {name}: directory unavailable: {exc}")
                failed += 1
                continue
            print(f"  {name}: synced={synced} deactivated={deactivated}")
    finally:
        store.close()
    return 1 if failed else 0


def main(argv: Optional[list[str]] = None) -> int:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    parser = argparse.ArgumentParser(
        prog="licensedesk",
        description="License inventory with LDAP reconciliation and directory sign-in.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py serve
  HTTP_PORT=9000 python main.py serve
  LDAP_URL=ldaps://dc1.corp.local LDAP_BASE_DN=DC=corp,DC=local python main.py sync
        """,
    )
    sub = parser.add_subparsers(dest="command", metavar="COMMAND")

    serve = sub.add_parser("serve", help="Run the HTTP server")
    serve.add_argument("--host", default=None, help="Bind address (default: HTTP_HOST)")
    serve.add_argument("--port", type=int, default=None, help="Bind port (default: HTTP_PORT)")
    serve.set_defaults(func=_serve)

    sync = sub.add_parser("sync", help="Run one directory reconciliation pass and exit")
    sync.add_argument(
        "--only",
        choices=["users", "computers"],
        default=None,
        help="Sync a single entity type (default: both)",
    )
    sync.set_defaults(func=_sync)

    args = parser.parse_args(argv)
    if not args.command:
        parser.print_help()
        return 0
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
