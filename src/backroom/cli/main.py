from __future__ import annotations

import argparse
import json
import os
import sys
from typing import Sequence

from ..config import load_settings, log_settings_banner
from ..ledger.sheets import SheetsInventoryStore
from ..ledger.sqlite import SqliteInventoryStore
from ..logging import configure, get_logger
from ..services import build_services

LOG = get_logger("cli-main")


def _handle_init(_: argparse.Namespace) -> int:
    settings = load_settings(os.getcwd())
    log_settings_banner(settings)
    services = build_services(settings, offline=True)
    try:
        store = services.store
        if isinstance(store, SqliteInventoryStore):
            LOG.info(f"Inventory DB ready at: {store.db_path}")
            print(store.db_path)
        elif isinstance(store, SheetsInventoryStore):
            LOG.info("Spreadsheet sheets and headers ensured.")
            print(settings.google_spreadsheet_id)
    finally:
        services.close()
    return 0


def _handle_message(ns: argparse.Namespace) -> int:
    settings = load_settings(os.getcwd())
    services = build_services(settings, offline=ns.offline)
    try:
        reply = services.pipeline.process_text(ns.text, ns.user)
    finally:
        services.close()
    print(reply)
    return 0


def _handle_inventory_list(ns: argparse.Namespace) -> int:
    services = build_services(load_settings(os.getcwd()), offline=True)
    try:
        items = services.ledger.search(ns.search) if ns.search else services.ledger.list_all()
    finally:
        services.close()
    if ns.json:
        print(json.dumps([i.as_dict() for i in items], ensure_ascii=False, indent=2))
    else:
        for i in items:
            print(f"{i.name}\t{i.quantity:g}\t{i.unit}")
    LOG.info(f"{len(items)} item(s) listed")
    return 0


def _handle_transactions(ns: argparse.Namespace) -> int:
    services = build_services(load_settings(os.getcwd()), offline=True)
    try:
        rows = services.transactions.history(ns.item, limit=ns.limit)
    finally:
        services.close()
    for t in rows:
        print(json.dumps(t.as_dict(), ensure_ascii=False))
    return 0


def _handle_serve(ns: argparse.Namespace) -> int:
    import uvicorn

    if ns.reload:
        # Reload needs an import string; the factory re-reads settings in the worker
        uvicorn.run(
            "backroom.web.app:create_app",
            factory=True,
            host=ns.host,
            port=ns.port,
            reload=True,
            log_level=ns.log_level,
        )
        return 0

    from ..web import create_app

    settings = load_settings(os.getcwd())
    log_settings_banner(settings)
    allow_origins = ns.allow_origins
    if allow_origins and "*" in allow_origins:
        allow_origins = ["*"]
    app = create_app(settings, allow_origins=allow_origins)
    uvicorn.run(app, host=ns.host, port=ns.port, log_level=ns.log_level)
    return 0


def main(argv: Sequence[str] | None = None) -> int:
    provided = list(argv) if argv is not None else sys.argv[1:]
    LOG.debug(f"CLI invoked with arguments: {provided}")

    parser = argparse.ArgumentParser(
        prog="backroom",
        description="WhatsApp-driven inventory tracker: webhook server and local tools.",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging (overrides LOG_LEVEL)")
    subparsers = parser.add_subparsers(dest="command", required=True)

    init = subparsers.add_parser("init", help="Create/ensure the inventory storage (DB schema or sheet headers)")
    init.set_defaults(handler=_handle_init)

    msg = subparsers.add_parser("message", help="Run one message through the pipeline and print the reply")
    msg.add_argument("--text", required=True, help='Message text, e.g. "Sold 3 solar panels"')
    msg.add_argument("--user", default="cli", help="User id recorded on mutations")
    msg.add_argument("--offline", action="store_true", help="Skip the language model; use the regex parser only")
    msg.set_defaults(handler=_handle_message)

    inv = subparsers.add_parser("inventory", help="Inventory utilities")
    inv_sub = inv.add_subparsers(dest="inventory_cmd", required=True)
    inv_list = inv_sub.add_parser("list", help="List items, optionally filtered by a substring")
    inv_list.add_argument("--search")
    inv_list.add_argument("--json", action="store_true", help="Print JSON instead of tab-separated rows")
    inv_list.set_defaults(handler=_handle_inventory_list)

    tx = subparsers.add_parser("transactions", help="Show recent transactions, newest first")
    tx.add_argument("--item", help="Only transactions for this item name")
    tx.add_argument("--limit", type=int, default=20)
    tx.set_defaults(handler=_handle_transactions)

    serve = subparsers.add_parser("serve", help="Run the webhook and dashboard API server")
    serve.add_argument("--host", default="127.0.0.1")
    serve.add_argument("--port", type=int, default=8000)
    serve.add_argument("--reload", action="store_true", help="Enable auto-reload (development only)")
    serve.add_argument("--log-level", default="info")
    serve.add_argument(
        "--allow-origin",
        action="append",
        dest="allow_origins",
        help="Allowed CORS origin (can be provided multiple times, use '*' for any).",
    )
    serve.set_defaults(handler=_handle_serve)

    args = parser.parse_args(provided)
    if args.verbose:
        configure("DEBUG")
    code = args.handler(args)
    LOG.debug(f"Subcommand '{args.command}' finished with exit code {code}.")
    return code


if __name__ == "__main__":
    sys.exit(main())
