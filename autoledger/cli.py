#!/usr/bin/env python3
"""
AutoLedger CLI — Inspect the parser and the engine's local state.

Usage:
    autoledger parse --app unicredit "autorizzata op.Internet 60,40 EUR ..."
    autoledger apps
    autoledger pending
    autoledger rules list [--app paypal]
    autoledger rules delete <rule-id>

State commands read the configured store (``AUTOLEDGER_STORAGE_BACKEND``);
``--storage-path`` points them at a JSON store directory instead.
"""

import argparse
import asyncio
import json
import sys

from autoledger.config import get_settings
from autoledger.core.queue import PendingTransactionQueue
from autoledger.core.rules import RuleEngine
from autoledger.core.storage import JsonFileStore, KeyValueStore, create_store
from autoledger.logging import level_from_name, setup_logging
from autoledger.models import ParseFailure
from autoledger.parsing import NotificationParser
from autoledger.version import APP_NAME, VERSION


def _print_json(data) -> None:
    print(json.dumps(data, ensure_ascii=False, indent=2))


def _open_store(args: argparse.Namespace) -> KeyValueStore:
    if args.storage_path:
        return JsonFileStore(args.storage_path)
    return create_store()


def cmd_parse(args: argparse.Namespace) -> int:
    result = NotificationParser().parse(args.app, args.title, args.text)
    _print_json(result.model_dump(mode="json"))
    return 1 if isinstance(result, ParseFailure) else 0


def cmd_apps(args: argparse.Namespace) -> int:
    library = NotificationParser().library
    for identifier in library.supported_apps():
        pattern = library.get(identifier)
        print(f"{identifier:<12} {pattern.name}")
    return 0


async def _pending(store: KeyValueStore) -> list[dict]:
    items = await PendingTransactionQueue(store).list_all()
    return [tx.model_dump(mode="json") for tx in items]


def cmd_pending(args: argparse.Namespace) -> int:
    _print_json(asyncio.run(_pending(_open_store(args))))
    return 0


async def _list_rules(store: KeyValueStore, app: str | None) -> list[dict]:
    rules = await RuleEngine(store).list_rules(app)
    return [r.model_dump(mode="json") for r in rules]


def cmd_rules_list(args: argparse.Namespace) -> int:
    _print_json(asyncio.run(_list_rules(_open_store(args), args.app)))
    return 0


def cmd_rules_delete(args: argparse.Namespace) -> int:
    deleted = asyncio.run(RuleEngine(_open_store(args)).delete_rule(args.rule_id))
    if not deleted:
        print(f"Error: no rule with id '{args.rule_id}'.", file=sys.stderr)
        return 1
    print(f"✅ Rule '{args.rule_id}' deleted")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="autoledger", description=f"{APP_NAME} CLI")
    parser.add_argument("--version", action="version", version=f"{APP_NAME} {VERSION}")
    parser.add_argument("--storage-path", help="JSON store directory (overrides settings)")
    subparsers = parser.add_subparsers(dest="command", required=True)

    parse_parser = subparsers.add_parser("parse", help="Parse one notification text")
    parse_parser.add_argument("text", help="Notification body")
    parse_parser.add_argument("--app", required=True, help="Source app identifier (e.g. unicredit)")
    parse_parser.add_argument("--title", default="", help="Notification title")
    parse_parser.set_defaults(func=cmd_parse)

    apps_parser = subparsers.add_parser("apps", help="List supported banking apps")
    apps_parser.set_defaults(func=cmd_apps)

    pending_parser = subparsers.add_parser("pending", help="List the pending queue")
    pending_parser.set_defaults(func=cmd_pending)

    rules_parser = subparsers.add_parser("rules", help="Manage saved classification rules")
    rules_sub = rules_parser.add_subparsers(dest="rules_command", required=True)
    rules_list = rules_sub.add_parser("list", help="List saved rules")
    rules_list.add_argument("--app", help="Only rules for this app")
    rules_list.set_defaults(func=cmd_rules_list)
    rules_delete = rules_sub.add_parser("delete", help="Delete a rule by id")
    rules_delete.add_argument("rule_id")
    rules_delete.set_defaults(func=cmd_rules_delete)

    return parser


def main(argv: list[str] | None = None) -> int:
    settings = get_settings()
    setup_logging(
        level_from_name(settings.log_level),
        json_output=settings.log_json or settings.environment == "production",
    )
    args = build_parser().parse_args(argv)
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
