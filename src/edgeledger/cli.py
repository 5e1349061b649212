"""CLI entry point for EdgeLedger operators."""

import argparse
import asyncio
import json
import logging
import sys
from typing import Any

from edgeledger.config import EdgeLedgerConfig
from edgeledger.edgeledger import EdgeLedger
from edgeledger.errors import EdgeLedgerError


def _print_json(data: Any) -> None:
    print(json.dumps(data, indent=2, default=str))


async def _cleanup(ledger: EdgeLedger, args: argparse.Namespace) -> int:
    count = await ledger.cleanup(args.days, dry_run=args.dry_run)
    days = ledger.janitor.retention_days if args.days is None else args.days
    verb = "Would delete" if args.dry_run else "Deleted"
    print(f"{verb} {count} history entries older than {days} days")
    return 0


async def _stats(ledger: EdgeLedger, args: argparse.Namespace) -> int:
    stats = await ledger.stats(args.actor)
    _print_json(stats.model_dump(mode="json"))
    return 0


async def _history(ledger: EdgeLedger, args: argparse.Namespace) -> int:
    if args.pair:
        page = await ledger.history_by_pair(*args.pair, limit=args.limit, offset=args.offset)
    elif args.nodes:
        node_ids = [node_id.strip() for node_id in args.nodes.split(",") if node_id.strip()]
        page = await ledger.history_by_nodes(node_ids, limit=args.limit, offset=args.offset)
    else:
        page = await ledger.history_by_actor(args.actor, limit=args.limit, offset=args.offset)
    _print_json(page.model_dump(mode="json"))
    return 0


async def _rollback(ledger: EdgeLedger, args: argparse.Namespace) -> int:
    result = await ledger.rollback(
        args.history_id,
        args.actor_id,
        args.actor_name or args.actor_id,
        args.reason,
    )
    _print_json(result.model_dump(mode="json"))
    return 0 if result.success else 1


async def _lineage(ledger: EdgeLedger, args: argparse.Namespace) -> int:
    chain = await ledger.lineage(args.history_id)
    if not chain:
        print(f"History entry not found: {args.history_id}", file=sys.stderr)
        return 1
    _print_json([entry.model_dump(mode="json") for entry in chain])
    return 0


_COMMANDS = {
    "cleanup": _cleanup,
    "stats": _stats,
    "history": _history,
    "rollback": _rollback,
    "lineage": _lineage,
}


async def _run(config: EdgeLedgerConfig, args: argparse.Namespace) -> int:
    async with EdgeLedger(config) as ledger:
        return await _COMMANDS[args.command](ledger, args)


def _serve(config: EdgeLedgerConfig, args: argparse.Namespace) -> int:
    import uvicorn

    from edgeledger.web.app import create_app

    uvicorn.run(create_app(config=config), host=args.host, port=args.port)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="edgeledger",
        description="EdgeLedger - connection history and rollback",
    )
    parser.add_argument(
        "--home",
        default=None,
        help="Storage directory (default: $EDGELEDGER_HOME or ~/.edgeledger)",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable debug logging",
    )
    sub = parser.add_subparsers(dest="command")

    cleanup_parser = sub.add_parser("cleanup", help="Purge old history entries")
    cleanup_parser.add_argument(
        "--days",
        type=int,
        default=None,
        help="Delete entries older than this many days (default: retention_days)",
    )
    cleanup_parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Only report how many entries would be deleted",
    )

    stats_parser = sub.add_parser("stats", help="Show history statistics")
    stats_parser.add_argument("--actor", default=None, help="Only count this actor's changes")

    history_parser = sub.add_parser("history", help="List history entries, newest first")
    selector = history_parser.add_mutually_exclusive_group(required=True)
    selector.add_argument("--pair", nargs=2, metavar=("NODE_A", "NODE_B"), help="One node pair")
    selector.add_argument("--nodes", help="Comma-separated node ids")
    selector.add_argument("--actor", help="Changes made by this actor")
    history_parser.add_argument("--limit", type=int, default=50)
    history_parser.add_argument("--offset", type=int, default=0)

    rollback_parser = sub.add_parser("rollback", help="Roll back a history entry")
    rollback_parser.add_argument("history_id")
    rollback_parser.add_argument("--actor-id", required=True)
    rollback_parser.add_argument("--actor-name", default=None)
    rollback_parser.add_argument("--reason", default=None)

    lineage_parser = sub.add_parser("lineage", help="Show the rollback chain of an entry")
    lineage_parser.add_argument("history_id")

    serve_parser = sub.add_parser("serve", help="Run the HTTP API")
    serve_parser.add_argument("--host", default="127.0.0.1")
    serve_parser.add_argument("--port", type=int, default=8000)

    return parser


def main(argv: list[str] | None = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        sys.exit(1)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )

    config = EdgeLedgerConfig(home=args.home) if args.home else EdgeLedgerConfig()

    try:
        if args.command == "serve":
            code = _serve(config, args)
        else:
            code = asyncio.run(_run(config, args))
    except (ValueError, EdgeLedgerError) as e:
        print(f"Error: {e}", file=sys.stderr)
        code = 2

    if code:
        sys.exit(code)


if __name__ == "__main__":
    main()
