"""Command-line entry point.

Usage:
    python -m transfer_ledger sync [--page-size N] [--no-progress]
    python -m transfer_ledger init-db
    python -m transfer_ledger show-config
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys

from pydantic import ValidationError

from transfer_ledger.config import MAX_PAGE_SIZE, Settings, get_settings
from transfer_ledger.storage.database import DatabaseManager
from transfer_ledger.sync.orchestrator import SyncState
from transfer_ledger.sync.runner import run_sync

logger = logging.getLogger("transfer_ledger")


def _page_size(value: str) -> int:
    size = int(value)
    if not 1 <= size <= MAX_PAGE_SIZE:
        raise argparse.ArgumentTypeError(f"page size must be between 1 and {MAX_PAGE_SIZE}")
    return size


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="transfer_ledger",
        description="Ingest explorer token transfers into the local ledger.",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    sync = sub.add_parser("sync", help="Run one incremental ingestion pass")
    sync.add_argument("--page-size", type=_page_size, default=None, help="Override SYNC_PAGE_SIZE")
    sync.add_argument(
        "--no-progress",
        action="store_true",
        help="Do not render the TTY progress line",
    )

    sub.add_parser("init-db", help="Create the ledger schema (development / SQLite)")
    sub.add_parser("show-config", help="Print the effective settings with secrets redacted")
    return parser


def configure_logging(settings: Settings) -> None:
    logging.basicConfig(
        level=settings.get_logging_level(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


async def _init_db(settings: Settings) -> None:
    db = DatabaseManager(settings.database.url, echo=settings.database.echo)
    try:
        await db.init_schema_async()
    finally:
        await db.dispose_async()


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)

    try:
        settings = get_settings()
    except ValidationError as e:
        print(f"Invalid configuration:\n{e}", file=sys.stderr)
        return 2

    configure_logging(settings)

    if args.command == "show-config":
        print(json.dumps(settings.redacted_summary(), indent=2))
        return 0

    if args.command == "init-db":
        asyncio.run(_init_db(settings))
        return 0

    summary = asyncio.run(
        run_sync(
            settings,
            page_size=args.page_size,
            show_progress=False if args.no_progress else None,
        )
    )
    if summary is None:
        print(json.dumps({"outcome": "skipped"}))
        return 0
    print(json.dumps(summary.to_dict(), indent=2))
    return 1 if summary.outcome == SyncState.ABORTED else 0


if __name__ == "__main__":
    sys.exit(main())
