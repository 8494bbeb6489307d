"""Command-line interface for the Kora rent tracker."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from collections.abc import Sequence

from pydantic import ValidationError

from kora_rent_tracker.chain.client import GatewayError
from kora_rent_tracker.chain.retry import RetryError
from kora_rent_tracker.config import ConfigurationError, Settings, get_settings
from kora_rent_tracker.reclaim.executor import ReclaimError
from kora_rent_tracker.reporting.formatter import (
    format_registry_summary,
    format_report_summary,
    format_sol,
)
from kora_rent_tracker.service import RentTrackerService
from kora_rent_tracker.storage.lock import LockError, RegistryError

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_CONFIG = 2
EXIT_LOCKED = 3
EXIT_STORAGE = 4
EXIT_CHAIN = 5


def configure_logging(settings: Settings) -> None:
    logging.basicConfig(
        level=settings.get_logging_level(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


async def cmd_ingest(settings: Settings, args: argparse.Namespace) -> int:
    async with RentTrackerService(settings) as service:
        result = await service.ingest_transaction_history(
            tx_limit=args.limit, backfill=args.backfill
        )
    print(
        f"Processed {result.processed} transactions, "
        f"found {result.new_found} new sponsored accounts, {result.errors} errors"
    )
    return EXIT_OK


async def cmd_refresh(settings: Settings, args: argparse.Namespace) -> int:
    async with RentTrackerService(settings) as service:
        result = await service.refresh_account_statuses()
    print(
        f"Active {result.active}, empty {result.empty}, closed {result.closed}; "
        f"{result.updated} changed, {result.errors} errors"
    )
    return EXIT_OK


async def cmd_reclaim(settings: Settings, args: argparse.Namespace) -> int:
    async with RentTrackerService(settings) as service:
        report = await service.execute_reclaim(dry_run=not args.execute)
    print(format_report_summary(report))
    return EXIT_OK


async def cmd_status(settings: Settings, args: argparse.Namespace) -> int:
    registry = RentTrackerService(settings).load_registry()
    print(format_registry_summary(registry))
    return EXIT_OK


async def cmd_report(settings: Settings, args: argparse.Namespace) -> int:
    store = RentTrackerService(settings).report_store
    if args.csv:
        print(store.export_csv(), end="")
        return EXIT_OK

    analytics = store.analytics(include_dry_runs=args.include_dry_runs)
    print(f"Runs: {analytics.total_runs} ({analytics.live_runs} live)")
    print(f"Reclaimed: {analytics.total_reclaimed}/{analytics.total_attempted} accounts")
    print(f"Total: {format_sol(analytics.total_lamports_reclaimed)}")
    print(f"Success rate: {analytics.success_rate:.1f}%")
    if analytics.most_recent_run_id:
        print(f"Most recent run: {analytics.most_recent_run_id}")
    return EXIT_OK


async def cmd_config(settings: Settings, args: argparse.Namespace) -> int:
    print(json.dumps(settings.redacted_summary(), indent=2))
    return EXIT_OK


COMMANDS = {
    "ingest": cmd_ingest,
    "refresh": cmd_refresh,
    "reclaim": cmd_reclaim,
    "status": cmd_status,
    "report": cmd_report,
    "config": cmd_config,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="kora-rent-tracker",
        description="Track and reclaim SOL rent locked by a Kora operator",
    )
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    ingest_parser = subparsers.add_parser("ingest", help="Scan operator transaction history")
    ingest_parser.add_argument(
        "--limit",
        type=int,
        default=None,
        help="Maximum signatures to scan (default: INGEST_TX_LIMIT)",
    )
    ingest_parser.add_argument(
        "--backfill",
        action="store_true",
        help="Walk further back from the oldest signature already scanned",
    )

    subparsers.add_parser("refresh", help="Refresh tracked account statuses")

    reclaim_parser = subparsers.add_parser("reclaim", help="Reclaim rent from empty accounts")
    reclaim_parser.add_argument(
        "--execute",
        action="store_true",
        help="Send real transactions (default is a dry run)",
    )

    subparsers.add_parser("status", help="Show the registry summary")

    report_parser = subparsers.add_parser("report", help="Summarize past reclaim runs")
    report_parser.add_argument("--csv", action="store_true", help="Print runs as CSV")
    report_parser.add_argument(
        "--include-dry-runs",
        action="store_true",
        help="Count dry runs in the totals",
    )

    subparsers.add_parser("config", help="Print the effective configuration (redacted)")
    return parser


def main(argv: Sequence[str] | None = None) -> int:
    """Main CLI entrypoint."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return EXIT_OK

    try:
        settings = get_settings()
    except ValidationError as e:
        print(f"Invalid configuration:\n{e}", file=sys.stderr)
        return EXIT_CONFIG
    configure_logging(settings)

    try:
        return asyncio.run(COMMANDS[args.command](settings, args))
    except ConfigurationError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return EXIT_CONFIG
    except LockError as e:
        print(str(e), file=sys.stderr)
        return EXIT_LOCKED
    except RegistryError as e:
        logger.error("Registry storage failed: %s", e)
        return EXIT_STORAGE
    except (GatewayError, RetryError, ReclaimError) as e:
        logger.error("Chain request failed: %s", e)
        return EXIT_CHAIN


if __name__ == "__main__":
    sys.exit(main())
