#!/usr/bin/env python3
"""
CLI tool for news aggregation.

Usage:
    # Run one aggregation pass
    python -m scripts.ingest run

    # Bypass the cache gate, fetch every NewsAPI category
    python -m scripts.ingest run --force --multi-category --language en --language de

    # Last run, breakers and per-source state
    python -m scripts.ingest status

    # Recent aggregation log records
    python -m scripts.ingest logs --limit 20

    # Run the persisted schedule (continuous)
    python -m scripts.ingest serve --interval 15
"""

import argparse
import asyncio
import json
import logging
import sys

# Add parent directory to path for imports
sys.path.insert(0, str(__file__).rsplit("/", 2)[0])

from impact_news.api.routes import Services
from impact_news.config import get_settings
from impact_news.main import create_services
from impact_news.models.database import Database
from impact_news.models.domain import IngestionOptions

logger = logging.getLogger(__name__)


async def open_services() -> tuple[Database, Services]:
    """Create the database (and tables) and wire the services."""
    settings = get_settings()
    database = Database(settings.database_url)
    await database.create_tables()
    return database, create_services(settings, database)


async def cmd_run(args):
    """Run one aggregation pass."""
    database, services = await open_services()
    try:
        options = IngestionOptions(
            force_update=args.force,
            single_category=not args.multi_category,
            languages=args.language or [],
        )
        print("Running aggregation...")
        result = await services.orchestrator.run_aggregation(options)
    finally:
        await database.dispose()

    print("\n" + "=" * 60)
    print("AGGREGATION RESULTS")
    print("=" * 60)

    for source in result.sources:
        line = f"  {source.source_id:<12} {source.status.value:<16} valid={source.valid} new={source.new} inserted={source.inserted}"
        if source.condition:
            line += f" [{source.condition.value}]"
        print(line)
        if source.error:
            print(f"    error: {source.error}")

    print("-" * 60)
    print(f"Status: {result.status.value}")
    print(f"Total inserted: {result.total_inserted}")
    if result.error:
        print(f"Error: {result.error}")

    return 0 if result.status.value in ("success", "partial_success") else 1


async def cmd_status(args):
    """Show last run, breaker and source state."""
    database, services = await open_services()
    try:
        snapshot = await services.orchestrator.status_snapshot()
        snapshot["schedule"] = await services.schedule.get_schedule()
    finally:
        await database.dispose()

    print(json.dumps(snapshot, indent=2, default=str))
    return 0


async def cmd_logs(args):
    """Print recent aggregation log records."""
    database, services = await open_services()
    try:
        records = await services.store.recent_logs(limit=args.limit, event_type=args.event_type)
    finally:
        await database.dispose()

    for record in records:
        created = record.created_at.isoformat() if record.created_at else "-"
        print(f"{created}  {record.event_type:<22} {record.status.value}")
        if args.verbose:
            print(json.dumps(record.details, indent=2, default=str))

    return 0


async def cmd_serve(args):
    """Check the persisted schedule every `interval` minutes."""
    database, services = await open_services()

    print(f"Checking schedule every {args.interval} minutes")
    print("Press Ctrl+C to stop")

    try:
        while True:
            outcome = await services.schedule.tick()
            logger.info(f"Schedule check: {outcome}")
            await asyncio.sleep(args.interval * 60)
    except (KeyboardInterrupt, asyncio.CancelledError):
        print("\nShutting down...")
    finally:
        await database.dispose()

    return 0


def main():
    parser = argparse.ArgumentParser(
        description="Impact News - Aggregation CLI"
    )
    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    # Run command
    run_parser = subparsers.add_parser("run", help="Run one aggregation pass")
    run_parser.add_argument(
        "--force", "-f",
        action="store_true",
        help="Bypass the cache gate"
    )
    run_parser.add_argument(
        "--multi-category", "-m",
        action="store_true",
        help="Fetch every NewsAPI category and search query"
    )
    run_parser.add_argument(
        "--language", "-l",
        action="append",
        help="Language code to request (repeatable, default: en)"
    )

    # Status command
    subparsers.add_parser("status", help="Show aggregation status")

    # Logs command
    logs_parser = subparsers.add_parser("logs", help="Show recent aggregation logs")
    logs_parser.add_argument(
        "--limit", "-n",
        type=int,
        default=20,
        help="Number of records (default: 20)"
    )
    logs_parser.add_argument(
        "--event-type", "-e",
        help="Only show this event type (e.g. aggregation, source_fetch)"
    )
    logs_parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Print record details"
    )

    # Serve command
    serve_parser = subparsers.add_parser("serve", help="Run the schedule continuously")
    serve_parser.add_argument(
        "--interval", "-i",
        type=int,
        default=15,
        help="Minutes between schedule checks (default: 15)"
    )

    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        return 1

    # Run command
    if args.command == "run":
        return asyncio.run(cmd_run(args))
    elif args.command == "status":
        return asyncio.run(cmd_status(args))
    elif args.command == "logs":
        return asyncio.run(cmd_logs(args))
    elif args.command == "serve":
        try:
            return asyncio.run(cmd_serve(args))
        except KeyboardInterrupt:
            return 0

    return 0


if __name__ == "__main__":
    sys.exit(main())
