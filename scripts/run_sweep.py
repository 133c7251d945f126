#!/usr/bin/env python3
"""
Image Host expiry sweep

Purges every ephemeral resource whose expiry has passed, outside the HTTP
server. Meant for cron or a scheduled job; the same sweep is reachable over
HTTP at POST /internal/sweep.

Usage:
    # Run a sweep against the configured store (DATABASE_URL, STORE_NAMESPACE)
    python3 scripts/run_sweep.py

    # Show what is due without deleting anything
    python3 scripts/run_sweep.py --dry-run

    # Machine-readable summary
    python3 scripts/run_sweep.py --json
"""

import argparse
import asyncio
import json
import logging
import sys

from app.api.dependencies import build_store
from app.config import settings
from app.db.session import close_engines
from app.db.store import KeyValueStore
from app.exceptions import StoreError
from app.models.domain import Clock, SweepResult, utc_now
from app.observability import get_logger, setup_logging
from app.services.expiry_index import ResourceExpiryIndex
from app.services.resources import ResourceLifecycleCoordinator

logger = get_logger("scripts.run_sweep")


async def list_due(store: KeyValueStore, clock: Clock = utc_now) -> list[str]:
    """Names of resources whose index entry is due."""
    index = ResourceExpiryIndex(store)
    now = clock()
    return [entry.resource_name for entry in await index.entries() if entry.is_due(now)]


async def sweep(store: KeyValueStore, clock: Clock = utc_now) -> SweepResult:
    return await ResourceLifecycleCoordinator(store, clock=clock).sweep()


async def run(
    dry_run: bool,
    as_json: bool,
    store: KeyValueStore | None = None,
    clock: Clock = utc_now,
) -> int:
    """Run one sweep (or a dry run). Returns the process exit code."""
    owns_store = store is None
    if store is None:
        store = build_store(settings)
    try:
        if dry_run:
            due = await list_due(store, clock)
            if as_json:
                print(json.dumps({"dry_run": True, "due": due}))
            else:
                print(f"{len(due)} resource(s) due for purge")
                for name in due:
                    print(f"  {name}")
            return 0

        result = await sweep(store, clock)
        if as_json:
            print(
                json.dumps(
                    {
                        "scanned": result.scanned,
                        "purged": result.purged,
                        "orphans_removed": result.orphans_removed,
                        "failed": result.failed,
                    }
                )
            )
        else:
            print(
                f"scanned={result.scanned} purged={result.purged} "
                f"orphans_removed={result.orphans_removed} failed={result.failed}"
            )
        return 0 if result.failed == 0 else 2

    except StoreError as exc:
        logger.error("sweep_aborted", error=str(exc))
        return 1

    finally:
        if owns_store:
            await store.close()
            if settings.store_backend == "sql":
                await close_engines()


def main() -> None:
    parser = argparse.ArgumentParser(
        description="Purge expired ephemeral resources",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Exit codes:
  0  sweep completed
  1  the expiry index could not be read
  2  sweep completed but some entries failed (see logs)
        """,
    )
    parser.add_argument(
        "--dry-run", action="store_true", help="List due resources without purging them"
    )
    parser.add_argument("--json", action="store_true", help="Print the summary as JSON")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")

    args = parser.parse_args()

    setup_logging()
    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    sys.exit(asyncio.run(run(dry_run=args.dry_run, as_json=args.json)))


if __name__ == "__main__":
    main()
