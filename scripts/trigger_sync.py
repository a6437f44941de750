#!/usr/bin/env python3
"""CLI script to run one sync operation against the local cache.

Usage:
    uv run python scripts/trigger_sync.py all
    uv run python scripts/trigger_sync.py delta
    uv run python scripts/trigger_sync.py tickets --delta
    uv run python scripts/trigger_sync.py csm --report
    uv run python scripts/trigger_sync.py status

Connects directly to the database using DATABASE_URL from environment or .env file.
Runs synchronously in this process (no server needed) and prints the result.
Exit code is 0 on success, 1 on failure or partial failure.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import os
import sys

# Ensure project root is on sys.path so we can import src.orgsync
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from dotenv import load_dotenv  # noqa: E402

# Load .env from project root
load_dotenv(os.path.join(os.path.dirname(__file__), "..", ".env"))

OPERATIONS = ("all", "delta", "organizations", "tickets", "csm", "github", "status")


async def run(operation: str, delta: bool, report: bool) -> int:
    """Run one operation and print its outcome. Returns the process exit code."""
    from src.orgsync.api.middleware.logging import configure_structlog
    from src.orgsync.cache.repository import CacheStore
    from src.orgsync.config import get_settings
    from src.orgsync.core.database import close_db, get_session, init_db
    from src.orgsync.sync.factory import build_orchestrator
    from src.orgsync.sync.guard import RunState

    configure_structlog()
    await init_db()
    store = CacheStore(session_factory=get_session)

    try:
        if operation == "status":
            statuses = await store.get_sync_status()
            print(json.dumps([s.model_dump(mode="json") for s in statuses], indent=2))
            return 0

        orchestrator = build_orchestrator(get_settings(), store)

        if operation in ("all", "delta"):
            summary = await (orchestrator.sync_all() if operation == "all" else orchestrator.sync_delta())
            print(json.dumps(summary.as_dict(), indent=2))
            return 0 if summary.state == RunState.SUCCESS else 1

        if operation == "organizations":
            count = await orchestrator.sync_organizations()
        elif operation == "tickets":
            count = await orchestrator.sync_tickets(delta_only=delta)
        elif operation == "csm":
            count = await orchestrator.sync_csm_assignments()
        else:
            count = await orchestrator.sync_github_links()

        print(f"{operation}: {count} records synced")
        if report and orchestrator.last_match_report is not None:
            print(json.dumps(orchestrator.last_match_report.as_dict(), indent=2))
        return 0
    except Exception as exc:
        print(f"{operation} failed: {exc}", file=sys.stderr)
        return 1
    finally:
        await close_db()


def main() -> None:
    parser = argparse.ArgumentParser(description="Run a cache sync operation")
    parser.add_argument("operation", choices=OPERATIONS, help="Which sync to run")
    parser.add_argument("--delta", action="store_true", help="tickets: only fetch tickets updated since last success")
    parser.add_argument("--report", action="store_true", help="csm: print the strategy distribution report")
    args = parser.parse_args()

    if args.delta and args.operation != "tickets":
        parser.error("--delta only applies to the tickets operation")

    sys.exit(asyncio.run(run(args.operation, args.delta, args.report)))


if __name__ == "__main__":
    main()
