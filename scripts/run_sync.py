#!/usr/bin/env python3
"""CLI script to run one sync (or comparison) outside the API process.

Usage:
    python scripts/run_sync.py --config 3
    python scripts/run_sync.py --source 1 --target 2 --stores 10 11 --batch-size 200
    python scripts/run_sync.py --config 3 --compare
    python scripts/run_sync.py --scheduled          # fire every scheduled configuration once

Connects directly to the database using DATABASE_URL from environment or .env file.
Suitable as the command of a cron job: exit code 0 when every run finished
SUCCESS, 1 otherwise.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import os
import sys

from dotenv import load_dotenv

# Load .env from project root
load_dotenv(os.path.join(os.path.dirname(__file__), "..", ".env"))


def _build_request(args: argparse.Namespace):
    from src.chimera.sync.schemas import SyncExecutionRequest, SyncOptions

    options = None
    if args.batch_size or args.max_retries is not None or args.sequential or args.force:
        overrides: dict = {}
        if args.batch_size:
            overrides["batch_size"] = args.batch_size
        if args.max_retries is not None:
            overrides["max_retries"] = args.max_retries
        if args.sequential:
            overrides["parallel_processing"] = False
        if args.force:
            overrides["force_sync"] = True
        options = SyncOptions(**overrides)

    return SyncExecutionRequest(
        sync_config_id=args.config,
        source_integration_id=args.source,
        target_integration_id=args.target,
        notification_channel_id=args.channel,
        store_ids=args.stores or [],
        options=options,
    )


async def run(args: argparse.Namespace) -> int:
    """Build the service against the database and run what was asked for."""
    from src.chimera.api.deps import build_sync_service
    from src.chimera.api.middleware.logging import configure_structlog
    from src.chimera.core.database import close_db, get_session
    from src.chimera.sync.errors import SyncError
    from src.chimera.sync.repository import ConfigurationRepository
    from src.chimera.sync.scheduler import setup_sync_scheduler
    from src.chimera.sync.schemas import ExecutionStatus

    configure_structlog()
    service = build_sync_service()

    try:
        if args.scheduled:
            tasks = await setup_sync_scheduler(service, ConfigurationRepository(session_factory=get_session))
            ok = True
            for name, (configuration, task) in tasks.items():
                print(f"Running {name} ({configuration.name})")
                execution = await task()
                if execution is None or execution.status != ExecutionStatus.SUCCESS:
                    ok = False
                status = execution.status.value if execution else "not started"
                print(f"  -> {status}")
            return 0 if ok else 1

        try:
            request = _build_request(args)
        except ValueError as exc:
            print(f"Invalid arguments: {exc}", file=sys.stderr)
            return 2

        try:
            if args.compare:
                comparisons = await service.execute_comparison(request)
                print(json.dumps([c.model_dump(mode="json") for c in comparisons], indent=2))
                return 0 if all(c.in_sync for c in comparisons) else 1

            execution = await service.execute_sync(request)
        except SyncError as exc:
            print(f"Sync not started: {exc}", file=sys.stderr)
            return 1

        print(json.dumps(execution.model_dump(mode="json"), indent=2))
        return 0 if execution.status == ExecutionStatus.SUCCESS else 1
    finally:
        await close_db()


def main() -> None:
    parser = argparse.ArgumentParser(description="Run a product sync from the RP ERP to CresceVendas")
    target = parser.add_mutually_exclusive_group(required=True)
    target.add_argument("--config", type=int, help="Stored sync configuration id")
    target.add_argument("--source", type=int, help="Source integration id (ad-hoc run)")
    target.add_argument("--scheduled", action="store_true", help="Run every scheduled configuration once")
    parser.add_argument("--target", type=int, help="Target integration id (ad-hoc run)")
    parser.add_argument("--channel", type=int, help="Notification channel id")
    parser.add_argument("--stores", type=int, nargs="*", help="Restrict to these store ids")
    parser.add_argument("--compare", action="store_true", help="Compare only, upload nothing")
    parser.add_argument("--batch-size", type=int, help="Records per upload batch")
    parser.add_argument("--max-retries", type=int, help="Retries per fetch/upload")
    parser.add_argument("--sequential", action="store_true", help="Process stores one at a time")
    parser.add_argument("--force", action="store_true", help="Run even if the same sync is active")
    args = parser.parse_args()

    if args.source is not None and args.target is None:
        parser.error("--source requires --target")

    sys.exit(asyncio.run(run(args)))


if __name__ == "__main__":
    main()
