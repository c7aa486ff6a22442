"""
Command line entry point.

    finora init-db                      create the SQLite schema
    finora check-settings               report which settings sections load
    finora list-jobs                    show registered jobs and their schedules
    finora run-job check-budget-alerts  run one job now, with retries

A scheduler (cron, systemd timer, ...) calls `run-job` on the
schedule shown by `list-jobs`.
"""

import argparse
import asyncio
import json
import logging
import sys
from typing import Optional, Sequence

from finora.audit import get_logger
from finora.config import get_settings, validate_all_settings
from finora.jobs import JOBS, run_job
from finora.orchestrator import create_app_components
from finora.services.storage import SQLiteLedgerStorage

logger = get_logger(__name__)


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(prog="finora", description="Finora personal finance backend")
    commands = parser.add_subparsers(dest="command", required=True)

    commands.add_parser("init-db", help="Create the database schema if it does not exist")
    commands.add_parser("check-settings", help="Report which settings sections are valid")
    commands.add_parser("list-jobs", help="List periodic jobs and their cron schedules")

    run = commands.add_parser("run-job", help="Run a periodic job once")
    run.add_argument("name", choices=sorted(JOBS), help="Job to run")
    run.add_argument(
        "--no-ai",
        action="store_true",
        help="Skip the Gemini agents (monthly reports use the fixed insights)",
    )
    return parser.parse_args(argv)


async def _init_db() -> None:
    db_settings = get_settings().database
    db_settings.db_path.parent.mkdir(parents=True, exist_ok=True)
    storage = SQLiteLedgerStorage.from_path(db_settings.db_path, db_settings.busy_timeout_ms)
    await storage.initialize()
    await storage.close()
    print(f"Database ready at {db_settings.db_path}")


async def _run_job(name: str, use_ai: bool) -> int:
    components = await create_app_components(use_ai=use_ai)
    try:
        summary = await run_job(name, components.jobs)
    finally:
        await components.close()

    print(summary.model_dump_json(indent=2))
    return 1 if summary.failed else 0


def _configure_logging() -> None:
    debug = get_settings().app.debug_mode
    logging.basicConfig(level=logging.DEBUG if debug else logging.INFO, format="%(message)s")


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = parse_args(argv)
    _configure_logging()

    if args.command == "init-db":
        asyncio.run(_init_db())
        return 0

    if args.command == "check-settings":
        results = validate_all_settings()
        print(json.dumps(results, indent=2))
        return 0 if all(v for k, v in results.items() if not k.endswith("_error")) else 1

    if args.command == "list-jobs":
        for job in JOBS.values():
            print(f"{job.name:<28} {job.cron}")
        return 0

    try:
        return asyncio.run(_run_job(args.name, use_ai=not args.no_ai))
    except Exception as e:
        logger.error("job_run_failed", job=args.name, error=str(e))
        print(f"Job {args.name} failed: {e}", file=sys.stderr)
        return 2


if __name__ == "__main__":
    sys.exit(main())
