#!/usr/bin/env python3
# ============================================================================
# REPORTER ENTRY POINT
# ============================================================================
# STATUS: Process entry point - per-host metrics reporter and maintenance
# PURPOSE: Wire configuration, signals and services into a long-lived process
# ============================================================================
"""
Reporter Entry Point.

Commands:
    run        Register this host's reporter and sample active runs until
               SIGTERM/SIGINT, a shutdown request, or replacement (default)
    status     Print this (or another) host's reporter registration
    shutdown   Ask a host's reporter to stop at its next cycle
    sweep      Delete process metrics past retention (--dry-run to preview)
    init-db    Create schema, tables and indexes

Usage:
    DB_BACKEND=sqlite SQLITE_PATH=/var/lib/tasker/tasker.db tasker-reporter run
    tasker-reporter sweep --days 30 --dry-run

Environment Variables:
    DB_BACKEND, POSTGRES_*, TASKER_SCHEMA, SQLITE_PATH (store)
    REPORTER_INTERVAL_SECONDS, REPORTER_SAMPLE_TIMEOUT_SECONDS (reporter)
    METRICS_RETENTION_DAYS (sweep)
"""

import argparse
import json
import os
import signal
import socket
import sys
import threading
from typing import List, Optional

from config import get_config
from exceptions import ConfigurationError, ReporterAlreadyRunningError, TrackerError
from util_logger import LoggerFactory, ComponentType, log_exceptions

logger = LoggerFactory.create_logger(ComponentType.DAEMON, "reporter_main")

_stop_event = threading.Event()


def signal_handler(signum, frame):
    """Handle shutdown signals gracefully."""
    logger.info(f"Received signal {signum}, initiating graceful shutdown...")
    _stop_event.set()


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="tasker-reporter",
        description="Process metrics reporter and maintenance for the pipeline task tracker",
    )
    sub = parser.add_subparsers(dest="command")

    run = sub.add_parser("run", help="Run this host's reporter")
    run.add_argument("--max-cycles", type=int, default=None, help="Stop after N cycles")
    run.add_argument("--init-db", action="store_true", help="Create the schema before starting")

    status = sub.add_parser("status", help="Show reporter registration")
    status.add_argument("--host", default=None, help="Hostname (default: this host)")

    shutdown = sub.add_parser("shutdown", help="Request a reporter shutdown")
    shutdown.add_argument("--host", default=None, help="Hostname (default: this host)")

    sweep = sub.add_parser("sweep", help="Delete process metrics past retention")
    sweep.add_argument("--days", type=int, default=None, help="Override METRICS_RETENTION_DAYS")
    sweep.add_argument("--dry-run", action="store_true", help="List what would be deleted")

    sub.add_parser("init-db", help="Create schema, tables and indexes")
    return parser


def _init_db(driver) -> bool:
    from infrastructure.database_initializer import initialize_database

    result = initialize_database(driver)
    print(json.dumps(result.to_dict(), indent=2, default=str))
    return result.success


def _run(driver, args) -> int:
    from services.reporter_service import ReporterService

    run_logger = LoggerFactory.create_with_context(
        ComponentType.DAEMON, "reporter_main.run",
        hostname=socket.gethostname(), process_id=os.getpid()
    )
    if args.init_db and not _init_db(driver):
        return 1
    reporter = ReporterService(driver, stop_event=_stop_event)
    run_logger.info(f"🚀 Starting reporter (max_cycles={args.max_cycles})")
    try:
        cycles = reporter.run(max_cycles=args.max_cycles)
    except ReporterAlreadyRunningError as e:
        run_logger.error(f"❌ {e}")
        return 2
    run_logger.info(f"Reporter exited after {cycles} cycle(s)")
    return 0


@log_exceptions(ComponentType.DAEMON, "reporter_main")
def main(argv: Optional[List[str]] = None) -> None:
    """Entry point for tasker-reporter."""
    args = _build_parser().parse_args(argv)
    command = args.command or "run"
    if args.command is None:
        args.max_cycles = None
        args.init_db = False

    signal.signal(signal.SIGTERM, signal_handler)
    signal.signal(signal.SIGINT, signal_handler)

    try:
        from infrastructure.factory import create_driver

        config = get_config()
        driver = create_driver(config.database)
    except ConfigurationError as e:
        logger.error(f"Configuration error: {e}")
        sys.exit(1)

    exit_code = 0
    try:
        if command == "run":
            exit_code = _run(driver, args)
        elif command == "init-db":
            exit_code = 0 if _init_db(driver) else 1
        elif command in ("status", "shutdown"):
            from services.reporter_service import ReporterService

            reporter = ReporterService(driver)
            if command == "status":
                print(json.dumps(reporter.get_reporter_status(args.host), indent=2, default=str))
            else:
                exit_code = 0 if reporter.request_shutdown(args.host) else 1
        elif command == "sweep":
            from services.retention_service import RetentionService

            result = RetentionService(driver).sweep(retention_days=args.days, dry_run=args.dry_run)
            print(json.dumps(result.to_dict(), indent=2, default=str))
            exit_code = 0 if result.success else 1
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
    except TrackerError as e:
        logger.error(f"❌ {type(e).__name__}: {e}")
        exit_code = 1
    finally:
        driver.close()

    sys.exit(exit_code)


if __name__ == "__main__":
    main()
