#!/usr/bin/env python3
"""
Scheduled ingredient price update.

Runs one price synchronization pass against DATABASE_URL. Intended to be
triggered hourly by cron; the run itself decides whether enough time has
passed since the last update, so triggering more often than
update_frequency_hours is harmless.

Usage:
    python price_update_scheduler.py
    python price_update_scheduler.py --watch --interval-minutes 60
"""

import argparse
import logging
import sys
import time
from typing import Optional

from cafe_api import config
from cafe_api.logging_config import setup_logging
from cafe_api.models import RunStatus, RunSummary
from cafe_api.services.database import db_pool
from cafe_api.services.price_fetcher import PriceFetcher
from cafe_api.services.price_sync import PriceSyncOrchestrator


logger = logging.getLogger("cafe_api.scheduler")


def run_once(conn, fetcher: Optional[PriceFetcher] = None) -> RunSummary:
    """Run one scheduled price update on ``conn`` and log its summary."""
    summary = PriceSyncOrchestrator(conn, fetcher).run()

    if summary.status == RunStatus.COMPLETED:
        logger.info("Run completed: %d updated, %d skipped, %d failed of %d",
                    summary.updated, summary.skipped, summary.failed, summary.total)
        for error in summary.errors:
            logger.warning("  %s", error)
        for alert in summary.alerts:
            logger.warning("  ALERT %s: %s", alert.ingredient_name, alert.message)
    else:
        logger.info("Run ended with status: %s", summary.status)
    return summary


def run_scheduled() -> RunSummary:
    """Run once against the shared database connection."""
    with db_pool.get_connection() as conn:
        return run_once(conn)


def watch(interval_minutes: int, max_runs: Optional[int] = None,
          sleep=time.sleep) -> int:
    """
    Trigger a run every ``interval_minutes`` until interrupted.

    A failing run is logged and the loop carries on with the next tick.

    Returns:
        Number of runs triggered
    """
    runs = 0
    while max_runs is None or runs < max_runs:
        runs += 1
        try:
            run_scheduled()
        except Exception:
            logger.exception("Scheduled price update crashed")
        if max_runs is not None and runs >= max_runs:
            break
        sleep(interval_minutes * 60)
    return runs


def main(argv=None) -> int:
    """Main entry point for the scheduler."""
    parser = argparse.ArgumentParser(
        description='Scheduled ingredient market price update'
    )
    parser.add_argument('--watch', action='store_true',
                        help='Keep running and trigger an update every interval')
    parser.add_argument('--interval-minutes', type=int,
                        default=config.SCHEDULER_INTERVAL_MINUTES,
                        help=f'Minutes between triggers with --watch '
                             f'(default: {config.SCHEDULER_INTERVAL_MINUTES})')
    parser.add_argument('--log-level', default=None,
                        help=f'Console log level (default: {config.LOG_LEVEL})')
    args = parser.parse_args(argv)

    if args.interval_minutes <= 0:
        parser.error('--interval-minutes must be positive')

    log_file = setup_logging(level=args.log_level, prefix="scheduler")
    logger.info("Price update scheduler starting, log file: %s", log_file)

    try:
        db_pool.initialize()
    except Exception as e:
        logger.error("Could not connect to database: %s", e)
        return 1

    try:
        if args.watch:
            watch(args.interval_minutes)
        else:
            summary = run_scheduled()
            if summary.status == RunStatus.ERROR:
                return 1
    except KeyboardInterrupt:
        logger.info("Scheduler interrupted")
    finally:
        db_pool.close()

    return 0


if __name__ == "__main__":
    sys.exit(main())
