#!/usr/bin/env python3
"""
Notification scheduler daemon.

Runs the cadence jobs (sweep, goal reminders, summaries, bill reminders,
retention purge) on an APScheduler event loop. Run exactly one per deployment.

Usage:
    python -m notification.worker
    python -m notification.worker --list-jobs
    python -m notification.worker --run-once process-scheduled
    python -m notification.worker --verbose
"""

import argparse
import asyncio
import logging
import signal
import sys

from core.app_context import AppContext
from core.config_loader import load_config
from database.database import init_db
from notification.exceptions import ConfigurationError

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


async def run_daemon(ctx: AppContext) -> None:
    """Start the scheduler and block until SIGINT/SIGTERM."""
    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except NotImplementedError:
            # Windows event loops
            signal.signal(sig, lambda *_: stop.set())

    ctx.scheduler.start()
    logger.info("Scheduler running. Press Ctrl+C to stop.")
    await stop.wait()
    logger.info("Stopping scheduler...")


async def run(args) -> int:
    config = load_config(args.config)
    try:
        ctx = AppContext.build(config)
    except ConfigurationError as e:
        logger.error(f"Configuration error: {e}")
        return 1

    try:
        if args.list_jobs:
            for job in ctx.scheduler.jobs():
                print(f"{job.name:<20} {job.schedule:<16} {job.description}")
            return 0

        await init_db(ctx.engine)

        if args.run_once:
            summary = await ctx.scheduler.run_job(args.run_once)
            logger.info(str(summary))
            return 0

        if not config.notifications.scheduler.enabled:
            logger.warning("Scheduler disabled (SCHEDULER_ENABLED=false); exiting")
            return 0

        await run_daemon(ctx)
        return 0
    finally:
        await ctx.aclose()


def main():
    parser = argparse.ArgumentParser(description='Finance Tracker Notification Scheduler')
    parser.add_argument('--config', default=None, help='Path to config.yaml')
    parser.add_argument('--run-once', metavar='JOB', help='Run a single cadence job and exit')
    parser.add_argument('--list-jobs', action='store_true', help='Print the cadence table and exit')
    parser.add_argument('--verbose', action='store_true')

    args = parser.parse_args()

    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    try:
        sys.exit(asyncio.run(run(args)))
    except KeyboardInterrupt:
        logger.info("\nScheduler stopped")
    except Exception as e:
        logger.error(f"Error: {e}")
        sys.exit(1)


if __name__ == '__main__':
    main()
