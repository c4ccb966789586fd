#!/usr/bin/env python3
"""
Invoice Retry Scheduler - standalone process draining the invoice job queue
Usage: python scheduler.py

Safe to run next to the API process and the cron endpoint: jobs are claimed
with a conditional update, so concurrent runs never process the same job.
"""

import asyncio
import schedule
import time
from datetime import datetime
import logging

from sdibridge.core.config import settings
from sdibridge.core.logging_config import setup_logging
from sdibridge.services.retry_engine import run_retry_batch

setup_logging("scheduler")
logger = logging.getLogger(__name__)


def run_retry():
    """One retry engine run"""
    start_time = datetime.now()
    summary = asyncio.run(run_retry_batch())
    duration = (datetime.now() - start_time).total_seconds()

    if summary.get("error"):
        logger.error(f"[FAIL] Retry run failed after {duration:.1f}s: {summary['error']}")
        return

    if summary["processed"] or summary["purged"]:
        logger.info(
            f"[OK] Retry run in {duration:.1f}s: processed={summary['processed']}, "
            f"completed={summary['completed']}, retried={summary['retried']}, "
            f"failed={summary['failed']}, purged={summary['purged']}"
        )


def main():
    logger.info("SDI Bridge Scheduler Started")
    logger.info(f"   Log dir: {settings.LOGS_PATH}")
    logger.info(f"   Schedule: every {settings.RETRY_INTERVAL_MINUTES} minutes")

    run_retry()
    schedule.every(settings.RETRY_INTERVAL_MINUTES).minutes.do(run_retry)

    while True:
        schedule.run_pending()
        time.sleep(30)


if __name__ == "__main__":
    main()
