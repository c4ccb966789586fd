"""
Invoice Retry Scheduler - in-process periodic trigger for the retry engine
"""
from typing import Optional
import logging

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from sdibridge.core.config import settings
from sdibridge.services.retry_engine import run_retry_batch

logger = logging.getLogger(__name__)

JOB_ID = "invoice_retry"

# Global scheduler instance
_scheduler = None


class InvoiceRetryScheduler:
    """
    Runs the retry engine every RETRY_INTERVAL_MINUTES.
    Overlap with the cron endpoint or scheduler.py is safe; within this
    process only one run is active at a time.
    """

    def __init__(self, interval_minutes: Optional[int] = None):
        self.scheduler = AsyncIOScheduler()
        self.interval_minutes = interval_minutes or settings.RETRY_INTERVAL_MINUTES
        self.is_running = False

    def start(self):
        if self.is_running:
            return
        self.scheduler.add_job(
            func=self._run,
            trigger=IntervalTrigger(minutes=self.interval_minutes),
            id=JOB_ID,
            name="Invoice retry",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        self.scheduler.start()
        self.is_running = True
        logger.info(f"Invoice retry scheduler started, every {self.interval_minutes} minutes")

    def stop(self):
        if self.is_running:
            self.scheduler.shutdown(wait=False)
            self.is_running = False
            logger.info("Invoice retry scheduler stopped")

    async def _run(self):
        summary = await run_retry_batch()
        if summary.get("error"):
            logger.error(f"Scheduled invoice retry failed: {summary['error']}")


# ========== Global Functions ==========

def get_scheduler() -> InvoiceRetryScheduler:
    global _scheduler
    if _scheduler is None:
        _scheduler = InvoiceRetryScheduler()
    return _scheduler


def start_scheduler():
    get_scheduler().start()


def stop_scheduler():
    global _scheduler
    if _scheduler:
        _scheduler.stop()
        _scheduler = None
