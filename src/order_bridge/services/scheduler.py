"""
Poll Scheduler using APScheduler.

Runs one change feed poll cycle every POLL_INTERVAL_MINUTES. A cycle always
finishes before the next starts: the job allows a single instance and missed
runs are coalesced.
"""

from typing import Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from order_bridge.core.logger import setup_logger
from order_bridge.services.sync_session import SyncSession

logger = setup_logger(__name__)

POLL_JOB_ID = "order_poll"


class PollScheduler:
    """Manages the periodic order poll job."""

    def __init__(self, session: SyncSession, interval_minutes: int = 60):
        self.session = session
        self.interval_minutes = interval_minutes
        self.scheduler = AsyncIOScheduler()
        self._started = False

    async def start(self, run_on_startup: bool = False):
        """
        Start the scheduler.

        Args:
            run_on_startup: Run one poll cycle immediately
        """
        if self._started:
            logger.warning("Scheduler already started")
            return

        self.scheduler.add_job(
            self._run_scheduled_poll,
            IntervalTrigger(minutes=self.interval_minutes),
            id=POLL_JOB_ID,
            name="Rithum Order Poll",
            max_instances=1,
            coalesce=True,
            replace_existing=True,
        )
        logger.info(f"Added order poll job (every {self.interval_minutes} minute(s))")

        self.scheduler.start()
        self._started = True
        logger.info("Poll scheduler started")

        if run_on_startup:
            logger.info("Running startup poll...")
            await self._run_scheduled_poll()

    async def stop(self):
        """Gracefully stop scheduler."""
        if not self._started:
            return

        self.scheduler.shutdown(wait=True)
        self._started = False
        logger.info("Poll scheduler stopped")

    async def _run_scheduled_poll(self):
        """Wrapper for the scheduled poll with error handling."""
        try:
            logger.info("Scheduled poll triggered")
            result = await self.session.run_poll_cycle()
            if result.success:
                logger.info(f"Scheduled poll completed: {len(result.created)} order(s) created")
            else:
                logger.warning(f"Scheduled poll had issues: fatal={result.fatal}, errors={result.errors}")
        except Exception as e:
            logger.error(f"Scheduled poll failed: {e}", exc_info=True)

    def get_next_scheduled_poll(self) -> Optional[str]:
        """Get the next scheduled poll time as formatted string."""
        job = self.scheduler.get_job(POLL_JOB_ID)
        if job and job.next_run_time:
            return job.next_run_time.strftime("%Y-%m-%d %H:%M:%S")
        return None

    @property
    def is_running(self) -> bool:
        """Check if scheduler is running."""
        return self._started and self.scheduler.running
