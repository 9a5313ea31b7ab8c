"""
Foreground poller: periodic due-check while the process is running
"""

from typing import Callable, List, Optional

from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.background import BackgroundScheduler

from .channel import DeviceChannel
from .executor import ScheduleExecutor
from .logging_utils import get_logger
from .models import ExecutionReport

logger = get_logger(__name__)

JOB_ID = "foreground-schedule-check"

ChannelProvider = Callable[[], Optional[DeviceChannel]]


class ForegroundPoller:
    """
    Runs executor.check_and_execute on an interval job.

    Ticks execute on the scheduler's worker pool, so a slow channel call never
    delays scheduling of the next tick; an overlapping tick is skipped.
    """

    def __init__(self, executor: ScheduleExecutor, channel_provider: ChannelProvider,
                 interval_s: int = 30, scheduler: Optional[BackgroundScheduler] = None):
        self.executor = executor
        self.channel_provider = channel_provider
        self.interval_s = interval_s
        self.scheduler = scheduler or BackgroundScheduler(daemon=True)

    @property
    def is_running(self) -> bool:
        return self.scheduler.running and self.scheduler.get_job(JOB_ID) is not None

    def start(self) -> None:
        # Never leave two loops running side by side
        self.stop()
        if not self.scheduler.running:
            self.scheduler.start()
        self.scheduler.add_job(
            self.tick,
            "interval",
            seconds=self.interval_s,
            id=JOB_ID,
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        logger.info(f"Foreground scheduler started ({self.interval_s}-second intervals)")

    def stop(self) -> None:
        """Cancel future ticks. Safe to call repeatedly; a running tick finishes."""
        try:
            self.scheduler.remove_job(JOB_ID)
            logger.info("Foreground scheduler stopped")
        except JobLookupError:
            pass

    def tick(self) -> List[ExecutionReport]:
        try:
            return self.executor.check_and_execute(self.channel_provider())
        except Exception as e:
            logger.exception(f"Error in foreground scheduler tick: {e}")
            return []

    def run_once(self) -> List[ExecutionReport]:
        """Manual check, e.g. when the user opens the app from a reminder"""
        logger.info("Manual schedule check requested")
        return self.tick()
