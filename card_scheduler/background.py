"""
Background trigger: host-driven wake handler plus a proactive notification horizon
"""

import time
from datetime import datetime, timedelta
from enum import Enum
from typing import Callable, Dict, List, Optional, Protocol

from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.background import BackgroundScheduler

from .channel import DeviceChannel
from .config import TimingsConfig
from .due import upcoming_occurrences
from .executor import ScheduleExecutor
from .logging_utils import get_logger, log_error
from .models import Schedule, as_local
from .notifications import AbsoluteTrigger, NotificationContent, NotificationService
from .schedule_store import ScheduleStore
from .tokens import TokenLifecycleManager

logger = get_logger(__name__)

TASK_NAME = "card-scheduler-background-check"
HORIZON_REFRESH_INTERVAL = timedelta(days=1)


class WakeResult(str, Enum):
    """Status returned to the host after a wake"""
    NEW_DATA = "new_data"
    NO_DATA = "no_data"
    FAILED = "failed"


WakeHandler = Callable[[], WakeResult]
ChannelFactory = Callable[[str, str], DeviceChannel]


class BackgroundTaskRuntime(Protocol):
    def register(self, name: str, handler: WakeHandler, min_interval_s: int) -> None: ...

    def is_registered(self, name: str) -> bool: ...

    def unregister(self, name: str) -> None: ...


class SchedulerTaskRuntime:
    """
    Host runtime for when the process itself hosts background wakes.

    Handlers live in a capability table keyed by task name; an interval job
    per task invokes them. The interval is a minimum, not a promise.
    """

    def __init__(self, scheduler: Optional[BackgroundScheduler] = None):
        self.scheduler = scheduler or BackgroundScheduler(daemon=True)
        self._handlers: Dict[str, WakeHandler] = {}

    def register(self, name: str, handler: WakeHandler, min_interval_s: int) -> None:
        self._handlers[name] = handler
        if not self.scheduler.running:
            self.scheduler.start()
        self.scheduler.add_job(
            self.invoke,
            "interval",
            seconds=min_interval_s,
            args=[name],
            id=name,
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        logger.info(f"Registered background task {name} (min interval {min_interval_s}s)")

    def is_registered(self, name: str) -> bool:
        return name in self._handlers

    def unregister(self, name: str) -> None:
        self._handlers.pop(name, None)
        try:
            self.scheduler.remove_job(name)
        except JobLookupError:
            pass
        logger.info(f"Unregistered background task {name}")

    def invoke(self, name: str) -> Optional[WakeResult]:
        handler = self._handlers.get(name)
        if handler is None:
            logger.warning(f"No handler registered for background task {name}")
            return None
        try:
            result = handler()
        except Exception as e:
            log_error(logger, name, e, {"phase": "background_wake"})
            return WakeResult.FAILED
        logger.info(f"Background task {name} finished: {result.value}")
        return result


class BackgroundTrigger:
    """Redundant firing path for when the foreground poller is not running"""

    def __init__(self, store: ScheduleStore, executor: ScheduleExecutor, tokens: TokenLifecycleManager,
                 notifications: NotificationService, runtime: BackgroundTaskRuntime,
                 channel_factory: ChannelFactory, timings: Optional[TimingsConfig] = None):
        self.store = store
        self.executor = executor
        self.tokens = tokens
        self.notifications = notifications
        self.runtime = runtime
        self.channel_factory = channel_factory
        self.timings = timings or TimingsConfig()
        self.is_registered = False
        self._horizon_refreshed_at: Optional[datetime] = None

    # Registration

    def register(self) -> None:
        try:
            if self.runtime.is_registered(TASK_NAME):
                logger.info("Background task already registered")
            else:
                self.runtime.register(TASK_NAME, self.handle_wake, self.timings.background_min_interval_s)
            self.is_registered = True
        except Exception as e:
            log_error(logger, TASK_NAME, e, {"phase": "register"})

    def unregister(self) -> None:
        try:
            if self.is_registered:
                self.runtime.unregister(TASK_NAME)
                self.is_registered = False
            self.notifications.cancel_all()
            logger.info("Background task unregistered and notifications cancelled")
        except Exception as e:
            log_error(logger, TASK_NAME, e, {"phase": "unregister"})

    def status(self) -> Dict[str, bool]:
        return {
            "is_registered": self.is_registered,
            "runtime_registered": self.runtime.is_registered(TASK_NAME),
        }

    # Wake handling

    def _open_channel(self, player_id: str, token: str) -> Optional[DeviceChannel]:
        """Best effort: networking may be denied while suspended"""
        try:
            channel = self.channel_factory(player_id, token)
            channel.connect()
            return channel
        except Exception as e:
            logger.info(f"Could not establish channel in background for player {player_id}: {e}")
            return None

    def handle_wake(self, now: Optional[datetime] = None) -> WakeResult:
        """
        Run one due-check/execute pass on behalf of the host.

        Never raises; failures are reported as WakeResult.FAILED.
        """
        started = time.monotonic()
        opened: Dict[str, Optional[DeviceChannel]] = {}
        try:
            logger.info("Running background schedule check...")
            self._refresh_horizon_if_stale(now)
            claimed = self.executor.claim_due_schedules(now)
            if not claimed:
                return WakeResult.NO_DATA

            token = self.tokens.get_valid()
            for schedule in claimed:
                channel = None
                if token and schedule.player_id in opened:
                    channel = opened[schedule.player_id]
                elif token and time.monotonic() - started < self.timings.wake_budget_s:
                    channel = self._open_channel(schedule.player_id, token)
                    opened[schedule.player_id] = channel
                self.executor.run(schedule, channel, announce=True)
            return WakeResult.NEW_DATA
        except Exception as e:
            log_error(logger, TASK_NAME, e, {"phase": "background_wake"})
            return WakeResult.FAILED
        finally:
            for player_id, channel in opened.items():
                if channel is None:
                    continue
                try:
                    channel.close()
                except Exception as e:
                    logger.warning(f"Failed to close background channel for {player_id}: {e}")

    # Notification horizon

    def _schedule_occurrence(self, schedule: Schedule, fire_at: datetime, now: datetime) -> int:
        scheduled = 0
        heads_up_at = fire_at - timedelta(seconds=self.timings.heads_up_s)
        if heads_up_at > now:
            self.notifications.schedule(
                NotificationContent(
                    "Schedule Coming Up",
                    f"\"{schedule.card_title}\" will play in 1 minute. Open app for best reliability.",
                    {"scheduleId": schedule.id, "action": "upcoming_schedule"},
                ),
                AbsoluteTrigger(heads_up_at),
            )
            scheduled += 1
        self.notifications.schedule(
            NotificationContent(
                "Schedule Active",
                f"\"{schedule.card_title}\" should be playing now on {schedule.player_name}",
                {"scheduleId": schedule.id, "action": "schedule_execution"},
            ),
            AbsoluteTrigger(fire_at),
        )
        return scheduled + 1

    def refresh_horizon(self, now: Optional[datetime] = None) -> int:
        """
        Cancel every scheduled notification and rebuild the next-days horizon.

        Returns:
            Number of notifications scheduled
        """
        now = as_local(now or datetime.now())
        self._horizon_refreshed_at = now
        try:
            self.notifications.cancel_all()
            count = 0
            for schedule in self.store.get_all():
                if not schedule.is_enabled:
                    continue
                for fire_at in upcoming_occurrences(schedule, now, self.timings.horizon_days):
                    count += self._schedule_occurrence(schedule, fire_at, now)
            logger.info(f"Scheduled {count} notifications for upcoming schedules")
            return count
        except Exception as e:
            log_error(logger, "notification_horizon", e)
            return 0

    def _refresh_horizon_if_stale(self, now: Optional[datetime]) -> None:
        now = as_local(now or datetime.now())
        if self._horizon_refreshed_at is None or now - self._horizon_refreshed_at >= HORIZON_REFRESH_INTERVAL:
            self.refresh_horizon(now)

    def on_schedules_changed(self, event: str, schedule_id: str) -> None:
        logger.debug(f"Schedule {schedule_id} changed ({event}), recomputing notification horizon")
        self.refresh_horizon()

    def upcoming(self, now: Optional[datetime] = None) -> List[Dict[str, object]]:
        """Fire times in the horizon, for status displays"""
        now = as_local(now or datetime.now())
        items = []
        for schedule in self.store.get_all():
            if not schedule.is_enabled:
                continue
            for fire_at in upcoming_occurrences(schedule, now, self.timings.horizon_days):
                items.append({"schedule_id": schedule.id, "card_title": schedule.card_title, "fire_at": fire_at})
        return sorted(items, key=lambda item: item["fire_at"])
