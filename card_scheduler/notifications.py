"""
Notification service interface and an APScheduler-backed implementation
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Optional, Protocol, Union

from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.background import BackgroundScheduler

from .logging_utils import get_logger
from .models import as_local

logger = get_logger(__name__)


@dataclass
class NotificationContent:
    title: str
    body: str
    data: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ImmediateTrigger:
    pass


@dataclass(frozen=True)
class RelativeTrigger:
    seconds: int


@dataclass(frozen=True)
class AbsoluteTrigger:
    at: datetime


Trigger = Union[ImmediateTrigger, RelativeTrigger, AbsoluteTrigger]


class NotificationService(Protocol):
    def schedule(self, content: NotificationContent, trigger: Trigger) -> str: ...

    def cancel_all(self) -> None: ...


def log_sink(content: NotificationContent) -> None:
    logger.info(f"[NOTIFICATION] {content.title}: {content.body}")


class SchedulerNotificationService:
    """
    Delivers notifications through a sink callable.

    Immediate notifications are delivered synchronously; relative and
    absolute ones become APScheduler date jobs that can be cancelled
    together.
    """

    JOB_PREFIX = "notification-"

    def __init__(self, scheduler: Optional[BackgroundScheduler] = None,
                 sink: Callable[[NotificationContent], None] = log_sink):
        self.scheduler = scheduler or BackgroundScheduler(daemon=True)
        self.sink = sink
        self._pending: Dict[str, NotificationContent] = {}

    def _deliver(self, notification_id: str, content: NotificationContent) -> None:
        self._pending.pop(notification_id, None)
        try:
            self.sink(content)
        except Exception as e:
            logger.error(f"Failed to deliver notification '{content.title}': {e}")
            log_sink(content)

    def schedule(self, content: NotificationContent, trigger: Trigger) -> str:
        notification_id = f"{self.JOB_PREFIX}{uuid.uuid4().hex}"

        if isinstance(trigger, ImmediateTrigger):
            self._deliver(notification_id, content)
            return notification_id

        if isinstance(trigger, RelativeTrigger):
            run_date = datetime.now().astimezone() + timedelta(seconds=trigger.seconds)
        elif isinstance(trigger, AbsoluteTrigger):
            run_date = as_local(trigger.at)
        else:
            raise ValueError(f"Unsupported notification trigger: {trigger!r}")

        if not self.scheduler.running:
            self.scheduler.start()
        # Registered first: a job already due may run before add_job returns
        self._pending[notification_id] = content
        try:
            self.scheduler.add_job(
                self._deliver,
                "date",
                run_date=run_date,
                args=[notification_id, content],
                id=notification_id,
                misfire_grace_time=60,
            )
        except Exception:
            self._pending.pop(notification_id, None)
            raise
        logger.debug(f"Scheduled notification '{content.title}' for {run_date}")
        return notification_id

    def cancel_all(self) -> None:
        for notification_id in list(self._pending):
            try:
                self.scheduler.remove_job(notification_id)
            except JobLookupError:
                pass
            self._pending.pop(notification_id, None)
        logger.debug("Cancelled all scheduled notifications")

    def pending_count(self) -> int:
        return len(self._pending)
