"""
Schedule execution: authenticate, attempt playback, fall back to notifications
"""

from datetime import datetime
from typing import List, Optional

from .channel import DeviceChannel
from .due import is_due
from .errors import PersistenceFailure, ScheduleNotFound
from .logging_utils import get_logger, log_error, log_execution
from .models import ExecutionOutcome, ExecutionReport, Schedule
from .notifications import ImmediateTrigger, NotificationContent, NotificationService, RelativeTrigger
from .schedule_store import ScheduleStore
from .tokens import TokenLifecycleManager

logger = get_logger(__name__)


class ScheduleExecutor:
    """Fires schedules on a device channel with notification fallbacks"""

    def __init__(self, store: ScheduleStore, tokens: TokenLifecycleManager,
                 notifications: NotificationService, reminder_delay_s: int = 30):
        """
        Args:
            store: Schedule persistence (used to mark lastTriggered)
            tokens: Token manager consulted before every attempt
            notifications: Where success, failure and reminder notices go
            reminder_delay_s: Delay of the "open app to play" reminder
        """
        self.store = store
        self.tokens = tokens
        self.notifications = notifications
        self.reminder_delay_s = reminder_delay_s

    # Notifications never break an execution

    def _notify(self, title: str, body: str, data: dict, trigger=None) -> None:
        try:
            self.notifications.schedule(NotificationContent(title, body, data), trigger or ImmediateTrigger())
        except Exception as e:
            logger.error(f"Failed to send notification '{title}': {e}")
            logger.info(f"[NOTIFICATION FALLBACK] {title}: {body}")

    def _announce(self, schedule: Schedule) -> None:
        self._notify(
            "Schedule Active",
            f"Playing \"{schedule.card_title}\" on {schedule.player_name}",
            {"scheduleId": schedule.id, "cardTitle": schedule.card_title, "playerName": schedule.player_name},
        )

    def _remind_open_app(self, schedule: Schedule) -> None:
        self._notify(
            "Open Card Scheduler",
            f"Schedule for \"{schedule.card_title}\" needs the app to be open to play",
            {"scheduleId": schedule.id, "action": "open_app", "cardTitle": schedule.card_title},
            RelativeTrigger(self.reminder_delay_s),
        )

    # Execution

    def execute(self, schedule: Schedule, channel: Optional[DeviceChannel] = None,
                announce: bool = False) -> ExecutionReport:
        """
        Mark a schedule as fired, then attempt playback.

        The mark happens first: a failure afterwards still counts as the
        attempt for this window, and the next recurrence is the retry.
        """
        try:
            schedule = self.store.mark_triggered(schedule.id, datetime.now().astimezone())
        except ScheduleNotFound:
            logger.warning(f"Schedule {schedule.id} was deleted before it could fire")
        return self.run(schedule, channel, announce=announce)

    def run(self, schedule: Schedule, channel: Optional[DeviceChannel] = None,
            announce: bool = False) -> ExecutionReport:
        """
        Attempt playback of an already-marked schedule. Never raises.
        """
        logger.info(f"Executing schedule {schedule.id}: '{schedule.card_title}' on {schedule.player_name}")
        if announce:
            self._announce(schedule)

        report = self._attempt(schedule, channel)
        log_execution(logger, schedule.id, report.outcome.value, schedule.card_title, schedule.player_name)
        return report

    def _attempt(self, schedule: Schedule, channel: Optional[DeviceChannel]) -> ExecutionReport:
        token = self.tokens.get_valid()
        if not token:
            logger.warning(f"Cannot authenticate, skipping playback for schedule {schedule.id}")
            self._remind_open_app(schedule)
            return ExecutionReport(schedule.id, ExecutionOutcome.UNAUTHENTICATED, "no valid access token")

        try:
            healthy = channel is not None and channel.is_healthy()
        except Exception as e:
            log_error(logger, schedule.player_id, e, {"phase": "health_check"})
            healthy = False

        if not healthy:
            logger.info(f"Device channel unavailable for {schedule.player_name}, falling back to reminder")
            if schedule.notify_if_offline:
                self._notify(
                    "Device Offline",
                    f"Could not play \"{schedule.card_title}\" because {schedule.player_name} is offline.",
                    {"scheduleId": schedule.id, "offline": True},
                )
            self._remind_open_app(schedule)
            return ExecutionReport(schedule.id, ExecutionOutcome.OFFLINE, "channel unavailable")

        try:
            channel.play(schedule.player_id, schedule.card_uri)
        except Exception as e:
            return self._play_failed(schedule, e)

        self._notify(
            "Card Played Successfully",
            f"\"{schedule.card_title}\" is now playing on {schedule.player_name}",
            {"scheduleId": schedule.id, "success": True},
        )
        return ExecutionReport(schedule.id, ExecutionOutcome.PLAYED)

    def _play_failed(self, schedule: Schedule, error: Exception) -> ExecutionReport:
        log_error(logger, schedule.id, error, {"player": schedule.player_id, "card": schedule.card_uri})
        self._notify(
            "Failed to Play Card",
            f"Could not play \"{schedule.card_title}\" on {schedule.player_name}. {error}",
            {"scheduleId": schedule.id, "success": False, "error": str(error)},
        )
        self._remind_open_app(schedule)
        return ExecutionReport(schedule.id, ExecutionOutcome.PLAY_FAILED, str(error))

    # Due-check/execute pass shared by both drivers

    def claim_due_schedules(self, now: Optional[datetime] = None) -> List[Schedule]:
        """Schedules that are due now and that this caller won the claim for"""
        now = now or datetime.now().astimezone()
        claimed = []
        for schedule in self.store.get_all():
            if not is_due(schedule, now):
                continue
            try:
                won = self.store.claim_if_due(schedule.id, now)
            except PersistenceFailure as e:
                log_error(logger, schedule.id, e, {"phase": "claim"})
                continue
            if won is None:
                logger.info(f"Schedule {schedule.id} already claimed by another driver")
                continue
            logger.info(f"Schedule is due: '{schedule.card_title}'")
            claimed.append(won)
        return claimed

    def check_and_execute(self, channel: Optional[DeviceChannel] = None,
                          now: Optional[datetime] = None, announce: bool = False) -> List[ExecutionReport]:
        """
        Fire every due schedule once.

        Args:
            channel: Connected device channel, or None when offline
            now: Evaluation instant (defaults to the current local time)
            announce: Emit an immediate "schedule active" notice per schedule

        Returns:
            One report per schedule that fired
        """
        claimed = self.claim_due_schedules(now)
        reports = []
        for schedule in claimed:
            try:
                reports.append(self.run(schedule, channel, announce=announce))
            except Exception as e:
                log_error(logger, schedule.id, e, {"phase": "execute"})
        return reports
