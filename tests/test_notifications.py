"""
Tests for the APScheduler-backed notification service
"""

from datetime import timedelta
from unittest.mock import Mock

import pytest
from apscheduler.jobstores.base import JobLookupError

from card_scheduler.notifications import (
    AbsoluteTrigger,
    ImmediateTrigger,
    NotificationContent,
    RelativeTrigger,
    SchedulerNotificationService,
)
from tests.conftest import MONDAY_0730


@pytest.fixture
def scheduler():
    return Mock(running=True)


@pytest.fixture
def sink():
    return Mock()


@pytest.fixture
def service(scheduler, sink):
    return SchedulerNotificationService(scheduler, sink=sink)


CONTENT = NotificationContent("Schedule Active", "Playing now", {"scheduleId": "s1"})


class TestSchedulerNotificationService:
    """Test delivery, scheduling and cancellation"""

    def test_immediate_is_delivered_synchronously(self, service, scheduler, sink):
        service.schedule(CONTENT, ImmediateTrigger())

        sink.assert_called_once_with(CONTENT)
        scheduler.add_job.assert_not_called()
        assert service.pending_count() == 0

    def test_absolute_becomes_date_job(self, service, scheduler):
        notification_id = service.schedule(CONTENT, AbsoluteTrigger(MONDAY_0730))

        args, kwargs = scheduler.add_job.call_args
        assert args[1] == "date"
        assert kwargs["run_date"] == MONDAY_0730
        assert kwargs["id"] == notification_id
        assert service.pending_count() == 1

    def test_relative_is_offset_from_now(self, service, scheduler):
        service.schedule(CONTENT, RelativeTrigger(30))

        run_date = scheduler.add_job.call_args.kwargs["run_date"]
        assert run_date.tzinfo is not None

    def test_job_running_during_add_leaves_nothing_pending(self, service, scheduler, sink):
        """Test a notification already due is not left behind as pending"""
        scheduler.add_job.side_effect = lambda func, trigger, args, **kwargs: func(*args)

        service.schedule(CONTENT, RelativeTrigger(0))

        sink.assert_called_once_with(CONTENT)
        assert service.pending_count() == 0

    def test_add_job_failure_is_not_pending(self, service, scheduler):
        scheduler.add_job.side_effect = ValueError("bad run date")

        with pytest.raises(ValueError):
            service.schedule(CONTENT, AbsoluteTrigger(MONDAY_0730 + timedelta(days=1)))
        assert service.pending_count() == 0

    def test_cancel_all(self, service, scheduler):
        service.schedule(CONTENT, RelativeTrigger(30))
        service.schedule(CONTENT, RelativeTrigger(60))
        scheduler.remove_job.side_effect = [None, JobLookupError("gone")]

        service.cancel_all()

        assert scheduler.remove_job.call_count == 2
        assert service.pending_count() == 0

    def test_sink_failure_falls_back_to_log(self, service, sink):
        sink.side_effect = RuntimeError("no display")
        service.schedule(CONTENT, ImmediateTrigger())

    def test_starts_scheduler_lazily(self, sink):
        scheduler = Mock(running=False)
        SchedulerNotificationService(scheduler, sink=sink).schedule(CONTENT, RelativeTrigger(5))
        scheduler.start.assert_called_once()
