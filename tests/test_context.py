"""
Tests for the scheduler context and the command line
"""

from unittest.mock import Mock, patch

import pytest

from card_scheduler.__main__ import build_parser, main
from card_scheduler.background import TASK_NAME
from card_scheduler.config import CardSchedulerConfig, StorageConfig
from card_scheduler.context import SchedulerContext
from card_scheduler.credential_store import FernetFileStore, MemoryCredentialStore
from card_scheduler.errors import ChannelUnavailable, TokenMissing
from tests.conftest import make_token, new_schedule_data


class FakeRuntime:

    def __init__(self):
        self.handlers = {}

    def register(self, name, handler, min_interval_s):
        self.handlers[name] = handler

    def is_registered(self, name):
        return name in self.handlers

    def unregister(self, name):
        self.handlers.pop(name, None)


@pytest.fixture
def context():
    ctx = SchedulerContext.build(
        CardSchedulerConfig(),
        credential_store=MemoryCredentialStore(),
        notifications=Mock(),
        runtime=FakeRuntime(),
        channel_factory=Mock(),
    )
    ctx.poller.scheduler = Mock(running=False)
    return ctx


class TestSchedulerContext:
    """Test context wiring and lifecycle"""

    def test_build_uses_memory_store_without_key(self):
        ctx = SchedulerContext.build(CardSchedulerConfig(), notifications=Mock(), runtime=FakeRuntime())
        assert isinstance(ctx.credential_store, MemoryCredentialStore)

    def test_build_uses_encrypted_store_with_key(self, tmp_path):
        config = CardSchedulerConfig(storage=StorageConfig(path=str(tmp_path / "store.bin"),
                                                           key=FernetFileStore.generate_key()))
        ctx = SchedulerContext.build(config, notifications=Mock(), runtime=FakeRuntime())
        assert isinstance(ctx.credential_store, FernetFileStore)

    def test_drivers_share_one_store(self, context):
        assert context.executor.store is context.store
        assert context.background.store is context.store
        assert context.background.executor is context.executor

    def test_start_and_shutdown(self, context):
        context.start()

        context.poller.scheduler.add_job.assert_called_once()
        assert context.runtime.is_registered(TASK_NAME)
        context.notifications.cancel_all.assert_called()

        context.shutdown()

        assert not context.runtime.is_registered(TASK_NAME)

    def test_start_subscribes_horizon_refresh(self, context):
        context.start()
        context.notifications.reset_mock()

        context.store.create(new_schedule_data())

        context.notifications.cancel_all.assert_called_once()

    def test_restart_subscribes_once(self, context):
        context.start()
        context.shutdown()
        context.start()
        context.notifications.reset_mock()

        context.store.create(new_schedule_data())

        context.notifications.cancel_all.assert_called_once()

    def test_connect_channel_requires_token(self, context):
        with pytest.raises(TokenMissing):
            context.connect_channel("player-1")

    def test_connect_channel_caches(self, context):
        context.tokens.store_tokens(make_token(), "refresh-1")
        channel = context.channel_factory.return_value

        assert context.connect_channel("player-1") is channel
        context.channel_factory.assert_called_once_with("player-1", context.tokens.get_valid())
        assert context.poller.channel_provider() is channel

    def test_connect_channel_failure(self, context):
        context.tokens.store_tokens(make_token(), "refresh-1")
        context.channel_factory.return_value.connect.side_effect = ChannelUnavailable("refused")

        with pytest.raises(ChannelUnavailable):
            context.connect_channel("player-1")
        assert context.channel is None

    def test_set_channel_closes_previous(self, context):
        first, second = Mock(), Mock()
        context.set_channel(first)
        context.set_channel(second)
        first.close.assert_called_once()
        second.close.assert_not_called()


class TestCommandLine:
    """Test argument parsing and command dispatch"""

    def test_parse_add(self):
        args = build_parser().parse_args([
            "add", "--card-id", "c1", "--card-uri", "https://yoto.io/c1", "--player-id", "p1",
            "--time", "07:30", "--days", "1", "2",
        ])
        assert args.days == [1, 2]
        assert args.once is False

    def test_add_and_list(self, context, capsys):
        with patch('card_scheduler.__main__.SchedulerContext.build', return_value=context):
            assert main(["add", "--card-id", "c1", "--card-uri", "https://yoto.io/c1",
                         "--player-id", "p1", "--time", "07:30", "--days", "1", "2", "3", "4", "5"]) == 0
            assert main(["list"]) == 0

        out = capsys.readouterr().out
        assert "7:30 AM" in out
        assert "Weekdays" in out

    def test_toggle_missing_schedule(self, context, capsys):
        with patch('card_scheduler.__main__.SchedulerContext.build', return_value=context):
            assert main(["toggle", "missing", "--off"]) == 1
        assert "missing" in capsys.readouterr().err

    def test_add_invalid_days(self, context):
        with patch('card_scheduler.__main__.SchedulerContext.build', return_value=context):
            assert main(["add", "--card-id", "c1", "--card-uri", "u", "--player-id", "p1",
                         "--time", "07:30", "--days", "9"]) == 1
