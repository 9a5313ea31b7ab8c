"""
Process-owned context wiring the scheduler components together
"""

from typing import Optional

from .background import BackgroundTaskRuntime, BackgroundTrigger, ChannelFactory, SchedulerTaskRuntime
from .channel import DeviceChannel, MqttDeviceChannel
from .config import CardSchedulerConfig
from .credential_store import CredentialStore, FernetFileStore, MemoryCredentialStore
from .device_api import DeviceControlApi
from .errors import ChannelUnavailable, TokenMissing
from .executor import ScheduleExecutor
from .logging_utils import get_logger
from .notifications import NotificationService, SchedulerNotificationService
from .poller import ForegroundPoller
from .schedule_store import ScheduleStore
from .tokens import TokenLifecycleManager

logger = get_logger(__name__)


class SchedulerContext:
    """
    Holds every piece of shared mutable state: the stores, the poller timer,
    the background registration and the cached foreground channel.

    Both drivers receive the same context, so they share one schedule lock
    and one token refresh guard.
    """

    def __init__(self, config: CardSchedulerConfig, credential_store: CredentialStore,
                 notifications: NotificationService, runtime: BackgroundTaskRuntime,
                 channel_factory: Optional[ChannelFactory] = None):
        self.config = config
        self.credential_store = credential_store
        self.notifications = notifications
        self.runtime = runtime
        self.channel_factory = channel_factory or self._mqtt_channel
        self.channel: Optional[DeviceChannel] = None

        prefix = config.storage.key_prefix
        self.tokens = TokenLifecycleManager(credential_store, config.oauth, key_prefix=prefix)
        self.store = ScheduleStore(credential_store, key_prefix=prefix)
        self.api = DeviceControlApi(self.tokens, config.device_api)
        self.executor = ScheduleExecutor(self.store, self.tokens, notifications,
                                         reminder_delay_s=config.timings.reminder_delay_s)
        self.poller = ForegroundPoller(self.executor, lambda: self.channel,
                                       interval_s=config.timings.poll_interval_s)
        self.background = BackgroundTrigger(self.store, self.executor, self.tokens, notifications,
                                            runtime, self.channel_factory, timings=config.timings)
        self._started = False
        self._subscribed = False

    @classmethod
    def build(cls, config: Optional[CardSchedulerConfig] = None, **overrides) -> "SchedulerContext":
        """
        Build a context with default collaborators.

        Uses an encrypted file store when a storage key is configured and an
        in-memory store otherwise.
        """
        config = config or CardSchedulerConfig.from_env()
        credential_store = overrides.pop("credential_store", None)
        if credential_store is None:
            if config.storage.key:
                credential_store = FernetFileStore(config.storage.path, config.storage.key)
            else:
                logger.warning("No storage key configured, schedules and tokens will not persist")
                credential_store = MemoryCredentialStore()
        notifications = overrides.pop("notifications", None) or SchedulerNotificationService()
        runtime = overrides.pop("runtime", None) or SchedulerTaskRuntime()
        return cls(config, credential_store, notifications, runtime, **overrides)

    def _mqtt_channel(self, player_id: str, access_token: str) -> DeviceChannel:
        return MqttDeviceChannel(player_id, access_token, self.config.channel)

    # Lifecycle

    def start(self) -> None:
        if self._started:
            return
        logger.info("Initializing scheduler...")
        self.store.cleanup(self.config.timings.retention_days)
        self.poller.start()
        self.background.register()
        if not self._subscribed:
            self.store.subscribe(self.background.on_schedules_changed)
            self._subscribed = True
        self.background.refresh_horizon()
        self._started = True
        logger.info("Scheduler initialized")

    def shutdown(self) -> None:
        self.poller.stop()
        self.background.unregister()
        self.set_channel(None)
        self._started = False
        logger.info("Scheduler shut down")

    # Foreground channel

    def set_channel(self, channel: Optional[DeviceChannel]) -> None:
        previous, self.channel = self.channel, channel
        if previous is not None and previous is not channel:
            try:
                previous.close()
            except Exception as e:
                logger.warning(f"Failed to close previous channel: {e}")

    def connect_channel(self, player_id: str) -> DeviceChannel:
        """
        Open and cache the foreground channel for a player.

        Raises:
            TokenMissing: if no valid access token is available
            ChannelUnavailable: if the connection cannot be established
        """
        token = self.tokens.get_valid()
        if not token:
            raise TokenMissing("Sign in before connecting to a player")
        channel = self.channel_factory(player_id, token)
        try:
            channel.connect()
        except ChannelUnavailable:
            logger.error(f"Could not connect channel for player {player_id}")
            raise
        self.set_channel(channel)
        return channel
