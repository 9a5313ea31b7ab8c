"""
Configuration models for the card scheduler
"""

import os
from typing import Optional

from pydantic import BaseModel, Field


class OAuthConfig(BaseModel):
    """OAuth client settings for the token endpoint"""
    client_id: str = ""
    redirect_uri: str = ""
    token_url: str = "https://login.yotoplay.com/oauth/token"
    authorize_url: str = "https://login.yotoplay.com/authorize"
    audience: str = "https://api.yotoplay.com"
    scope: str = "offline_access read:devices write:devices"
    timeout_s: float = 10.0


class DeviceApiConfig(BaseModel):
    base_url: str = "https://api.yotoplay.com"
    timeout_s: float = 10.0


class ChannelConfig(BaseModel):
    """MQTT-over-websocket device channel settings"""
    host: str = "aqrphjqbp3u2z-ats.iot.eu-west-2.amazonaws.com"
    port: int = 443
    ws_path: str = "/mqtt"
    keepalive_s: int = 300
    connect_timeout_s: float = 10.0
    publish_timeout_s: float = 5.0
    client_id_prefix: str = "SAMPLE"
    authorizer_name: str = "PublicJWTAuthorizer"


class TimingsConfig(BaseModel):
    """Cadences and windows used by the drivers"""
    poll_interval_s: int = Field(default=30, ge=1)
    background_min_interval_s: int = Field(default=60, ge=1)
    reminder_delay_s: int = 30
    heads_up_s: int = 60
    horizon_days: int = 7
    retention_days: int = 30
    wake_budget_s: float = 25.0


class StorageConfig(BaseModel):
    """Encrypted credential store location"""
    path: str = os.path.join(os.path.expanduser("~"), ".card_scheduler", "store.bin")
    key: Optional[str] = None
    key_prefix: str = "card_scheduler_"


class CardSchedulerConfig(BaseModel):
    """Top-level configuration"""
    oauth: OAuthConfig = Field(default_factory=OAuthConfig)
    device_api: DeviceApiConfig = Field(default_factory=DeviceApiConfig)
    channel: ChannelConfig = Field(default_factory=ChannelConfig)
    timings: TimingsConfig = Field(default_factory=TimingsConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "CardSchedulerConfig":
        """
        Build configuration from CARD_SCHEDULER_* environment variables.

        Unset variables fall back to the model defaults.
        """
        env = os.environ
        oauth = OAuthConfig(
            client_id=env.get("CARD_SCHEDULER_CLIENT_ID", ""),
            redirect_uri=env.get("CARD_SCHEDULER_REDIRECT_URI", ""),
        )
        if env.get("CARD_SCHEDULER_TOKEN_URL"):
            oauth.token_url = env["CARD_SCHEDULER_TOKEN_URL"]
        if env.get("CARD_SCHEDULER_AUTHORIZE_URL"):
            oauth.authorize_url = env["CARD_SCHEDULER_AUTHORIZE_URL"]

        device_api = DeviceApiConfig()
        if env.get("CARD_SCHEDULER_API_URL"):
            device_api.base_url = env["CARD_SCHEDULER_API_URL"]

        channel = ChannelConfig()
        if env.get("CARD_SCHEDULER_MQTT_HOST"):
            channel.host = env["CARD_SCHEDULER_MQTT_HOST"]

        timings = TimingsConfig(
            poll_interval_s=int(env.get("CARD_SCHEDULER_POLL_INTERVAL_S", 30)),
            background_min_interval_s=int(env.get("CARD_SCHEDULER_BACKGROUND_INTERVAL_S", 60)),
        )

        storage = StorageConfig(key=env.get("CARD_SCHEDULER_STORE_KEY"))
        if env.get("CARD_SCHEDULER_STORE_PATH"):
            storage.path = env["CARD_SCHEDULER_STORE_PATH"]

        return cls(
            oauth=oauth,
            device_api=device_api,
            channel=channel,
            timings=timings,
            storage=storage,
            log_level=env.get("CARD_SCHEDULER_LOG_LEVEL", "INFO"),
        )
