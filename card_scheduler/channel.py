"""
Device channel: low-latency command link to a player

The channel is distinct from the Device Control REST API. Commands are
published over MQTT (websockets + TLS) to the player's command topics.
"""

import json
import threading
from typing import Any, Dict, Optional, Protocol

import paho.mqtt.client as mqtt

from .config import ChannelConfig
from .errors import ChannelPlayFailed, ChannelUnavailable
from .logging_utils import get_logger

logger = get_logger(__name__)


class DeviceChannel(Protocol):
    def connect(self) -> None: ...

    def is_healthy(self) -> bool: ...

    def play(self, player_id: str, card_uri: str, **options: Any) -> None: ...

    def close(self) -> None: ...


# Optional play parameters and their wire names
PLAY_OPTION_FIELDS = {
    "chapter_key": "chapterKey",
    "track_key": "trackKey",
    "seconds_in": "secondsIn",
    "cut_off": "cutOff",
    "any_button_stop": "anyButtonStop",
}


def build_play_payload(card_uri: str, **options: Any) -> Dict[str, Any]:
    payload: Dict[str, Any] = {"uri": card_uri}
    for name, wire_name in PLAY_OPTION_FIELDS.items():
        value = options.get(name)
        if value is not None:
            payload[wire_name] = value
    return payload


class MqttDeviceChannel:
    """MQTT channel authenticated with the user's access token"""

    def __init__(self, player_id: str, access_token: str, cfg: ChannelConfig):
        self.player_id = player_id
        self.cfg = cfg
        self._connected = threading.Event()
        self._connect_error: Optional[str] = None

        self._client = mqtt.Client(
            callback_api_version=mqtt.CallbackAPIVersion.VERSION2,
            client_id=f"{cfg.client_id_prefix}{player_id}",
            transport="websockets",
        )
        self._client.username_pw_set(
            f"{player_id}?x-amz-customauthorizer-name={cfg.authorizer_name}",
            access_token,
        )
        self._client.tls_set()
        self._client.ws_set_options(path=cfg.ws_path)
        self._client.on_connect = self._on_connect
        self._client.on_disconnect = self._on_disconnect

    def _on_connect(self, client, userdata, flags, reason_code, properties) -> None:
        if reason_code.is_failure:
            self._connect_error = str(reason_code)
            logger.error(f"Channel connection refused for player {self.player_id}: {reason_code}")
            return
        self._connected.set()
        logger.info(f"Channel connected for player {self.player_id}")

    def _on_disconnect(self, client, userdata, flags, reason_code, properties) -> None:
        self._connected.clear()
        logger.info(f"Channel disconnected for player {self.player_id}: {reason_code}")

    def connect(self) -> None:
        """
        Open the connection and wait for the broker to accept it.

        Raises:
            ChannelUnavailable: if the broker is unreachable or refuses us
                within connect_timeout_s
        """
        logger.info(f"Connecting channel to {self.cfg.host}:{self.cfg.port} for player {self.player_id}")
        try:
            self._client.connect(self.cfg.host, self.cfg.port, keepalive=self.cfg.keepalive_s)
        except (OSError, ValueError) as e:
            raise ChannelUnavailable(f"Could not reach broker: {e}") from e

        self._client.loop_start()
        if not self._connected.wait(self.cfg.connect_timeout_s):
            self._client.loop_stop()
            reason = self._connect_error or "connection timeout"
            raise ChannelUnavailable(f"Channel not connected for player {self.player_id}: {reason}")

    def is_healthy(self) -> bool:
        return self._connected.is_set() and self._client.is_connected()

    def play(self, player_id: str, card_uri: str, **options: Any) -> None:
        """
        Publish a card start command.

        Raises:
            ChannelUnavailable: if the channel is not connected
            ChannelPlayFailed: if the publish is rejected or not acknowledged
        """
        if not self.is_healthy():
            raise ChannelUnavailable("Channel not connected")

        topic = f"device/{player_id}/command/card/start"
        payload = build_play_payload(card_uri, **options)
        logger.info(f"Publishing card start command to {topic}: {payload}")

        try:
            info = self._client.publish(topic, json.dumps(payload), qos=1)
            if info.rc != mqtt.MQTT_ERR_SUCCESS:
                raise ChannelPlayFailed(f"Publish rejected: {mqtt.error_string(info.rc)}")
            info.wait_for_publish(timeout=self.cfg.publish_timeout_s)
        except (RuntimeError, ValueError) as e:
            raise ChannelPlayFailed(f"Publish failed: {e}") from e

        if not info.is_published():
            raise ChannelPlayFailed(f"Publish to {topic} not acknowledged within {self.cfg.publish_timeout_s}s")

    def close(self) -> None:
        try:
            self._client.disconnect()
        finally:
            self._client.loop_stop()
            self._connected.clear()
