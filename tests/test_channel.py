"""
Tests for the MQTT device channel
"""

import json
from unittest.mock import Mock, patch

import paho.mqtt.client as mqtt
import pytest

from card_scheduler.channel import MqttDeviceChannel, build_play_payload
from card_scheduler.config import ChannelConfig
from card_scheduler.errors import ChannelPlayFailed, ChannelUnavailable


@pytest.fixture
def cfg():
    return ChannelConfig(host="broker.example.com", connect_timeout_s=0.1, publish_timeout_s=0.1)


@pytest.fixture
def client():
    with patch('card_scheduler.channel.mqtt.Client') as mock_client_cls:
        yield mock_client_cls.return_value


def connected_channel(client, cfg):
    channel = MqttDeviceChannel("player-1", "access-token", cfg)
    channel._on_connect(client, None, None, Mock(is_failure=False), None)
    client.is_connected.return_value = True
    return channel


class TestPayload:

    def test_minimal(self):
        assert build_play_payload("https://yoto.io/c1") == {"uri": "https://yoto.io/c1"}

    def test_options_use_wire_names(self):
        payload = build_play_payload("https://yoto.io/c1", chapter_key="01", seconds_in=5, cut_off=None)
        assert payload == {"uri": "https://yoto.io/c1", "chapterKey": "01", "secondsIn": 5}


class TestMqttDeviceChannel:
    """Test connection and publish behavior"""

    def test_authenticates_with_token(self, client, cfg):
        MqttDeviceChannel("player-1", "access-token", cfg)

        client.username_pw_set.assert_called_once_with(
            "player-1?x-amz-customauthorizer-name=PublicJWTAuthorizer", "access-token")
        client.tls_set.assert_called_once()
        client.ws_set_options.assert_called_once_with(path="/mqtt")

    def test_connect_unreachable(self, client, cfg):
        client.connect.side_effect = OSError("unreachable")
        with pytest.raises(ChannelUnavailable):
            MqttDeviceChannel("player-1", "access-token", cfg).connect()

    def test_connect_timeout(self, client, cfg):
        channel = MqttDeviceChannel("player-1", "access-token", cfg)
        with pytest.raises(ChannelUnavailable):
            channel.connect()
        client.loop_stop.assert_called_once()

    def test_refused_connection_is_unhealthy(self, client, cfg):
        channel = MqttDeviceChannel("player-1", "access-token", cfg)
        channel._on_connect(client, None, None, Mock(is_failure=True), None)
        assert channel.is_healthy() is False

    def test_play_publishes_start_command(self, client, cfg):
        info = Mock(rc=mqtt.MQTT_ERR_SUCCESS)
        info.is_published.return_value = True
        client.publish.return_value = info
        channel = connected_channel(client, cfg)

        channel.play("player-1", "https://yoto.io/c1")

        args, kwargs = client.publish.call_args
        assert args[0] == "device/player-1/command/card/start"
        assert json.loads(args[1]) == {"uri": "https://yoto.io/c1"}
        assert kwargs["qos"] == 1

    def test_play_not_acknowledged(self, client, cfg):
        info = Mock(rc=mqtt.MQTT_ERR_SUCCESS)
        info.is_published.return_value = False
        client.publish.return_value = info

        with pytest.raises(ChannelPlayFailed):
            connected_channel(client, cfg).play("player-1", "https://yoto.io/c1")

    def test_play_rejected(self, client, cfg):
        client.publish.return_value = Mock(rc=mqtt.MQTT_ERR_NO_CONN)

        with pytest.raises(ChannelPlayFailed):
            connected_channel(client, cfg).play("player-1", "https://yoto.io/c1")

    def test_play_when_disconnected(self, client, cfg):
        channel = connected_channel(client, cfg)
        channel._on_disconnect(client, None, None, Mock(), None)

        with pytest.raises(ChannelUnavailable):
            channel.play("player-1", "https://yoto.io/c1")
        client.publish.assert_not_called()

    def test_close(self, client, cfg):
        channel = connected_channel(client, cfg)
        channel.close()
        client.disconnect.assert_called_once()
        client.loop_stop.assert_called_once()
        assert channel.is_healthy() is False
