"""
Tests for the Device Control REST client
"""

from unittest.mock import Mock, patch

import pytest

from card_scheduler.config import DeviceApiConfig
from card_scheduler.device_api import Card, DeviceControlApi, Player
from card_scheduler.errors import DeviceApiError, TokenMissing


def api_response(payload, status=200):
    response = Mock()
    response.ok = 200 <= status < 300
    response.status_code = status
    response.text = "error body"
    response.json.return_value = payload
    return response


@pytest.fixture
def api():
    tokens = Mock()
    tokens.get_valid.return_value = "access-token"
    return DeviceControlApi(tokens, DeviceApiConfig(base_url="https://api.example.com"))


class TestPlayerNormalization:
    """Test raw device record normalization"""

    def test_device_record(self):
        player = Player.model_validate({
            "deviceId": "d1",
            "name": "Kitchen",
            "deviceType": "v3",
            "online": True,
            "releaseChannel": "stable",
            "deviceGroup": "home",
        })
        assert player.id == "d1"
        assert player.name == "Kitchen"
        assert player.model == "v3"
        assert player.is_online is True
        assert player.firmware_version == "stable"

    def test_fallback_fields(self):
        player = Player.model_validate({"id": "d2", "description": "Den", "deviceFamily": "mini"})
        assert (player.id, player.name, player.model) == ("d2", "Den", "mini")
        assert player.is_online is False

    def test_defaults(self):
        player = Player.model_validate({"deviceId": "d3"})
        assert player.name == "Unknown Device"
        assert player.model == "Player"


class TestCardNormalization:

    def test_card_record(self):
        card = Card.model_validate({"cardId": "c1", "title": "Stories", "metadata": {"cover": {"imageL": "img"}}})
        assert card.uri == "https://yoto.io/c1"
        assert card.cover_url == "img"

    def test_explicit_uri(self):
        card = Card.model_validate({"id": "c2", "name": "Songs", "uri": "https://yoto.io/custom"})
        assert card.title == "Songs"
        assert card.uri == "https://yoto.io/custom"


class TestDeviceControlApi:
    """Test authenticated requests"""

    @patch('card_scheduler.device_api.requests.get')
    def test_get_players(self, mock_get, api):
        mock_get.return_value = api_response({"devices": [{"deviceId": "d1", "name": "Kitchen"}]})

        players = api.get_players()

        assert [p.id for p in players] == ["d1"]
        url = mock_get.call_args.args[0]
        assert url == "https://api.example.com/device-v2/devices/mine"
        assert mock_get.call_args.kwargs["headers"]["Authorization"] == "Bearer access-token"

    @patch('card_scheduler.device_api.requests.get')
    def test_get_player_unwraps_device(self, mock_get, api):
        mock_get.return_value = api_response({"device": {"deviceId": "d1", "online": True}})
        assert api.get_player("d1").is_online is True

    @patch('card_scheduler.device_api.requests.get')
    def test_get_cards_envelopes(self, mock_get, api):
        mock_get.return_value = api_response({"cards": [{"card": {"cardId": "c1", "title": "A"}}]})
        assert [c.id for c in api.get_cards()] == ["c1"]

        mock_get.return_value = api_response([{"cardId": "c2", "title": "B"}])
        assert [c.id for c in api.get_cards()] == ["c2"]

    @patch('card_scheduler.device_api.requests.get')
    def test_invalid_card_envelope(self, mock_get, api):
        mock_get.return_value = api_response({"cards": "nope"})
        with pytest.raises(DeviceApiError):
            api.get_cards()

    @patch('card_scheduler.device_api.requests.get')
    def test_error_status(self, mock_get, api):
        mock_get.return_value = api_response({}, status=500)
        with pytest.raises(DeviceApiError) as excinfo:
            api.get_profile()
        assert excinfo.value.status == 500

    @patch('card_scheduler.device_api.requests.get')
    def test_missing_token(self, mock_get, api):
        api.tokens.get_valid.return_value = None
        with pytest.raises(TokenMissing):
            api.get_players()
        mock_get.assert_not_called()
