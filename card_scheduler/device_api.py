"""
Device Control REST client for player and card metadata
"""

from typing import Any, ClassVar, Dict, List, Optional

import requests
from pydantic import BaseModel, model_validator

from .config import DeviceApiConfig
from .errors import DeviceApiError, TokenMissing
from .logging_utils import get_logger
from .tokens import TokenLifecycleManager

logger = get_logger(__name__)


def _first_present(raw: Dict[str, Any], fields: List[str], default: Any = None) -> Any:
    """Value of the first field in priority order that is set and non-empty"""
    for name in fields:
        value = raw.get(name)
        if value not in (None, ""):
            return value
    return default


class Player(BaseModel):
    """Player record normalized from the devices endpoint"""
    id: str
    name: str
    model: str
    firmware_version: Optional[str] = None
    is_online: bool = False
    device_group: Optional[str] = None

    # Field priority when reading raw device records
    ID_FIELDS: ClassVar[List[str]] = ["deviceId", "id"]
    NAME_FIELDS: ClassVar[List[str]] = ["name", "description"]
    MODEL_FIELDS: ClassVar[List[str]] = ["deviceType", "deviceFamily"]

    @model_validator(mode="before")
    @classmethod
    def _normalize(cls, raw: Any) -> Any:
        if not isinstance(raw, dict) or "is_online" in raw:
            return raw
        return {
            "id": _first_present(raw, cls.ID_FIELDS),
            "name": _first_present(raw, cls.NAME_FIELDS, "Unknown Device"),
            "model": _first_present(raw, cls.MODEL_FIELDS, "Player"),
            "firmware_version": raw.get("releaseChannel"),
            "is_online": bool(raw.get("online", False)),
            "device_group": raw.get("deviceGroup"),
        }


class Card(BaseModel):
    """Card record normalized from the library endpoint"""
    id: str
    title: str
    uri: str
    description: Optional[str] = None
    cover_url: Optional[str] = None

    ID_FIELDS: ClassVar[List[str]] = ["cardId", "id"]
    TITLE_FIELDS: ClassVar[List[str]] = ["title", "name"]
    COVER_FIELDS: ClassVar[List[str]] = ["coverUrl", "imageUrl"]

    @model_validator(mode="before")
    @classmethod
    def _normalize(cls, raw: Any) -> Any:
        if not isinstance(raw, dict) or "cover_url" in raw:
            return raw
        card_id = _first_present(raw, cls.ID_FIELDS)
        metadata = raw.get("metadata") or {}
        return {
            "id": card_id,
            "title": _first_present(raw, cls.TITLE_FIELDS, "Untitled"),
            "uri": raw.get("uri") or f"https://yoto.io/{card_id}",
            "description": raw.get("description") or metadata.get("description"),
            "cover_url": _first_present(raw, cls.COVER_FIELDS) or (metadata.get("cover") or {}).get("imageL"),
        }


# Envelope keys that may hold the card list, in priority order
CARD_LIST_FIELDS = ["cards", "data"]


class DeviceControlApi:
    """Authenticated reads of player and card metadata"""

    def __init__(self, tokens: TokenLifecycleManager, cfg: DeviceApiConfig):
        self.tokens = tokens
        self.cfg = cfg

    def _get(self, endpoint: str) -> Any:
        token = self.tokens.get_valid()
        if not token:
            raise TokenMissing("No valid access token for Device Control API")

        url = f"{self.cfg.base_url}{endpoint}"
        response = requests.get(
            url,
            headers={"Authorization": f"Bearer {token}", "Accept": "application/json"},
            timeout=self.cfg.timeout_s,
        )
        if not response.ok:
            logger.error(f"API request to {endpoint} failed: {response.status_code}")
            raise DeviceApiError(response.status_code, response.text)
        return response.json()

    def get_profile(self) -> Dict[str, Any]:
        return self._get("/v1/me")

    def get_players(self) -> List[Player]:
        response = self._get("/device-v2/devices/mine")
        devices = response.get("devices", []) if isinstance(response, dict) else []
        players = [Player.model_validate(device) for device in devices]
        logger.info(f"Fetched {len(players)} players")
        return players

    def get_player(self, player_id: str) -> Player:
        response = self._get(f"/device-v2/devices/{player_id}")
        if isinstance(response, dict) and isinstance(response.get("device"), dict):
            response = response["device"]
        return Player.model_validate(response)

    def get_cards(self) -> List[Card]:
        response = self._get("/card/family/library")
        if isinstance(response, list):
            records = response
        else:
            records = _first_present(response, CARD_LIST_FIELDS, [])
        if not isinstance(records, list):
            raise DeviceApiError(200, "Invalid response format from cards API")
        cards = [Card.model_validate(record.get("card", record)) for record in records]
        logger.info(f"Fetched {len(cards)} cards")
        return cards
