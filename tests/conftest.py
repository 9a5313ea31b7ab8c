"""
Shared fixtures for scheduler tests
"""

import time
from datetime import datetime

import jwt
import pytest

from card_scheduler.config import OAuthConfig
from card_scheduler.credential_store import MemoryCredentialStore
from card_scheduler.models import Schedule
from card_scheduler.schedule_store import ScheduleStore
from card_scheduler.tokens import TokenLifecycleManager

# Monday 2024-01-01 07:30 local time
MONDAY_0730 = datetime(2024, 1, 1, 7, 30).astimezone()


def make_token(exp_offset: float = 3600, **claims) -> str:
    payload = {"sub": "user-1", "exp": int(time.time() + exp_offset)}
    payload.update(claims)
    return jwt.encode(payload, "secret", algorithm="HS256")


def make_schedule(**overrides) -> Schedule:
    fields = {
        "id": "sched-1",
        "cardId": "card-1",
        "cardTitle": "Bedtime Story",
        "cardUri": "https://yoto.io/card-1",
        "playerId": "player-1",
        "playerName": "Bedroom",
        "scheduledTime": "07:30",
        "daysOfWeek": [1, 2, 3, 4, 5],
        "isEnabled": True,
        "repeatWeekly": True,
        "createdAt": datetime(2023, 12, 1, 12, 0).astimezone().isoformat(),
        "lastTriggered": None,
        "notifyIfOffline": False,
    }
    fields.update(overrides)
    return Schedule.model_validate(fields)


def new_schedule_data(**overrides) -> dict:
    data = {
        "cardId": "card-1",
        "cardTitle": "Bedtime Story",
        "cardUri": "https://yoto.io/card-1",
        "playerId": "player-1",
        "playerName": "Bedroom",
        "scheduledTime": "07:30",
        "daysOfWeek": [1, 2, 3, 4, 5],
    }
    data.update(overrides)
    return data


@pytest.fixture
def credential_store():
    return MemoryCredentialStore()


@pytest.fixture
def store(credential_store):
    return ScheduleStore(credential_store)


@pytest.fixture
def oauth_config():
    return OAuthConfig(client_id="client-1", redirect_uri="cardscheduler://callback",
                       token_url="https://login.example.com/oauth/token")


@pytest.fixture
def tokens(credential_store, oauth_config):
    return TokenLifecycleManager(credential_store, oauth_config)
