"""
Data models for schedules, tokens and execution results
"""

import re
from dataclasses import dataclass
from datetime import datetime, time as dt_time
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_serializer, field_validator, model_validator
from pydantic.alias_generators import to_camel

_HHMM = re.compile(r"^(\d{1,2}):(\d{2})$")


def as_local(value: datetime) -> datetime:
    """Return an aware datetime in local time; naive values are taken as local wall-clock."""
    return value.astimezone()


class ScheduledTime(BaseModel):
    """Time of day a schedule fires at, detached from any calendar date"""
    model_config = ConfigDict(frozen=True)

    hour: int = Field(ge=0, le=23)
    minute: int = Field(ge=0, le=59)

    @classmethod
    def parse(cls, value: Any) -> "ScheduledTime":
        """
        Accept "HH:MM", a {hour, minute} mapping, a time/datetime, or a legacy
        ISO timestamp (reduced to its local hour and minute).
        """
        if isinstance(value, ScheduledTime):
            return value
        if isinstance(value, dict):
            return cls(hour=value["hour"], minute=value["minute"])
        if isinstance(value, datetime):
            local = as_local(value)
            return cls(hour=local.hour, minute=local.minute)
        if isinstance(value, dt_time):
            return cls(hour=value.hour, minute=value.minute)
        if isinstance(value, str):
            match = _HHMM.match(value.strip())
            if match:
                return cls(hour=int(match.group(1)), minute=int(match.group(2)))
            stamp = value.strip()
            if stamp.endswith("Z"):
                stamp = stamp[:-1] + "+00:00"
            return cls.parse(datetime.fromisoformat(stamp))
        raise ValueError(f"Unsupported scheduled time: {value!r}")

    def __str__(self) -> str:
        return f"{self.hour:02d}:{self.minute:02d}"


class Schedule(BaseModel):
    """A recurring playback command for one card on one player"""
    model_config = ConfigDict(populate_by_name=True, alias_generator=to_camel)

    id: str
    card_id: str
    card_title: str = ""
    card_uri: str
    player_id: str
    player_name: str = ""
    scheduled_time: ScheduledTime
    days_of_week: List[int] = Field(default_factory=list)
    is_enabled: bool = True
    repeat_weekly: bool = True
    created_at: datetime
    last_triggered: Optional[datetime] = None
    notify_if_offline: bool = False

    @field_validator("scheduled_time", mode="before")
    @classmethod
    def _parse_scheduled_time(cls, value: Any) -> ScheduledTime:
        return ScheduledTime.parse(value)

    @field_validator("days_of_week")
    @classmethod
    def _normalize_days(cls, value: List[int]) -> List[int]:
        for day in value:
            if not 0 <= day <= 6:
                raise ValueError(f"Weekday index out of range: {day}")
        return sorted(set(value))

    @field_validator("created_at", "last_triggered")
    @classmethod
    def _localize(cls, value: Optional[datetime]) -> Optional[datetime]:
        return as_local(value) if value is not None else None

    @model_validator(mode="after")
    def _check_days(self) -> "Schedule":
        if self.is_enabled and not self.days_of_week:
            raise ValueError("daysOfWeek must not be empty for an enabled schedule")
        return self

    @field_serializer("scheduled_time")
    def _serialize_scheduled_time(self, value: ScheduledTime) -> str:
        return str(value)

    def anchor(self) -> datetime:
        """Creation date at the scheduled time of day; used for age-based cleanup."""
        return self.created_at.replace(hour=self.scheduled_time.hour,
                                       minute=self.scheduled_time.minute,
                                       second=0, microsecond=0)

    def to_record(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, mode="json")

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> "Schedule":
        return cls.model_validate(record)


# Maps both camelCase aliases and snake_case names to field names
SCHEDULE_FIELDS: Dict[str, str] = {}
for _name, _info in Schedule.model_fields.items():
    SCHEDULE_FIELDS[_name] = _name
    SCHEDULE_FIELDS[_info.alias or _name] = _name


class TokenPair(BaseModel):
    model_config = ConfigDict(populate_by_name=True, alias_generator=to_camel)

    access_token: str
    refresh_token: Optional[str] = None


class ExecutionOutcome(str, Enum):
    """Result of a single execution attempt"""
    PLAYED = "played"
    PLAY_FAILED = "play_failed"
    OFFLINE = "offline"
    UNAUTHENTICATED = "unauthenticated"


@dataclass
class ExecutionReport:
    """What happened when a schedule fired"""
    schedule_id: str
    outcome: ExecutionOutcome
    error: Optional[str] = None

    @property
    def played(self) -> bool:
        return self.outcome == ExecutionOutcome.PLAYED

    def to_dict(self) -> Dict[str, Any]:
        return {
            "schedule_id": self.schedule_id,
            "outcome": self.outcome.value,
            "error": self.error,
        }
