"""
Persistent CRUD over schedule definitions
"""

import json
import threading
import time
import uuid
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional

from pydantic import ValidationError

from .credential_store import CredentialStore
from .due import is_due
from .errors import PersistenceFailure, ScheduleNotFound
from .logging_utils import get_logger, log_schedule_event
from .models import SCHEDULE_FIELDS, Schedule, as_local

logger = get_logger(__name__)

SCHEDULES_KEY = "schedules"
IMMUTABLE_FIELDS = ("id", "created_at")

ChangeListener = Callable[[str, str], None]


def generate_id() -> str:
    """Time-prefixed unique id (sorts roughly by creation time)"""
    return f"{int(time.time() * 1000):x}{uuid.uuid4().hex[:12]}"


def _normalize_keys(data: Dict[str, Any]) -> Dict[str, Any]:
    normalized = {}
    for key, value in data.items():
        if key not in SCHEDULE_FIELDS:
            raise ValueError(f"Unknown schedule field: {key}")
        normalized[SCHEDULE_FIELDS[key]] = value
    return normalized


class ScheduleStore:
    """
    Schedule list persisted as one JSON entry in the credential store.

    All read-modify-write sequences run under one re-entrant lock, so drivers
    sharing a store instance never interleave a due-check with a mark.
    """

    def __init__(self, store: CredentialStore, key_prefix: str = ""):
        self.store = store
        self._key = f"{key_prefix}{SCHEDULES_KEY}"
        self._lock = threading.RLock()
        self._listeners: List[ChangeListener] = []

    # Persistence

    def _load(self) -> List[Schedule]:
        """
        Strict load used before every write.

        Raises:
            PersistenceFailure: if the list cannot be read or a record is invalid
        """
        raw = self.store.get(self._key)
        if not raw:
            return []
        try:
            return [Schedule.from_record(record) for record in json.loads(raw)]
        except (ValueError, TypeError, ValidationError) as e:
            raise PersistenceFailure(f"Stored schedules are unreadable: {e}") from e

    def get_all(self) -> List[Schedule]:
        """Load every schedule; unreadable data is logged and treated as empty."""
        try:
            return self._load()
        except PersistenceFailure as e:
            logger.error(f"Failed to load schedules, treating store as empty: {e}")
            return []

    def _save(self, schedules: List[Schedule]) -> None:
        self.store.set(self._key, json.dumps([s.to_record() for s in schedules]))

    # Change notifications

    def subscribe(self, listener: ChangeListener) -> None:
        self._listeners.append(listener)

    def _emit(self, event: str, schedule_id: str) -> None:
        for listener in list(self._listeners):
            try:
                listener(event, schedule_id)
            except Exception as e:
                logger.error(f"Schedule change listener failed for {event} {schedule_id}: {e}")

    # CRUD

    def create(self, data: Dict[str, Any]) -> Schedule:
        """
        Create a schedule from user-supplied fields.

        Args:
            data: Schedule fields (camelCase or snake_case); id, createdAt,
                isEnabled and lastTriggered are assigned here

        Returns:
            The persisted schedule
        """
        fields = _normalize_keys(data)
        fields.update(
            id=generate_id(),
            created_at=datetime.now().astimezone(),
            last_triggered=None,
            is_enabled=True,
        )
        schedule = Schedule.model_validate(fields)

        with self._lock:
            schedules = self._load()
            schedules.append(schedule)
            self._save(schedules)

        log_schedule_event(logger, "create", schedule.id,
                           f"'{schedule.card_title}' at {schedule.scheduled_time} on {schedule.days_of_week}")
        self._emit("create", schedule.id)
        return schedule

    def get(self, schedule_id: str) -> Optional[Schedule]:
        for schedule in self.get_all():
            if schedule.id == schedule_id:
                return schedule
        return None

    def _replace(self, schedule_id: str, changes: Dict[str, Any]) -> Schedule:
        with self._lock:
            schedules = self._load()
            for index, current in enumerate(schedules):
                if current.id == schedule_id:
                    merged = current.model_dump()
                    merged.update(changes)
                    updated = Schedule.model_validate(merged)
                    schedules[index] = updated
                    self._save(schedules)
                    return updated
        raise ScheduleNotFound(schedule_id)

    def update(self, schedule_id: str, patch: Dict[str, Any]) -> Schedule:
        """
        Merge fields into an existing schedule.

        Raises:
            ScheduleNotFound: if no schedule has this id
        """
        changes = {k: v for k, v in _normalize_keys(patch).items() if k not in IMMUTABLE_FIELDS}
        updated = self._replace(schedule_id, changes)
        log_schedule_event(logger, "update", schedule_id, ", ".join(sorted(changes)))
        self._emit("update", schedule_id)
        return updated

    def toggle(self, schedule_id: str, enabled: bool) -> Schedule:
        updated = self._replace(schedule_id, {"is_enabled": enabled})
        log_schedule_event(logger, "toggle", schedule_id, "enabled" if enabled else "disabled")
        self._emit("toggle", schedule_id)
        return updated

    def delete(self, schedule_id: str) -> None:
        with self._lock:
            schedules = self._load()
            remaining = [s for s in schedules if s.id != schedule_id]
            if len(remaining) != len(schedules):
                self._save(remaining)
        log_schedule_event(logger, "delete", schedule_id)
        self._emit("delete", schedule_id)

    # Queries

    def by_player(self, player_id: str) -> List[Schedule]:
        return [s for s in self.get_all() if s.player_id == player_id]

    def by_card(self, card_id: str) -> List[Schedule]:
        return [s for s in self.get_all() if s.card_id == card_id]

    # Maintenance

    def cleanup(self, retention_days: int = 30, now: Optional[datetime] = None) -> int:
        """
        Remove non-repeating schedules older than the retention window.

        Returns:
            Number of schedules removed
        """
        cutoff = as_local(now or datetime.now()) - timedelta(days=retention_days)
        with self._lock:
            schedules = self.get_all()
            kept = [s for s in schedules if s.repeat_weekly or s.anchor() > cutoff]
            removed = len(schedules) - len(kept)
            if removed:
                self._save(kept)
                logger.info(f"Cleaned up {removed} old schedules")
        return removed

    # Execution bookkeeping

    def mark_triggered(self, schedule_id: str, when: datetime) -> Schedule:
        return self._replace(schedule_id, {"last_triggered": as_local(when)})

    def claim_if_due(self, schedule_id: str, now: datetime) -> Optional[Schedule]:
        """
        Atomically re-check that a schedule is due and mark it triggered.

        Returns:
            The claimed schedule, or None if it is gone or no longer due
            (for example because another driver claimed it first)
        """
        with self._lock:
            current = self.get(schedule_id)
            if current is None or not is_due(current, now):
                return None
            return self.mark_triggered(schedule_id, now)
