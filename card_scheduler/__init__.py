"""
Card Scheduler

Fire recurring card playback on networked audio players, from a foreground
poller while the process runs and from a background wake handler backed by a
proactive notification horizon.
"""

__version__ = "1.0.0"
__author__ = "card-scheduler"

from .config import CardSchedulerConfig
from .context import SchedulerContext
from .models import Schedule, ScheduledTime, TokenPair, ExecutionOutcome, ExecutionReport

__all__ = [
    "CardSchedulerConfig",
    "SchedulerContext",
    "Schedule",
    "ScheduledTime",
    "TokenPair",
    "ExecutionOutcome",
    "ExecutionReport",
]
