"""
Logging helpers shared across the scheduler modules
"""

import logging
from typing import Any, Dict, Optional

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"

_configured = False


def setup_logging(level: str = "INFO") -> None:
    """
    Configure the root logger once.

    Args:
        level: Log level name (DEBUG, INFO, WARNING, ...)
    """
    global _configured
    root = logging.getLogger()
    root.setLevel(level.upper())
    if _configured:
        return
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    root.addHandler(handler)
    _configured = True


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)


def log_schedule_event(logger: logging.Logger, event: str, schedule_id: str, detail: str = "") -> None:
    suffix = f": {detail}" if detail else ""
    logger.info(f"[{event}] schedule {schedule_id}{suffix}")


def log_execution(logger: logging.Logger, schedule_id: str, outcome: str, card_title: str, player_name: str) -> None:
    logger.info(f"Execution of schedule {schedule_id} ('{card_title}' on {player_name}) finished: {outcome}")


def log_error(logger: logging.Logger, subject: str, error: BaseException,
              context: Optional[Dict[str, Any]] = None) -> None:
    """Log an error with its type and optional context"""
    ctx = f" {context}" if context else ""
    logger.error(f"Error for {subject}: {type(error).__name__}: {error}{ctx}")
