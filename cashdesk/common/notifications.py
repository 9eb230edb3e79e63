"""
User-visible notifications

The cash register core reports every success and failure through a Notifier.
Delivery is fire-and-forget: the core never reads anything back.
"""
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Deque, List
import logging

logger = logging.getLogger(__name__)


class Severity(str, Enum):
    SUCCESS = "success"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


_LOG_LEVELS = {
    Severity.SUCCESS: logging.INFO,
    Severity.INFO: logging.INFO,
    Severity.WARNING: logging.WARNING,
    Severity.ERROR: logging.ERROR,
}


@dataclass(frozen=True)
class Notification:
    message: str
    severity: Severity
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class Notifier:
    """Base notifier, subclasses decide where messages go"""

    def show(self, message: str, severity: Severity = Severity.INFO) -> None:
        raise NotImplementedError


class LoggingNotifier(Notifier):
    """Writes notifications to the application log"""

    def __init__(self, name: str = "cashdesk.notifications"):
        self._logger = logging.getLogger(name)

    def show(self, message: str, severity: Severity = Severity.INFO) -> None:
        severity = Severity(severity)
        self._logger.log(_LOG_LEVELS[severity], f"[{severity.value}] {message}")


class NotificationCenter(LoggingNotifier):
    """
    Keeps the most recent notifications in memory so clients can poll them
    (GET /notifications), and mirrors them to the log.
    """

    def __init__(self, max_size: int = 50):
        super().__init__()
        self._items: Deque[Notification] = deque(maxlen=max_size)

    def show(self, message: str, severity: Severity = Severity.INFO) -> None:
        severity = Severity(severity)
        self._items.append(Notification(message=message, severity=severity))
        super().show(message, severity)

    def recent(self, limit: int = 20) -> List[Notification]:
        """Newest first"""
        if limit <= 0:
            return []
        return list(self._items)[-limit:][::-1]

    def clear(self) -> None:
        self._items.clear()
