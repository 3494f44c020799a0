"""
Notification buffers for live runs.

Strategies and the live engine push leveled messages and summary lines
into a notifier during a run; nothing is delivered until
`send_all_notifications()` is called, which the live engine schedules
for process exit.  Delivery channels such as e-mail live outside this
package; `LogNotifier` delivers the digest through `logging`.
"""

from __future__ import annotations

import abc
import logging
from datetime import datetime
from enum import Enum
from typing import Dict, Iterable, List, Optional, Protocol


class Level(str, Enum):
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"

    @property
    def logging_level(self) -> int:
        return getattr(logging, self.name)


class Notifier(Protocol):
    def add_summary(self, text: str) -> None: ...
    def add_logs(self, logs: Iterable[str]) -> None: ...
    def notify(self, level: Level, text: str) -> bool: ...
    def notify_debug(self, text: str) -> bool: ...
    def notify_info(self, text: str) -> bool: ...
    def notify_warning(self, text: str) -> bool: ...
    def notify_error(self, text: str) -> bool: ...
    def send_all_notifications(self) -> bool: ...


class BufferedNotifier(abc.ABC):
    """Collects summary lines and leveled messages until flushed."""

    def __init__(self) -> None:
        self.summary: List[str] = []
        self.notifications: List[str] = []
        self.has_errors = False

    def add_summary(self, text: str) -> None:
        self.summary.append(text)

    def add_logs(self, logs: Iterable[str]) -> None:
        self.notifications.extend(logs)

    def notify(self, level: Level, text: str) -> bool:
        if level is Level.ERROR:
            self.has_errors = True
        stamp = datetime.now().strftime("%Y-%m-%d %H:%M:%S")
        self.notifications.append(f"[{stamp}][{level.value}] {text}")
        return True

    def notify_debug(self, text: str) -> bool:
        return self.notify(Level.DEBUG, text)

    def notify_info(self, text: str) -> bool:
        return self.notify(Level.INFO, text)

    def notify_warning(self, text: str) -> bool:
        return self.notify(Level.WARNING, text)

    def notify_error(self, text: str) -> bool:
        return self.notify(Level.ERROR, text)

    @abc.abstractmethod
    def send_all_notifications(self) -> bool:
        """Deliver and clear everything buffered; True on success."""

    def _drain(self) -> Dict[str, List[str]]:
        pending = {'summary': self.summary, 'notifications': self.notifications}
        self.summary = []
        self.notifications = []
        return pending


class LogNotifier(BufferedNotifier):
    """Delivers the buffered digest through a logger.

    Each buffered message is delivered once: the buffers are emptied by
    `send_all_notifications()`.
    """

    def __init__(self, logger: Optional[logging.Logger] = None) -> None:
        super().__init__()
        self.logger = logger or logging.getLogger(__name__)

    def send_all_notifications(self) -> bool:
        level = logging.ERROR if self.has_errors else logging.INFO
        pending = self._drain()
        if not pending['summary'] and not pending['notifications']:
            return True
        lines = ["Run summary:"] + pending['summary'] + ["Messages:"] + pending['notifications']
        self.logger.log(level, "\n".join(lines))
        return True


class MockNotifier(BufferedNotifier):
    """Keeps what it would have sent; used by tests and dry runs."""

    def __init__(self) -> None:
        super().__init__()
        self.sent: List[Dict[str, List[str]]] = []

    def send_all_notifications(self) -> bool:
        self.sent.append(self._drain())
        return True
