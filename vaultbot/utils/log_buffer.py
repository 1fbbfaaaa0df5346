import logging
import uuid
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional

from vaultbot.constants import LogType
from vaultbot.utils.logger import log

_LEVELS = {
    LogType.INFO: logging.INFO,
    LogType.SUCCESS: logging.INFO,
    LogType.TRADE: logging.INFO,
    LogType.WARNING: logging.WARNING,
    LogType.ERROR: logging.ERROR,
}


@dataclass(frozen=True)
class LogEntry:
    type: LogType
    message: str
    data: Optional[dict] = None
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class LogBuffer:
    """Most recent engine log entries, newest first."""

    def __init__(self, capacity: int = 200):
        self._entries: deque[LogEntry] = deque(maxlen=capacity)

    def add(self, entry: LogEntry) -> None:
        self._entries.appendleft(entry)
        log.log(_LEVELS[entry.type], "[%s] %s", entry.type.value, entry.message)

    def entries(self) -> list[LogEntry]:
        return list(self._entries)

    def __len__(self) -> int:
        return len(self._entries)
