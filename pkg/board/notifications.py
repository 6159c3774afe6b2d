"""Toast-style notifications emitted by the reconciler."""
import logging
from dataclasses import dataclass, field
from typing import Callable, Dict, Any, List, Optional

from .errors import ErrorKind
from .schema import utc_now

logger = logging.getLogger(__name__)


@dataclass
class Notification:
    """One user-facing message."""
    level: str                          # "success" | "error"
    message: str
    item_id: str = ""
    kind: Optional[ErrorKind] = None    # Set on failures only
    timestamp: str = field(default_factory=utc_now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "level": self.level,
            "message": self.message,
            "item_id": self.item_id,
            "kind": self.kind.value if self.kind else None,
            "timestamp": self.timestamp,
        }


class NotificationLog:
    """Collects notifications and forwards them to listeners (the UI layer)."""

    def __init__(self, maxlen: int = 100):
        self.maxlen = maxlen
        self.entries: List[Notification] = []
        self.listeners: List[Callable[[Notification], None]] = []

    def listen(self, callback: Callable[[Notification], None]) -> None:
        self.listeners.append(callback)

    def notify(self, notification: Notification) -> Notification:
        self.entries.append(notification)
        del self.entries[:-self.maxlen]
        for callback in self.listeners:
            try:
                callback(notification)
            except Exception as e:
                logger.error(f"Error in notification listener: {e}")
        return notification

    def success(self, message: str, item_id: str = "") -> Notification:
        return self.notify(Notification("success", message, item_id=item_id))

    def error(self, message: str, kind: ErrorKind, item_id: str = "") -> Notification:
        return self.notify(Notification("error", message, item_id=item_id, kind=kind))

    def __len__(self) -> int:
        return len(self.entries)
