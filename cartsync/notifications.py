"""
User-visible toasts raised by cart and wishlist operations.
"""
import logging
from collections import deque
from typing import Deque, List, Optional

from cartsync.config import Config
from cartsync.models import Notification

logger = logging.getLogger(__name__)


class Notifier:
    """Bounded queue of toasts waiting to be shown to the visitor"""

    def __init__(self, max_size: Optional[int] = None):
        self._queue: Deque[Notification] = deque(maxlen=max_size or Config.MAX_NOTIFICATIONS)

    def notify(self, message: str, level: str = "info") -> Notification:
        notification = Notification(level=level, message=message)
        self._queue.append(notification)
        log = logger.warning if level == "error" else logger.info
        log(f"Toast ({level}): {message}")
        return notification

    def error(self, message: str) -> Notification:
        return self.notify(message, "error")

    def drain(self) -> List[Notification]:
        """Return and forget every queued toast"""
        notifications = list(self._queue)
        self._queue.clear()
        return notifications
