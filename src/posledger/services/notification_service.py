from __future__ import annotations

import logging
import threading
from dataclasses import replace
from typing import Callable, Optional, Protocol

from posledger.domain.ids import new_id, now_iso
from posledger.domain.models import AppNotification, Severity

log = logging.getLogger(__name__)

_LOG_LEVELS = {
    Severity.INFO: logging.INFO,
    Severity.SUCCESS: logging.INFO,
    Severity.WARNING: logging.WARNING,
    Severity.ERROR: logging.WARNING,
}


class Scheduler(Protocol):
    def call_later(self, delay_ms: int, callback: Callable[[], None]) -> None: ...


class ThreadingScheduler:
    """Runs callbacks on daemon timer threads; never blocks the caller."""

    def call_later(self, delay_ms: int, callback: Callable[[], None]) -> None:
        timer = threading.Timer(delay_ms / 1000.0, callback)
        timer.daemon = True
        timer.start()


class NotificationBus:
    def __init__(self, scheduler: Scheduler | None = None, toast_ms: int = 3000):
        self.scheduler = scheduler or ThreadingScheduler()
        self.toast_ms = int(toast_ms)
        self._lock = threading.Lock()
        self._items: list[AppNotification] = []
        self._toast: Optional[AppNotification] = None

    @property
    def notifications(self) -> list[AppNotification]:
        with self._lock:
            return list(self._items)

    @property
    def toast(self) -> Optional[AppNotification]:
        with self._lock:
            return self._toast

    def notify(self, title: str, message: str, severity: Severity = Severity.INFO) -> AppNotification:
        notif = AppNotification(
            id=new_id("NOTIF"),
            title=title,
            message=message,
            severity=Severity(severity),
            timestamp=now_iso(),
            is_read=False,
        )
        with self._lock:
            self._items.insert(0, notif)
            self._toast = notif
        log.log(_LOG_LEVELS[notif.severity], "notification severity=%s title=%s message=%s", notif.severity.value, title, message)

        self.scheduler.call_later(self.toast_ms, lambda: self.dismiss(notif.id))
        return notif

    def info(self, title: str, message: str) -> AppNotification:
        return self.notify(title, message, Severity.INFO)

    def success(self, title: str, message: str) -> AppNotification:
        return self.notify(title, message, Severity.SUCCESS)

    def warning(self, title: str, message: str) -> AppNotification:
        return self.notify(title, message, Severity.WARNING)

    def error(self, title: str, message: str) -> AppNotification:
        return self.notify(title, message, Severity.ERROR)

    def dismiss(self, notification_id: str) -> bool:
        """Hide the toast only if it is still the given notification."""
        with self._lock:
            if self._toast is not None and self._toast.id == notification_id:
                self._toast = None
                return True
            return False

    def hide_toast(self) -> None:
        with self._lock:
            self._toast = None

    def mark_all_read(self) -> None:
        with self._lock:
            self._items = [replace(n, is_read=True) for n in self._items]
            if self._toast is not None:
                self._toast = replace(self._toast, is_read=True)

    def clear_all(self) -> None:
        with self._lock:
            self._items = []

    def unread_count(self) -> int:
        with self._lock:
            return sum(1 for n in self._items if not n.is_read)
