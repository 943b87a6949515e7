import logging
from collections import deque
from dataclasses import dataclass
from enum import Enum
from typing import Deque, List, Protocol

from .config import get_config

logger = logging.getLogger(__name__)


class Permission(str, Enum):
    default = "default"
    granted = "granted"
    denied = "denied"


@dataclass(frozen=True)
class Toast:
    level: str
    message: str
    duration_ms: int = 4000


@dataclass(frozen=True)
class SystemNotification:
    title: str
    body: str


class SystemNotificationChannel(Protocol):
    def send(self, notification: SystemNotification) -> bool:
        ...


@dataclass
class LoggingSystemChannel:
    """Stands in for the device's notification centre."""

    sent: List[SystemNotification]

    def send(self, notification: SystemNotification) -> bool:
        logger.info("system notification title=%s body=%s", notification.title, notification.body)
        self.sent.append(notification)
        return True


class Notifier:
    """Transient in-app toasts plus permission-gated system notifications."""

    def __init__(self, channel: SystemNotificationChannel | None = None, max_toasts: int = 50):
        self.toasts: Deque[Toast] = deque(maxlen=max_toasts)
        self.system_sent: List[SystemNotification] = []
        self.channel = channel or LoggingSystemChannel(self.system_sent)
        self.permission = Permission.default

    def info(self, message: str, duration_ms: int = 4000) -> Toast:
        return self._toast("info", message, duration_ms)

    def success(self, message: str, duration_ms: int = 4000) -> Toast:
        return self._toast("success", message, duration_ms)

    def error(self, message: str, duration_ms: int = 4000) -> Toast:
        return self._toast("error", message, duration_ms)

    def _toast(self, level: str, message: str, duration_ms: int) -> Toast:
        toast = Toast(level, message, duration_ms)
        self.toasts.append(toast)
        logger.debug("toast %s: %s", level, message)
        return toast

    def set_permission(self, granted: bool) -> None:
        self.permission = Permission.granted if granted else Permission.denied

    def system(self, body: str, title: str | None = None) -> bool:
        if self.permission != Permission.granted:
            return False
        return self.channel.send(SystemNotification(title or get_config().notification_title, body))

    def drain(self) -> List[Toast]:
        drained = []
        while self.toasts:
            drained.append(self.toasts.popleft())
        return drained
