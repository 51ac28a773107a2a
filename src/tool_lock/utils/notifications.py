import shutil
import subprocess
from abc import ABC, abstractmethod

from loguru import logger


class Notifier(ABC):
    """Best-effort user notification. Implementations must never raise."""

    @abstractmethod
    def notify(self, title: str, body: str) -> None: ...


class NullNotifier(Notifier):
    """Only logs. Used in tests and on hosts without a notification daemon."""

    def notify(self, title: str, body: str) -> None:
        logger.info(f"Notification: {title} | {body}")


class DesktopNotifier(Notifier):
    """Sends a desktop notification using notify-send."""

    def __init__(self, app_name: str = "tool-lock", timeout: float = 5.0):
        self.app_name = app_name
        self.timeout = timeout

    def notify(self, title: str, body: str) -> None:
        logger.info(f"Sending notification: {title} | {body}")
        cmd = ["notify-send", title, body, "-a", self.app_name]
        try:
            subprocess.run(cmd, check=False, timeout=self.timeout)
        except FileNotFoundError:
            logger.error("notify-send not found. Install libnotify-bin.")
        except (OSError, subprocess.TimeoutExpired) as e:
            logger.error(f"Failed to send notification: {e}")


def default_notifier(app_name: str) -> Notifier:
    if shutil.which("notify-send"):
        return DesktopNotifier(app_name)
    logger.debug("notify-send unavailable, notifications will only be logged")
    return NullNotifier()
