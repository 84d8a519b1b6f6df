"""Native OS notifications for sync results."""

import logging
import platform
import shutil
import subprocess

logger = logging.getLogger(__name__)

APP_TITLE = "SuiteWaste Sync"


def send_notification(title: str, message: str, sound: bool = False) -> None:
    """Send a native OS notification.

    Args:
        title: Notification title.
        message: Notification body text.
        sound: Whether to play a sound (macOS only).
    """
    system = platform.system()
    try:
        if system == "Darwin":
            _send_macos(title, message, sound)
        elif system == "Linux":
            _send_linux(title, message)
        else:
            logger.debug(f"Notifications not supported on {system}")
    except Exception as e:
        logger.debug(f"Failed to send notification: {e}")


def _send_macos(title: str, message: str, sound: bool) -> None:
    """Send notification via osascript on macOS."""
    # Escape double quotes and backslashes for AppleScript string literals.
    safe_title = title.replace("\\", "\\\\").replace('"', '\\"')
    safe_message = message.replace("\\", "\\\\").replace('"', '\\"')

    sound_clause = ' sound name "default"' if sound else ""
    script = (
        f'display notification "{safe_message}" '
        f'with title "{safe_title}"{sound_clause}'
    )
    subprocess.run(
        ["osascript", "-e", script],
        capture_output=True,
        timeout=5,
    )


def _send_linux(title: str, message: str) -> None:
    """Send notification via notify-send when a desktop session has it."""
    if shutil.which("notify-send") is None:
        logger.debug("notify-send not available")
        return
    subprocess.run(
        ["notify-send", "--app-name", APP_TITLE, title, message],
        capture_output=True,
        timeout=5,
    )


class OSNotifier:
    """Notifier that logs every message and optionally raises an OS toast."""

    def __init__(self, enabled: bool = True):
        self.enabled = enabled

    def notify(self, title: str, message: str) -> None:
        logger.info(f"{title}: {message}")
        if self.enabled:
            send_notification(title, message)
