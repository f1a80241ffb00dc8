"""Desktop notification sink."""

import logging
import os
import shutil
import subprocess
import sys
import threading
from typing import List, Optional

from .config import NotifierConfig
from .models import NotifyRequest

logger = logging.getLogger(__name__)

NOTIFY_TIMEOUT = 30  # seconds


def _escape(text: str) -> str:
    """terminal-notifier treats a leading '[' or '"' specially."""
    if text.startswith("[") or text.startswith('"'):
        return "\\" + text
    return text


class DesktopNotifier:
    """
    Presents notifications through the platform's native notifier.

    Safe to call from several watcher threads at once; dispatch is
    serialised and never raises back into the caller. When no native
    notifier is available, notifications are written to the log instead.
    """

    def __init__(self, config: Optional[NotifierConfig] = None, platform: Optional[str] = None):
        self.config = config or NotifierConfig()
        self.platform = platform or sys.platform
        self._lock = threading.Lock()

    def notify(self, request: NotifyRequest) -> None:
        """
        Present one notification.

        Args:
            request: The notification to show.
        """
        title = request.title
        if request.label_prefix:
            title = request.label_prefix + title

        with self._lock:
            command = self._build_command(request, title)
            if command is None:
                self._log_fallback(title, request.message)
                return

            try:
                subprocess.run(
                    command,
                    stdout=subprocess.DEVNULL,
                    stderr=subprocess.DEVNULL,
                    timeout=NOTIFY_TIMEOUT,
                    check=True,
                )
            except (OSError, subprocess.SubprocessError) as e:
                logger.warning(f"Notifier command failed ({command[0]}): {e}")
                self._log_fallback(title, request.message)

    def _build_command(self, request: NotifyRequest, title: str) -> Optional[List[str]]:
        if self.platform == "darwin":
            path = self.config.terminal_notifier_path
            if not os.path.exists(path):
                return None
            command = [
                path,
                "-group", request.group,
                "-title", _escape(title),
            ]
            if request.subtitle:
                command += ["-subtitle", _escape(request.subtitle)]
            command += [
                "-message", _escape(request.message),
                "-sender", request.sender_tag or self.config.sender_tag,
            ]
            return command

        if self.platform.startswith("linux"):
            notify_send = shutil.which("notify-send")
            if notify_send is None:
                return None
            body = request.message
            if request.subtitle:
                body = f"{request.subtitle}\n{body}"
            return [notify_send, "-a", "imapbiff", "--", title, body]

        return None

    @staticmethod
    def _log_fallback(title: str, message: str) -> None:
        logger.info(f"need to notify: [{title}] [{message}]")
