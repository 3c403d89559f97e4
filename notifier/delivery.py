"""
Desktop notification delivery.

Jobs carry a Notification payload; when a job fires, the payload is handed
to a NotificationDispatcher, which queues it for a worker thread that shows
it through a NotificationSender. The tick loop therefore never waits on a
slow notification daemon.
"""

import logging
import queue
import shlex
import shutil
import subprocess
import sys
import threading
import time
from dataclasses import dataclass
from typing import Optional, List

logger = logging.getLogger(__name__)

BACKENDS = ("auto", "notify-send", "osascript", "command", "log")

# http://0pointer.de/public/sound-naming-spec.html
LINUX_SOUND = "dialog-information"

URGENCY = {
    "Info": "normal",
    "Warning": "normal",
    "Critical": "critical",
}


class DeliveryError(Exception):
    """Raised when a notification could not be shown."""
    pass


@dataclass(frozen=True)
class Notification:
    """What to show when a job fires."""
    label: str
    level: str = "Info"


def _applescript_string(text: str) -> str:
    return '"' + text.replace('\\', '\\\\').replace('"', '\\"') + '"'


def resolve_backend(backend: str = "auto") -> str:
    """
    Pick a concrete backend for this platform.

    'auto' becomes notify-send on Linux/BSD when it is installed,
    osascript on macOS, and 'log' everywhere else.
    """
    if backend not in BACKENDS:
        raise ValueError(f"Unknown delivery backend '{backend}' (expected one of {', '.join(BACKENDS)})")
    if backend != "auto":
        return backend
    if sys.platform == "darwin":
        return "osascript"
    if sys.platform.startswith(("linux", "freebsd", "openbsd")) and shutil.which("notify-send"):
        return "notify-send"
    return "log"


class NotificationSender:
    """
    Shows notifications by running a platform command.

    The 'command' backend runs a user template where {label} and {level}
    are substituted (shell-quoted), e.g. "dunstify {label}".
    """

    def __init__(
        self,
        backend: str = "auto",
        timeout: int = 10,
        app_name: str = "Notifier",
        command: Optional[str] = None
    ):
        self.backend = resolve_backend(backend)
        self.timeout = timeout
        self.app_name = app_name
        self.command = command

        if self.backend == "command" and not command:
            raise ValueError("The 'command' delivery backend needs a command template")

        logger.debug(f"Notification backend: {self.backend}")

    def build_command(self, notification: Notification) -> Optional[List[str]]:
        """
        Build the argv used to show a notification.

        Returns:
            Command arguments, or None for the 'log' backend
        """
        if self.backend == "notify-send":
            return [
                "notify-send",
                "--urgency", URGENCY.get(notification.level, "normal"),
                "--hint", f"string:sound-name:{LINUX_SOUND}",
                "--app-name", self.app_name,
                self.app_name,
                notification.label,
            ]
        if self.backend == "osascript":
            script = (
                f"display notification {_applescript_string(notification.label)} "
                f"with title {_applescript_string(self.app_name)}"
            )
            return ["osascript", "-e", script]
        if self.backend == "command":
            return shlex.split(self.command.format(
                label=shlex.quote(notification.label),
                level=shlex.quote(notification.level)
            ))
        return None

    def send(self, notification: Notification):
        """
        Show a notification.

        Raises:
            DeliveryError: If the command fails, times out or is missing
        """
        command = self.build_command(notification)
        if command is None:
            logger.info(f"[{notification.level}] {notification.label}")
            return

        logger.debug(f"Running: {' '.join(command)}")
        try:
            result = subprocess.run(
                command,
                capture_output=True,
                text=True,
                timeout=self.timeout
            )
        except subprocess.TimeoutExpired as e:
            raise DeliveryError(f"Notification command timed out after {self.timeout}s") from e
        except OSError as e:
            raise DeliveryError(f"Could not run notification command: {e}") from e

        if result.returncode != 0:
            raise DeliveryError(
                f"Notification command failed with exit code {result.returncode}: "
                f"{result.stderr.strip()}"
            )


class NotificationDispatcher:
    """
    Bounded queue of notifications drained by one worker thread.

    submit() never blocks: when the queue is full the notification is
    dropped and a warning is logged. Failed deliveries are logged and not
    retried; the job's next due occurrence shows it again.
    """

    _STOP = object()

    def __init__(self, sender: NotificationSender, maxsize: int = 100):
        self.sender = sender
        self._queue = queue.Queue(maxsize=maxsize)
        self._thread: Optional[threading.Thread] = None
        self._stop_requested = False
        self.stats = {'delivered': 0, 'failed': 0, 'dropped': 0}

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self):
        """Start the worker thread."""
        if self.running:
            return
        self._stop_requested = False
        self._thread = threading.Thread(
            target=self._worker,
            name="notification-dispatcher",
            daemon=True
        )
        self._thread.start()
        logger.debug("Notification dispatcher started")

    def submit(self, notification: Notification) -> bool:
        """
        Queue a notification for delivery.

        Returns:
            True if queued, False if the queue was full
        """
        try:
            self._queue.put_nowait(notification)
        except queue.Full:
            self.stats['dropped'] += 1
            logger.warning(f"Notification queue full, dropping '{notification.label}'")
            return False
        return True

    def stop(self, timeout: Optional[float] = 5) -> bool:
        """
        Deliver what is queued, then stop the worker thread.

        Args:
            timeout: Seconds to wait for the queue to drain (None waits forever)

        Returns:
            True if the worker stopped, False if it was still busy at the timeout
        """
        if not self.running:
            return True

        deadline = None if timeout is None else time.monotonic() + timeout
        # A timed-out stop() already queued the sentinel
        if not self._stop_requested:
            try:
                self._queue.put(self._STOP, timeout=timeout)
            except queue.Full:
                logger.warning(f"Notification queue still full after {timeout}s, worker left running")
                return False
            self._stop_requested = True

        remaining = None if deadline is None else max(0.0, deadline - time.monotonic())
        self._thread.join(remaining)
        if self._thread.is_alive():
            logger.warning(f"Notification dispatcher did not stop within {timeout}s")
            return False

        self._thread = None
        logger.debug("Notification dispatcher stopped")
        return True

    def _worker(self):
        while True:
            item = self._queue.get()
            try:
                if item is self._STOP:
                    return
                self._deliver(item)
            finally:
                self._queue.task_done()

    def _deliver(self, notification: Notification):
        try:
            self.sender.send(notification)
        except DeliveryError as e:
            self.stats['failed'] += 1
            logger.error(f"Failed to show notification '{notification.label}': {e}")
        else:
            self.stats['delivered'] += 1
            logger.info(f"Showed notification '{notification.label}'")

    def join(self):
        """Block until every queued notification has been handled."""
        self._queue.join()
