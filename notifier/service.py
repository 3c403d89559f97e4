"""
Notifier service.

Wires the pieces together:
- Reads the notifications file and registers one cron job per valid entry
- Drives JobScheduler.tick() from an APScheduler interval job
- Watches the notifications file and reloads all jobs when it changes
- Hands fired notifications to a background dispatcher
- PID file for status tracking
"""

import atexit
import json
import logging
import os
import signal
import sys
from dataclasses import asdict
from datetime import datetime
from functools import partial
from pathlib import Path
from typing import Optional, Dict, Any, List

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.schedulers.blocking import BlockingScheduler
from apscheduler.executors.pool import ThreadPoolExecutor
from apscheduler.events import EVENT_JOB_ERROR, EVENT_JOB_MISSED

from notifier.config import NotifierConfig, ConfigError
from notifier.cron import validate
from notifier.delivery import Notification, NotificationSender, NotificationDispatcher
from notifier.jobs import JobScheduler

logger = logging.getLogger(__name__)

TICK_JOB_ID = "notifier-tick"
RELOAD_JOB_ID = "notifier-reload"


def _get_data_dir() -> Path:
    """Get the data directory for PID and info files."""
    data_dir = os.environ.get('NOTIFIER_DATA_DIR')
    if data_dir:
        return Path(data_dir).expanduser()
    return Path.home() / ".local" / "share" / "notifier"


def get_pid_file_path() -> Path:
    """Get the path to the notifier PID file."""
    pid_path = os.environ.get('NOTIFIER_PID_FILE')
    if pid_path:
        return Path(pid_path)
    return _get_data_dir() / "notifier.pid"


def _get_info_file_path() -> Path:
    """Get the path to the notifier info file."""
    return _get_data_dir() / "notifier_info.json"


def _is_process_running(pid: int) -> bool:
    """Check if a process with the given PID is running."""
    try:
        os.kill(pid, 0)  # Signal 0 doesn't kill, just checks
        return True
    except OSError:
        return False


def is_notifier_running() -> tuple:
    """
    Check if the notifier is running by reading the PID file.

    Returns:
        Tuple of (is_running, pid). If not running, pid is None.
    """
    pid_file = get_pid_file_path()

    if not pid_file.exists():
        return False, None

    try:
        pid = int(pid_file.read_text().strip())
    except (ValueError, OSError):
        return False, None

    if _is_process_running(pid):
        return True, pid

    # Stale PID file, clean it up
    try:
        pid_file.unlink()
    except OSError:
        pass
    return False, None


def get_notifier_info() -> Optional[Dict[str, Any]]:
    """
    Get information about the running notifier.

    Returns:
        Dict with notifier info or None if not running.
    """
    running, pid = is_notifier_running()
    if not running:
        return None

    info = {'pid': pid, 'running': True, 'data_dir': str(_get_data_dir())}
    info_file = _get_info_file_path()
    if info_file.exists():
        try:
            with open(info_file, 'r') as f:
                info.update(json.load(f))
        except (json.JSONDecodeError, OSError):
            pass
    info['running'] = True
    info['pid'] = pid
    return info


class NotifierService:
    """
    Runs configured notifications on their cron schedules.

    JobScheduler does the due-job bookkeeping; APScheduler only provides
    the polling loop. Both interval jobs share a single worker thread, so
    a reload never runs in the middle of a tick.
    """

    def __init__(
        self,
        config_path: Optional[str] = None,
        foreground: bool = True,
        sender: Optional[NotificationSender] = None
    ):
        """
        Initialize notifier service.

        Args:
            config_path: Path to the notifications file
            foreground: If True, use a blocking scheduler (start() blocks)
            sender: Notification sender (default: built from the delivery config)
        """
        self.config = NotifierConfig(config_path)
        self.jobs = JobScheduler()

        if sender is None:
            sender = NotificationSender(**asdict(self.config.delivery))
        self.dispatcher = NotificationDispatcher(
            sender,
            maxsize=self.config.settings.queue_size
        )

        self._config_mtime = self._read_config_mtime()

        executors = {
            'default': ThreadPoolExecutor(1)
        }
        job_defaults = {
            'coalesce': True,  # Combine missed polls into one
            'max_instances': 1,
            'misfire_grace_time': None
        }

        if foreground:
            self.scheduler = BlockingScheduler(executors=executors, job_defaults=job_defaults)
        else:
            self.scheduler = BackgroundScheduler(executors=executors, job_defaults=job_defaults)

        self._setup_event_listeners()

        logger.debug(f"Notifier initialized with config: {self.config.config_path}")

    def _setup_event_listeners(self):
        """Setup APScheduler event listeners for logging."""

        def job_error_listener(event):
            logger.error(
                f"Job '{event.job_id}' raised exception: {event.exception}",
                exc_info=event.exception
            )

        def job_missed_listener(event):
            logger.warning(f"Job '{event.job_id}' missed scheduled run time")

        self.scheduler.add_listener(job_error_listener, EVENT_JOB_ERROR)
        self.scheduler.add_listener(job_missed_listener, EVENT_JOB_MISSED)

    def _setup_signal_handlers(self):
        """Setup signal handlers for graceful shutdown."""

        def signal_handler(signum, frame):
            logger.info(f"Received signal {signum}, shutting down...")
            self.stop()
            sys.exit(0)

        signal.signal(signal.SIGINT, signal_handler)
        signal.signal(signal.SIGTERM, signal_handler)

    def _read_config_mtime(self) -> Optional[float]:
        try:
            return self.config.config_path.stat().st_mtime
        except OSError:
            return None

    def load_notifications(self) -> int:
        """
        Register a job for every notification with a valid cron expression.

        Invalid entries are logged and skipped; they never become
        half-registered jobs.

        Returns:
            Number of jobs registered
        """
        registered = 0
        for details in self.config.notifications:
            if not validate(details.cron):
                logger.error(f"Skipping notification '{details.label}': invalid cron '{details.cron}'")
                continue

            notification = Notification(label=details.label, level=details.level)
            self.jobs.add(
                details.cron,
                partial(self.dispatcher.submit, notification),
                payload=notification
            )
            registered += 1

        if registered:
            logger.info(f"Scheduled {registered} notification(s)")
        else:
            logger.warning("No jobs scheduled")
        return registered

    def reload(self, force: bool = False) -> bool:
        """
        Reload notifications when the configuration file has changed.

        All jobs are removed before the file's notifications are registered
        again, so a removed or edited entry never fires with its old schedule.

        Args:
            force: Reload even if the file looks unchanged

        Returns:
            True if the jobs were reloaded
        """
        mtime = self._read_config_mtime()
        if not force and mtime == self._config_mtime:
            return False

        logger.info(f"Reloading notifications from {self.config.config_path}")
        self._config_mtime = mtime
        try:
            if mtime is None:
                self.config.notifications = []
            else:
                self.config.load()
        except ConfigError as e:
            logger.error(f"Keeping current jobs, failed to reload configuration: {e}")
            return False

        self.jobs.remove_all()
        self.load_notifications()
        return True

    def tick(self, now: Optional[datetime] = None) -> list:
        """Run one scheduler tick."""
        return self.jobs.tick(now)

    def get_jobs(self) -> List[Dict[str, Any]]:
        """
        Get list of all registered jobs.

        Returns:
            List of job information dictionaries
        """
        next_runs = self.jobs.next_run_times()
        jobs = []
        for job in self.jobs:
            next_run = next_runs.get(job.id)
            jobs.append({
                'id': str(job.id),
                'label': job.payload.label if job.payload else None,
                'level': job.payload.level if job.payload else None,
                'cron': job.schedule.expression,
                'next_run': next_run.isoformat() if next_run else None
            })
        return jobs

    def status(self) -> Dict[str, Any]:
        """Get service status."""
        return {
            'running': self.scheduler.running,
            'config_path': str(self.config.config_path),
            'jobs': len(self.jobs),
            'cursor': self.jobs.cursor.isoformat(),
            'deliveries': dict(self.dispatcher.stats)
        }

    def start(self):
        """
        Start the notifier.

        In foreground mode this blocks until stop() is called or a
        termination signal arrives.
        """
        running, pid = is_notifier_running()
        if running:
            logger.warning(f"Notifier is already running (PID: {pid})")
            return

        if self.scheduler.running:
            logger.warning("Notifier is already running")
            return

        logger.info("Starting notifier...")
        errors = self.config.validate()
        for error in errors:
            logger.warning(f"Configuration: {error}")

        self.load_notifications()
        self.dispatcher.start()

        settings = self.config.settings
        self.scheduler.add_job(
            self.tick,
            'interval',
            seconds=settings.poll_interval,
            id=TICK_JOB_ID,
            replace_existing=True
        )
        self.scheduler.add_job(
            self.reload,
            'interval',
            seconds=settings.reload_interval,
            id=RELOAD_JOB_ID,
            replace_existing=True
        )

        self._write_pid_file()
        self._setup_signal_handlers()

        for job in self.get_jobs():
            logger.info(f"  - {job['label']} [{job['cron']}]: next at {job['next_run']}")

        logger.info(
            f"Notifier started (poll every {settings.poll_interval}s, "
            f"config check every {settings.reload_interval}s)"
        )
        self.scheduler.start()

    def _write_pid_file(self):
        """Write the current process PID and notifier info files."""
        pid_file = get_pid_file_path()
        pid_file.parent.mkdir(parents=True, exist_ok=True)
        pid_file.write_text(str(os.getpid()))
        logger.debug(f"Wrote PID file: {pid_file}")

        info_file = _get_info_file_path()
        notifier_info = {
            'pid': os.getpid(),
            'started_at': datetime.now().isoformat(),
            'config_path': str(self.config.config_path),
            'data_dir': str(_get_data_dir()),
            'log_file': self.config.logging.file,
            'poll_interval': self.config.settings.poll_interval,
        }

        try:
            info_file.parent.mkdir(parents=True, exist_ok=True)
            with open(info_file, 'w') as f:
                json.dump(notifier_info, f, indent=2)
            logger.debug(f"Wrote notifier info file: {info_file}")
        except OSError as e:
            logger.warning(f"Failed to write notifier info file: {e}")

        atexit.register(self._remove_pid_file)

    def _remove_pid_file(self):
        """Remove the PID and info files if they belong to this process."""
        pid_file = get_pid_file_path()
        info_file = _get_info_file_path()

        try:
            if pid_file.exists() and pid_file.read_text().strip() == str(os.getpid()):
                pid_file.unlink()
                logger.debug(f"Removed PID file: {pid_file}")
                if info_file.exists():
                    info_file.unlink()
        except OSError as e:
            logger.debug(f"Failed to remove PID file: {e}")

    def stop(self):
        """Stop polling and flush pending notifications."""
        if self.scheduler.running:
            logger.info("Stopping notifier...")
            self.scheduler.shutdown(wait=False)
            self.dispatcher.stop()
            self._remove_pid_file()
            logger.info("Notifier stopped")
        else:
            logger.warning("Notifier is not running")

    def is_running(self) -> bool:
        """Check if the notifier is running (this instance or another process)."""
        if self.scheduler.running:
            return True
        running, _ = is_notifier_running()
        return running
