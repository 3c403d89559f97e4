"""
Job registry and tick engine.

JobScheduler owns the registered jobs and a cursor marking the end of the
last evaluated tick. Each tick fires every job whose schedule has a match
in (cursor, now], once, then moves the cursor to now. The polling loop
that calls tick() lives outside this module (see notifier.service).
"""

import logging
import threading
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, Iterator, List, Optional, Union

from notifier.cron import CronSchedule, parse

logger = logging.getLogger(__name__)


@dataclass
class Job:
    """A registered pairing of a schedule and an action."""
    id: uuid.UUID
    schedule: CronSchedule
    action: Callable[[], Any]  # Zero-argument callable invoked when due
    payload: Any = None  # Optional description of the action (e.g. a Notification)

    @property
    def name(self) -> str:
        """Short label for logging."""
        label = getattr(self.payload, 'label', None)
        short_id = str(self.id)[:8]
        return f"{label} ({short_id})" if label else short_id


class JobScheduler:
    """
    Registry of cron jobs plus the tick algorithm that fires them.

    All registry mutations and the whole evaluate-fire-advance sequence of
    tick() run under one re-entrant lock, so the registry can be edited from
    one thread while another drives the ticks. Actions run on the ticking
    thread while the lock is held; re-entrancy lets an action add or remove
    jobs itself.
    """

    def __init__(self, start: Optional[datetime] = None):
        """
        Initialize an empty scheduler.

        Args:
            start: Initial cursor (default: now)
        """
        self._jobs: Dict[uuid.UUID, Job] = {}
        self._lock = threading.RLock()
        self._cursor = start or datetime.now()

    @property
    def cursor(self) -> datetime:
        """End of the most recently evaluated tick."""
        with self._lock:
            return self._cursor

    def add(
        self,
        schedule: Union[CronSchedule, str],
        action: Callable[[], Any],
        payload: Any = None
    ) -> uuid.UUID:
        """
        Register a job.

        Args:
            schedule: Parsed schedule or cron text
            action: Zero-argument callable to invoke when the job is due
            payload: Optional description of the action

        Returns:
            The new job's identifier

        Raises:
            CronError: If `schedule` is text that does not parse; nothing
                is registered in that case
        """
        if isinstance(schedule, str):
            schedule = parse(schedule)
        if not callable(action):
            raise TypeError(f"Job action must be callable, got {type(action).__name__}")

        with self._lock:
            job_id = uuid.uuid4()
            while job_id in self._jobs:
                job_id = uuid.uuid4()
            job = Job(id=job_id, schedule=schedule, action=action, payload=payload)
            self._jobs[job_id] = job

        logger.debug(f"Registered job {job.name} with schedule '{schedule}'")
        return job_id

    def remove(self, job_id: uuid.UUID) -> bool:
        """
        Remove a job by ID. Unknown IDs are ignored.

        Returns:
            True if a job was removed, False if it was not registered
        """
        with self._lock:
            job = self._jobs.pop(job_id, None)

        if job is None:
            logger.debug(f"Job {job_id} is not registered, nothing to remove")
            return False
        logger.debug(f"Removed job {job.name}")
        return True

    def remove_all(self) -> int:
        """
        Remove every registered job.

        Returns:
            Number of jobs removed
        """
        with self._lock:
            count = len(self._jobs)
            self._jobs.clear()

        logger.debug(f"Removed all {count} job(s)")
        return count

    def get(self, job_id: uuid.UUID) -> Optional[Job]:
        with self._lock:
            return self._jobs.get(job_id)

    def jobs(self) -> List[Job]:
        """Snapshot of registered jobs in registration order."""
        with self._lock:
            return list(self._jobs.values())

    def next_run_times(self) -> Dict[uuid.UUID, Optional[datetime]]:
        """First upcoming instant after the cursor for every job."""
        with self._lock:
            return {
                job.id: job.schedule.next_after(self._cursor)
                for job in self._jobs.values()
            }

    def tick(self, now: Optional[datetime] = None) -> List[uuid.UUID]:
        """
        Fire every job that became due since the previous tick.

        A job is due when the first match of its schedule after the cursor
        is at or before `now`. Due jobs fire once each, in registration
        order, however many of their matches fall inside the interval.
        A failing action is logged and does not stop the others.

        Args:
            now: Current time (default: datetime.now())

        Returns:
            IDs of the jobs whose actions were invoked
        """
        now = now or datetime.now()

        with self._lock:
            cursor = self._cursor
            if now < cursor:
                logger.warning(
                    f"Clock moved backwards ({now.isoformat()} < {cursor.isoformat()}), "
                    f"skipping tick"
                )
                return []

            due = []
            for job in self._jobs.values():
                next_run = job.schedule.next_after(cursor)
                if next_run is not None and next_run <= now:
                    due.append(job)

            fired = []
            for job in due:
                # An earlier action may have removed this job
                if job.id not in self._jobs:
                    continue
                logger.info(f"Job {job.name} is due, firing")
                try:
                    job.action()
                except Exception:
                    logger.exception(f"Job {job.name} raised an exception")
                fired.append(job.id)

            self._cursor = now

        if not fired:
            logger.debug(f"Tick at {now.isoformat()}: nothing due")
        return fired

    def __len__(self):
        with self._lock:
            return len(self._jobs)

    def __iter__(self) -> Iterator[Job]:
        return iter(self.jobs())

    def __contains__(self, job_id):
        with self._lock:
            return job_id in self._jobs

    def __repr__(self):
        return f"JobScheduler(jobs={len(self)}, cursor={self.cursor.isoformat()})"
