"""Background jobs on APScheduler.

Each job runs on an interval trigger with ``max_instances=1`` and
``coalesce=True``. A trigger that fires more than the tolerance late is
dropped by APScheduler and reported as missed.

Scheduled runs and manual runs (API, CLI) of the same job share one
in-process guard: while a run is in progress any other run of that job is
skipped and logged.
"""
import logging
import threading
from contextlib import contextmanager

from apscheduler.events import EVENT_JOB_ERROR, EVENT_JOB_MAX_INSTANCES, EVENT_JOB_MISSED
from apscheduler.schedulers.background import BackgroundScheduler

logger = logging.getLogger(__name__)

STATUS_TICK = 'status-tick'
OVERDUE_CHECK = 'overdue-check'


class JobRunner:

    def __init__(self, timezone='UTC', tolerance=59, scheduler=None):
        self.tolerance = tolerance
        self.scheduler = scheduler or BackgroundScheduler(timezone=timezone)
        self.scheduler.add_listener(self.log_event,
                                    EVENT_JOB_ERROR | EVENT_JOB_MISSED | EVENT_JOB_MAX_INSTANCES)
        self._guards = {}
        self._guards_lock = threading.Lock()

    @property
    def running(self):
        return self.scheduler.running

    def guard(self, job_id):
        """The "already running" lock of a job"""
        with self._guards_lock:
            return self._guards.setdefault(job_id, threading.Lock())

    def busy(self, job_id):
        return self.guard(job_id).locked()

    @contextmanager
    def exclusive(self, job_id):
        """Yield True while holding the job's guard, or False if a run is in progress"""
        guard = self.guard(job_id)
        if not guard.acquire(blocking=False):
            logger.info("[%s] Previous run still in progress, skipping", job_id)
            yield False
            return
        try:
            yield True
        finally:
            guard.release()

    def run_exclusive(self, job_id, func):
        """Run `func` now unless `job_id` is already running. Returns None when skipped."""
        with self.exclusive(job_id) as acquired:
            if acquired:
                return func()
        return None

    def add_interval_job(self, job_id, func, seconds):
        return self.scheduler.add_job(
            self.run_exclusive, 'interval', args=[job_id, func],
            seconds=seconds, id=job_id, name=job_id, replace_existing=True,
            max_instances=1, coalesce=True, misfire_grace_time=self.tolerance,
        )

    def start(self):
        if not self.scheduler.running:
            self.scheduler.start()
            logger.info("Scheduler started with jobs: %s",
                        ', '.join(job.id for job in self.scheduler.get_jobs()))

    def shutdown(self, wait=False):
        if self.scheduler.running:
            self.scheduler.shutdown(wait=wait)
            logger.info("Scheduler stopped")

    def log_event(self, event):
        if event.code == EVENT_JOB_ERROR:
            logger.error("[%s] Run FAILED: %r\n%s", event.job_id, event.exception, event.traceback or '')
        elif event.code == EVENT_JOB_MISSED:
            logger.warning("[%s] Trigger at %s missed by more than %ss",
                           event.job_id, event.scheduled_run_time, self.tolerance)
        elif event.code == EVENT_JOB_MAX_INSTANCES:
            logger.info("[%s] Previous run still in progress, skipping", event.job_id)
