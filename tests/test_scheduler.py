import logging
import threading
from datetime import datetime, timezone

import pytest
from apscheduler.events import (
    EVENT_JOB_ERROR, EVENT_JOB_MAX_INSTANCES, EVENT_JOB_MISSED, JobExecutionEvent, JobSubmissionEvent,
)

from hotel_pms.scheduler import STATUS_TICK, JobRunner


@pytest.fixture
def runner():
    jobs = JobRunner(timezone='Europe/Rome', tolerance=59)
    yield jobs
    jobs.shutdown()


def test_run_exclusive_returns_result(runner):
    assert runner.run_exclusive('job', lambda: 42) == 42
    assert not runner.busy('job')


def test_run_skipped_while_previous_in_progress(runner, caplog):
    calls = []

    with caplog.at_level(logging.INFO, logger='hotel_pms'):
        with runner.guard('job'):
            assert runner.busy('job')
            assert runner.run_exclusive('job', lambda: calls.append(1)) is None

    assert calls == []
    assert 'still in progress' in caplog.text
    assert runner.run_exclusive('job', lambda: 'ran') == 'ran'


def test_guard_released_after_failure(runner):
    def broken():
        raise RuntimeError('boom')

    with pytest.raises(RuntimeError):
        runner.run_exclusive('job', broken)

    assert not runner.busy('job')
    assert runner.run_exclusive('job', lambda: 'again') == 'again'


def test_guards_are_per_job(runner):
    with runner.guard('a'):
        assert runner.run_exclusive('b', lambda: 'b ran') == 'b ran'


def test_interval_job_options(runner):
    job = runner.add_interval_job(STATUS_TICK, lambda: None, seconds=60)

    assert job.id == STATUS_TICK
    assert job.max_instances == 1
    assert job.coalesce is True
    assert job.misfire_grace_time == 59


def test_scheduler_events_are_logged(runner, caplog):
    run_time = datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)

    with caplog.at_level(logging.INFO, logger='hotel_pms'):
        runner.log_event(JobExecutionEvent(EVENT_JOB_ERROR, STATUS_TICK, 'default', run_time,
                                           exception=RuntimeError('boom'), traceback='Traceback'))
        runner.log_event(JobExecutionEvent(EVENT_JOB_MISSED, STATUS_TICK, 'default', run_time))
        runner.log_event(JobSubmissionEvent(EVENT_JOB_MAX_INSTANCES, STATUS_TICK, 'default', [run_time]))

    levels = {record.levelname for record in caplog.records}
    assert {'ERROR', 'WARNING', 'INFO'} <= levels
    assert 'FAILED' in caplog.text
    assert 'missed' in caplog.text
    assert 'still in progress' in caplog.text


def test_started_scheduler_runs_job(runner):
    ran = threading.Event()
    runner.add_interval_job('fast', ran.set, seconds=0.05)

    runner.start()
    assert runner.running
    assert ran.wait(5)

    runner.shutdown()
    assert not runner.running
