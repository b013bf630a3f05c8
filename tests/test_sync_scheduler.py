"""Tests for the APScheduler-backed sync scheduler."""

import pytest

from exchange_sync.db.enums import SyncMode
from exchange_sync.services.pp_errors import SyncAlreadyRunningError
from exchange_sync.services.sync_scheduler import (
    DAILY_FULL_JOB,
    INCREMENTAL_JOB,
    DailyCadence,
    IntervalCadence,
    JobDefinition,
    SyncScheduler,
    default_job_definitions,
)


class RecordingRunner:
    def __init__(self, error: Exception | None = None) -> None:
        self.calls: list[tuple] = []
        self.error = error

    async def __call__(self, resources, mode, triggered_by=None):
        self.calls.append((resources, mode, triggered_by))
        if self.error is not None:
            raise self.error


def _scheduler(runner=None) -> SyncScheduler:
    return SyncScheduler(timezone="UTC", run_sync=runner or RecordingRunner())


def _status(scheduler: SyncScheduler) -> dict[str, dict]:
    return {job["name"]: job for job in scheduler.get_jobs_status()}


def test_default_jobs(monkeypatch):
    from exchange_sync.core.config import settings

    monkeypatch.setattr(settings, "SYNC_INCREMENTAL_INTERVAL_MINUTES", 10)
    monkeypatch.setattr(settings, "SYNC_DAILY_FULL_HOUR", 3)

    jobs = default_job_definitions()

    assert jobs[INCREMENTAL_JOB].mode == SyncMode.INCREMENTAL
    assert jobs[INCREMENTAL_JOB].cadence == IntervalCadence(10)
    assert jobs[DAILY_FULL_JOB].mode == SyncMode.FULL
    assert jobs[DAILY_FULL_JOB].cadence == DailyCadence(3, 0)


@pytest.mark.parametrize(
    "build",
    [lambda: IntervalCadence(0), lambda: DailyCadence(24), lambda: DailyCadence(2, 60), lambda: DailyCadence(-1)],
)
def test_invalid_cadence_rejected(build):
    with pytest.raises(ValueError):
        build()


def test_cadence_descriptions():
    assert IntervalCadence(15).describe() == "every 15 minute(s)"
    assert DailyCadence(2, 5).describe() == "daily at 02:05"


@pytest.mark.asyncio
async def test_start_schedules_every_job():
    scheduler = _scheduler()
    scheduler.start()
    try:
        status = _status(scheduler)
        assert scheduler.running is True
        assert set(status) == {INCREMENTAL_JOB, DAILY_FULL_JOB}
        assert all(job["scheduled"] for job in status.values())
        assert all(job["next_run_time"] for job in status.values())
        assert status[DAILY_FULL_JOB]["mode"] == "full"
    finally:
        scheduler.shutdown()
    assert scheduler.running is False


@pytest.mark.asyncio
async def test_reschedule_replaces_cadence():
    scheduler = _scheduler()
    scheduler.start()
    try:
        scheduler.reschedule(INCREMENTAL_JOB, IntervalCadence(5))

        status = _status(scheduler)
        assert status[INCREMENTAL_JOB]["cadence"] == "every 5 minute(s)"
        assert status[INCREMENTAL_JOB]["scheduled"] is True
        assert len([job for job in scheduler._scheduler.get_jobs() if job.id == INCREMENTAL_JOB]) == 1
        assert status[DAILY_FULL_JOB]["cadence"] == "daily at 02:00"
    finally:
        scheduler.shutdown()


@pytest.mark.asyncio
async def test_stop_all_jobs_keeps_cadences_for_restart():
    scheduler = _scheduler()
    scheduler.start()
    try:
        scheduler.reschedule(DAILY_FULL_JOB, DailyCadence(4, 30))

        assert scheduler.stop_all_jobs() == 2
        status = _status(scheduler)
        assert not any(job["scheduled"] for job in status.values())
        assert scheduler.stop_job(INCREMENTAL_JOB) is False

        scheduler.restart()
        status = _status(scheduler)
        assert all(job["scheduled"] for job in status.values())
        assert status[DAILY_FULL_JOB]["cadence"] == "daily at 04:30"
    finally:
        scheduler.shutdown()


@pytest.mark.asyncio
async def test_stop_and_start_single_job():
    scheduler = _scheduler()
    scheduler.start()
    try:
        assert scheduler.stop_job(DAILY_FULL_JOB) is True
        assert _status(scheduler)[DAILY_FULL_JOB]["scheduled"] is False
        assert _status(scheduler)[INCREMENTAL_JOB]["scheduled"] is True

        scheduler.start_job(DAILY_FULL_JOB)
        assert _status(scheduler)[DAILY_FULL_JOB]["scheduled"] is True
    finally:
        scheduler.shutdown()


def test_unknown_job_name():
    scheduler = _scheduler()
    with pytest.raises(KeyError):
        scheduler.stop_job("hourly")


@pytest.mark.asyncio
async def test_run_job_invokes_sync_with_job_settings():
    runner = RecordingRunner()
    scheduler = SyncScheduler(
        timezone="UTC",
        run_sync=runner,
        jobs={"contacts_only": JobDefinition("contacts_only", IntervalCadence(30), SyncMode.INCREMENTAL, ["contacts"])},
    )

    await scheduler._run_job("contacts_only")

    assert runner.calls == [(["contacts"], SyncMode.INCREMENTAL, "scheduler:contacts_only")]


@pytest.mark.asyncio
async def test_run_job_skips_when_sync_already_running():
    runner = RecordingRunner(SyncAlreadyRunningError("log-1"))
    scheduler = _scheduler(runner)

    await scheduler._run_job(INCREMENTAL_JOB)

    assert len(runner.calls) == 1


@pytest.mark.asyncio
async def test_run_job_contains_unexpected_errors():
    runner = RecordingRunner(RuntimeError("database unavailable"))
    scheduler = _scheduler(runner)

    await scheduler._run_job(DAILY_FULL_JOB)

    assert runner.calls == [(None, SyncMode.FULL, "scheduler:daily_full")]


@pytest.mark.asyncio
async def test_reschedule_keeps_stopped_job_stopped():
    scheduler = _scheduler()
    scheduler.start()
    try:
        scheduler.stop_job(DAILY_FULL_JOB)

        scheduler.reschedule(DAILY_FULL_JOB, DailyCadence(5, 15))

        status = _status(scheduler)
        assert status[DAILY_FULL_JOB]["scheduled"] is False
        assert status[DAILY_FULL_JOB]["cadence"] == "daily at 05:15"

        scheduler.start_job(DAILY_FULL_JOB)
        assert _status(scheduler)[DAILY_FULL_JOB]["scheduled"] is True
    finally:
        scheduler.shutdown()
