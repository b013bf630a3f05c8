"""Timer-driven sync jobs on APScheduler.

Two named jobs by default:
- incremental: every SYNC_INCREMENTAL_INTERVAL_MINUTES
- daily_full: once a day at SYNC_DAILY_FULL_HOUR:SYNC_DAILY_FULL_MINUTE
  in SYNC_TIMEZONE

Stopping jobs only removes future triggers; an in-flight run finishes on its
own and clears the single-flight marker itself.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from typing import Any, Awaitable, Callable

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from exchange_sync.core.config import settings
from exchange_sync.core.structured_logging import build_log_context
from exchange_sync.db.enums import SyncMode
from exchange_sync.services import sync_orchestrator
from exchange_sync.services.pp_errors import SyncAlreadyRunningError

logger = logging.getLogger(__name__)

INCREMENTAL_JOB = "incremental"
DAILY_FULL_JOB = "daily_full"


@dataclass(frozen=True)
class IntervalCadence:
    minutes: int

    def __post_init__(self) -> None:
        if self.minutes < 1:
            raise ValueError("Interval must be at least 1 minute")

    def build_trigger(self, timezone: str) -> IntervalTrigger:
        return IntervalTrigger(minutes=self.minutes, timezone=timezone)

    def describe(self) -> str:
        return f"every {self.minutes} minute(s)"


@dataclass(frozen=True)
class DailyCadence:
    hour: int
    minute: int = 0

    def __post_init__(self) -> None:
        if not 0 <= self.hour <= 23 or not 0 <= self.minute <= 59:
            raise ValueError("Daily cadence needs hour 0-23 and minute 0-59")

    def build_trigger(self, timezone: str) -> CronTrigger:
        return CronTrigger(hour=self.hour, minute=self.minute, timezone=timezone)

    def describe(self) -> str:
        return f"daily at {self.hour:02d}:{self.minute:02d}"


Cadence = IntervalCadence | DailyCadence


@dataclass
class JobDefinition:
    name: str
    cadence: Cadence
    mode: SyncMode
    resources: list[str] | None = field(default=None)


def default_job_definitions() -> dict[str, JobDefinition]:
    return {
        INCREMENTAL_JOB: JobDefinition(
            name=INCREMENTAL_JOB,
            cadence=IntervalCadence(settings.SYNC_INCREMENTAL_INTERVAL_MINUTES),
            mode=SyncMode.INCREMENTAL,
        ),
        DAILY_FULL_JOB: JobDefinition(
            name=DAILY_FULL_JOB,
            cadence=DailyCadence(settings.SYNC_DAILY_FULL_HOUR, settings.SYNC_DAILY_FULL_MINUTE),
            mode=SyncMode.FULL,
        ),
    }


class SyncScheduler:
    """Owns the APScheduler instance and the named sync jobs."""

    def __init__(
        self,
        *,
        jobs: dict[str, JobDefinition] | None = None,
        timezone: str | None = None,
        run_sync: Callable[..., Awaitable[Any]] | None = None,
        scheduler: AsyncIOScheduler | None = None,
    ) -> None:
        self._timezone = timezone or settings.SYNC_TIMEZONE
        self._jobs = jobs if jobs is not None else default_job_definitions()
        self._run_sync = run_sync or sync_orchestrator.run_sync
        self._scheduler = scheduler or AsyncIOScheduler(timezone=self._timezone)

    @property
    def running(self) -> bool:
        return self._scheduler.running

    def _definition(self, job_name: str) -> JobDefinition:
        definition = self._jobs.get(job_name)
        if definition is None:
            raise KeyError(f"Unknown sync job: {job_name}")
        return definition

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def start(self) -> None:
        """Start the scheduler (inside a running event loop) and every job."""
        if not self._scheduler.running:
            self._scheduler.start()
            logger.info("Sync scheduler started (timezone=%s)", self._timezone)
        for job_name in self._jobs:
            self.start_job(job_name)

    def shutdown(self) -> None:
        """Stop the scheduler without waiting for in-flight runs."""
        if self._scheduler.running:
            self._scheduler.shutdown(wait=False)
            logger.info("Sync scheduler shut down")

    def start_job(self, job_name: str) -> None:
        definition = self._definition(job_name)
        self._scheduler.add_job(
            self._run_job,
            trigger=definition.cadence.build_trigger(self._timezone),
            args=[job_name],
            id=job_name,
            name=f"PracticePanther {definition.mode.value} sync",
            replace_existing=True,
            coalesce=True,
            max_instances=1,
        )
        logger.info(
            "Scheduled sync job (%s)",
            definition.cadence.describe(),
            extra=build_log_context(job_name=job_name, mode=definition.mode.value),
        )

    def stop_job(self, job_name: str) -> bool:
        """Remove a job's trigger. Returns False when it was not scheduled."""
        self._definition(job_name)
        if self._scheduler.get_job(job_name) is None:
            return False
        self._scheduler.remove_job(job_name)
        logger.info("Stopped sync job", extra=build_log_context(job_name=job_name))
        return True

    def restart_job(self, job_name: str) -> None:
        self.stop_job(job_name)
        self.start_job(job_name)

    def reschedule(self, job_name: str, cadence: Cadence) -> None:
        """
        Replace a job's cadence; the old trigger is removed before the new one exists.

        A stopped job stays stopped and picks up the new cadence when started.
        """
        definition = self._definition(job_name)
        was_scheduled = self.stop_job(job_name)
        self._jobs[job_name] = replace(definition, cadence=cadence)
        if was_scheduled:
            self.start_job(job_name)

    update_schedule = reschedule

    def stop_all_jobs(self) -> int:
        """Remove every trigger; cadences are kept for restart()."""
        stopped = sum(1 for job_name in self._jobs if self.stop_job(job_name))
        logger.info("Stopped %s sync job(s)", stopped)
        return stopped

    def restart(self) -> None:
        self.stop_all_jobs()
        self.start()

    # -------------------------------------------------------------------------
    # Execution and reporting
    # -------------------------------------------------------------------------

    async def _run_job(self, job_name: str) -> None:
        definition = self._definition(job_name)
        log_context = build_log_context(job_name=job_name, mode=definition.mode.value)
        try:
            await self._run_sync(
                definition.resources,
                definition.mode,
                triggered_by=f"scheduler:{job_name}",
            )
        except SyncAlreadyRunningError as exc:
            logger.info(
                "Skipping scheduled sync: run %s in progress", exc.sync_log_id, extra=log_context
            )
        except Exception:
            logger.exception("Scheduled sync job failed", extra=log_context)

    def get_jobs_status(self) -> list[dict[str, Any]]:
        jobs = []
        for job_name, definition in self._jobs.items():
            job = self._scheduler.get_job(job_name)
            next_run = getattr(job, "next_run_time", None) if job else None
            jobs.append(
                {
                    "name": job_name,
                    "mode": definition.mode.value,
                    "cadence": definition.cadence.describe(),
                    "scheduled": job is not None,
                    "next_run_time": next_run.isoformat() if next_run else None,
                }
            )
        return jobs
