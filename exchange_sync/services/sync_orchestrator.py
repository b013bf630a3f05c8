"""Sync orchestrator: single-flight runs across resource pipelines.

A run is claimed by inserting a `running` SyncLog. The partial unique index
on sync_logs allows only one such row, so the claim is atomic across
processes and survives restarts. Pipelines run sequentially and in
isolation; the log is always finalized as success, partial or error.

Manual triggers return a SyncTicket immediately and the run proceeds as a
background task. Completion is observable only through the sync log.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import Callable, Iterable

import httpx
from pydantic import BaseModel
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from exchange_sync.core.config import settings
from exchange_sync.core.structured_logging import build_log_context
from exchange_sync.db.enums import SyncMode, SyncStatus
from exchange_sync.db.models import SyncLog
from exchange_sync.db.session import SessionLocal
from exchange_sync.services import pp_sync_service, pp_token_service
from exchange_sync.services.pp_errors import (
    NoTokenError,
    RefreshError,
    SyncAlreadyRunningError,
)
from exchange_sync.services.pp_sync_service import PipelineResult
from exchange_sync.services.pp_token_service import TokenStatusReport

logger = logging.getLogger(__name__)

SessionFactory = Callable[[], Session]

STATISTICS_SAMPLE_SIZE = 10

# Strong references so background runs are not garbage collected mid-flight
_background_tasks: set[asyncio.Task] = set()


# =============================================================================
# Report shapes
# =============================================================================


class SyncTicket(BaseModel):
    """Acknowledgment returned to fire-and-forget callers."""

    accepted: bool
    sync_log_id: uuid.UUID | None = None
    message: str


class SyncLogSummary(BaseModel):
    id: uuid.UUID
    sync_type: str
    status: str
    resources: list[str]
    started_at: datetime
    completed_at: datetime | None = None
    duration_seconds: int | None = None
    records_processed: int
    records_created: int
    records_updated: int
    records_failed: int
    error_message: str | None = None
    triggered_by: str | None = None
    details: dict | None = None

    model_config = {"from_attributes": True}


class SyncStatistics(BaseModel):
    runs_last_24h: int
    runs_last_7d: int
    success_rate: float | None = None
    average_duration_seconds: float | None = None


class SyncStatusReport(BaseModel):
    is_running: bool
    current_run: SyncLogSummary | None = None
    last_run: SyncLogSummary | None = None
    last_successful_full_sync: SyncLogSummary | None = None
    last_synced_at: dict[str, datetime | None]
    record_counts: dict[str, int]
    token: TokenStatusReport
    statistics: SyncStatistics


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _summary(log: SyncLog | None) -> SyncLogSummary | None:
    return SyncLogSummary.model_validate(log) if log else None


# =============================================================================
# Single-flight marker
# =============================================================================


def get_running_log(db: Session) -> SyncLog | None:
    return db.scalar(
        select(SyncLog)
        .where(SyncLog.status == SyncStatus.RUNNING.value)
        .order_by(SyncLog.started_at.desc())
        .limit(1)
    )


def recover_stale_runs(db: Session, now: datetime | None = None) -> int:
    """Finalize `running` logs older than SYNC_STALE_RUN_MINUTES as abandoned."""
    now = now or _now_utc()
    cutoff = now - timedelta(minutes=settings.SYNC_STALE_RUN_MINUTES)
    stale = db.scalars(
        select(SyncLog).where(
            SyncLog.status == SyncStatus.RUNNING.value,
            SyncLog.started_at < cutoff,
        )
    ).all()
    for log in stale:
        log.status = SyncStatus.ERROR.value
        log.completed_at = now
        log.error_message = (
            f"Run abandoned: still running after {settings.SYNC_STALE_RUN_MINUTES} minutes"
        )
        logger.warning(
            "Recovered stale sync run",
            extra=build_log_context(sync_log_id=str(log.id), mode=log.sync_type),
        )
    if stale:
        db.commit()
    return len(stale)


def claim_sync_run(
    db: Session,
    resources: list[str],
    mode: SyncMode,
    triggered_by: str | None,
) -> SyncLog:
    """
    Create the `running` log for a new run.

    Raises:
        SyncAlreadyRunningError: another run holds the marker
    """
    recover_stale_runs(db)

    running = get_running_log(db)
    if running is not None:
        raise SyncAlreadyRunningError(str(running.id))

    log = SyncLog(
        sync_type=mode.value,
        status=SyncStatus.RUNNING.value,
        resources=list(resources),
        started_at=_now_utc(),
        triggered_by=triggered_by,
    )
    db.add(log)
    try:
        db.commit()
    except IntegrityError:
        # Lost the race to a concurrent claim
        db.rollback()
        running = get_running_log(db)
        raise SyncAlreadyRunningError(str(running.id) if running else None)
    db.refresh(log)
    return log


def finalize_sync_run(
    db: Session,
    log: SyncLog,
    results: list[PipelineResult],
    *,
    fatal_error: str | None = None,
) -> SyncLog:
    """
    Close a run with aggregated counts and a per-resource breakdown.

    success: no resource failed; partial: some failed; error: the run failed
    before any pipeline ran, or every pipeline failed.
    """
    failed = [result for result in results if not result.succeeded]

    if fatal_error is not None or (results and len(failed) == len(results)):
        status = SyncStatus.ERROR
    elif failed:
        status = SyncStatus.PARTIAL
    else:
        status = SyncStatus.SUCCESS

    error_message = fatal_error
    if error_message is None and failed:
        error_message = "; ".join(
            f"{result.resource}: {result.error_type}: {result.error_message}" for result in failed
        )[:2000]

    log.status = status.value
    log.completed_at = _now_utc()
    log.records_processed = sum(result.fetched for result in results)
    log.records_created = sum(result.created for result in results)
    log.records_updated = sum(result.updated for result in results)
    log.records_failed = sum(result.fetched - result.synced for result in results)
    log.error_message = error_message
    log.details = {
        "resources": {result.resource: result.to_dict() for result in results},
        "failed_resources": [result.resource for result in failed],
    }
    db.commit()
    db.refresh(log)
    return log


# =============================================================================
# Running
# =============================================================================


async def _execute_run(
    db: Session,
    log: SyncLog,
    resources: list[str],
    mode: SyncMode,
    client: httpx.AsyncClient | None,
) -> SyncLog:
    """Run pipelines for a claimed log. Never raises; always finalizes."""
    log_id = str(log.id)
    log_context = build_log_context(
        sync_log_id=log_id, mode=mode.value, triggered_by=log.triggered_by
    )
    run_started_at = _as_utc(log.started_at)
    results: list[PipelineResult] = []

    try:
        # Token problems are fatal for the whole run; no pipeline starts
        token_error = None
        try:
            await pp_token_service.get_valid_access_token(db, client=client)
        except (NoTokenError, RefreshError) as exc:
            db.rollback()
            token_error = str(exc)
            logger.error("Sync run aborted: %s", type(exc).__name__, extra=log_context)

        if token_error is None:
            for resource in resources:
                results.append(
                    await pp_sync_service.run_pipeline(
                        db,
                        resource,
                        mode,
                        run_started_at=run_started_at,
                        sync_log_id=log_id,
                        client=client,
                    )
                )

        log = finalize_sync_run(db, log, results, fatal_error=token_error)
    except Exception as exc:
        logger.exception("Sync run failed unexpectedly", extra=log_context)
        db.rollback()
        log = finalize_sync_run(db, log, results, fatal_error=f"{type(exc).__name__}: {exc}"[:2000])

    logger.info(
        "Sync run finished with status %s (%s processed, %s created, %s updated)",
        log.status,
        log.records_processed,
        log.records_created,
        log.records_updated,
        extra=log_context,
    )
    return log


async def _run_claimed(
    log_id: uuid.UUID,
    resources: list[str],
    mode: SyncMode,
    session_factory: SessionFactory,
    client: httpx.AsyncClient | None,
) -> SyncLogSummary | None:
    db = session_factory()
    try:
        log = db.get(SyncLog, log_id)
        if log is None:
            logger.error("Claimed sync log vanished", extra=build_log_context(sync_log_id=str(log_id)))
            return None
        log = await _execute_run(db, log, resources, mode, client)
        return _summary(log)
    finally:
        db.close()


def _claim(
    session_factory: SessionFactory,
    resources: list[str],
    mode: SyncMode,
    triggered_by: str | None,
) -> uuid.UUID:
    db = session_factory()
    try:
        return claim_sync_run(db, resources, mode, triggered_by).id
    finally:
        db.close()


async def run_sync(
    resources: Iterable[str] | None = None,
    mode: SyncMode | str = SyncMode.INCREMENTAL,
    triggered_by: str | None = "system",
    *,
    session_factory: SessionFactory = SessionLocal,
    client: httpx.AsyncClient | None = None,
) -> SyncLogSummary | None:
    """
    Claim and run a sync inline, returning the finalized log.

    Raises:
        ValueError: unknown resource name or mode
        SyncAlreadyRunningError: another run holds the marker
    """
    names = pp_sync_service.resolve_resources(resources)
    mode = SyncMode(mode)
    log_id = _claim(session_factory, names, mode, triggered_by)
    logger.info(
        "Sync run started for %s",
        ", ".join(names),
        extra=build_log_context(sync_log_id=str(log_id), mode=mode.value, triggered_by=triggered_by),
    )
    return await _run_claimed(log_id, names, mode, session_factory, client)


def _log_background_failure(task: asyncio.Task) -> None:
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.error(
            "Background sync run failed: %s",
            type(exc).__name__,
            exc_info=(type(exc), exc, exc.__traceback__),
        )


async def trigger_manual_sync(
    resources: Iterable[str] | None = None,
    mode: SyncMode | str = SyncMode.INCREMENTAL,
    triggered_by: str | None = "manual",
    *,
    session_factory: SessionFactory = SessionLocal,
    client: httpx.AsyncClient | None = None,
) -> SyncTicket:
    """
    Fire-and-forget trigger.

    Returns as soon as the run is claimed; a trigger that finds a run in
    progress is rejected with the running log's id and starts nothing.

    Raises:
        ValueError: unknown resource name or mode (before any log is created)
    """
    names = pp_sync_service.resolve_resources(resources)
    mode = SyncMode(mode)

    try:
        log_id = _claim(session_factory, names, mode, triggered_by)
    except SyncAlreadyRunningError as exc:
        logger.info(
            "Manual sync rejected: run already in progress",
            extra=build_log_context(sync_log_id=exc.sync_log_id, triggered_by=triggered_by),
        )
        return SyncTicket(
            accepted=False,
            sync_log_id=uuid.UUID(exc.sync_log_id) if exc.sync_log_id else None,
            message="A sync is already running",
        )

    task = asyncio.create_task(_run_claimed(log_id, names, mode, session_factory, client))
    _background_tasks.add(task)
    task.add_done_callback(_background_tasks.discard)
    task.add_done_callback(_log_background_failure)

    return SyncTicket(
        accepted=True,
        sync_log_id=log_id,
        message=f"{mode.value.capitalize()} sync started for {', '.join(names)}",
    )


async def wait_for_background_runs() -> None:
    """Await in-flight background runs (shutdown and tests)."""
    if _background_tasks:
        await asyncio.gather(*list(_background_tasks), return_exceptions=True)


# =============================================================================
# Reporting
# =============================================================================


def get_sync_history(db: Session, limit: int = 20) -> list[SyncLogSummary]:
    """Most recent runs, newest first."""
    limit = max(1, min(limit, 500))
    logs = db.scalars(select(SyncLog).order_by(SyncLog.started_at.desc()).limit(limit)).all()
    return [SyncLogSummary.model_validate(log) for log in logs]


def _count_runs_since(db: Session, since: datetime) -> int:
    return db.scalar(select(func.count(SyncLog.id)).where(SyncLog.started_at >= since)) or 0


def get_sync_statistics(db: Session, now: datetime | None = None) -> SyncStatistics:
    now = now or _now_utc()
    finished = db.scalars(
        select(SyncLog)
        .where(SyncLog.status != SyncStatus.RUNNING.value)
        .order_by(SyncLog.started_at.desc())
        .limit(STATISTICS_SAMPLE_SIZE)
    ).all()

    success_rate = None
    if finished:
        successes = sum(1 for log in finished if log.status == SyncStatus.SUCCESS.value)
        success_rate = round(successes / len(finished) * 100, 1)

    durations = [
        log.duration_seconds
        for log in finished
        if log.status == SyncStatus.SUCCESS.value and log.duration_seconds is not None
    ]
    average_duration = round(sum(durations) / len(durations), 1) if durations else None

    return SyncStatistics(
        runs_last_24h=_count_runs_since(db, now - timedelta(hours=24)),
        runs_last_7d=_count_runs_since(db, now - timedelta(days=7)),
        success_rate=success_rate,
        average_duration_seconds=average_duration,
    )


def get_record_counts(db: Session) -> dict[str, int]:
    counts: dict[str, int] = {}
    for name, definition in pp_sync_service.RESOURCES.items():
        counts[name] = db.scalar(select(func.count()).select_from(definition.model)) or 0
    return counts


def get_sync_status(db: Session) -> SyncStatusReport:
    """Read-only snapshot of sync state for dashboards and polling callers."""
    running = get_running_log(db)
    last_run = db.scalar(
        select(SyncLog)
        .where(SyncLog.status != SyncStatus.RUNNING.value)
        .order_by(SyncLog.started_at.desc())
        .limit(1)
    )
    last_full = db.scalar(
        select(SyncLog)
        .where(
            SyncLog.status == SyncStatus.SUCCESS.value,
            SyncLog.sync_type == SyncMode.FULL.value,
        )
        .order_by(SyncLog.started_at.desc())
        .limit(1)
    )

    return SyncStatusReport(
        is_running=running is not None,
        current_run=_summary(running),
        last_run=_summary(last_run),
        last_successful_full_sync=_summary(last_full),
        last_synced_at=pp_sync_service.get_all_sync_timestamps(db),
        record_counts=get_record_counts(db),
        token=pp_token_service.get_token_status(db),
        statistics=get_sync_statistics(db),
    )
