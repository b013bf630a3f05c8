"""Per-resource sync pipelines: fetch -> map -> upsert -> advance watermark.

A pipeline never raises. Every failure is folded into its PipelineResult so
the orchestrator can keep running sibling resources. The resource's
SyncTimestamp only moves after the upsert committed, and it moves to the
run start time rather than the fetch filter, so records updated mid-run are
picked up again next time.
"""

from __future__ import annotations

import logging
import time
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Iterable

import httpx
from sqlalchemy import select
from sqlalchemy.orm import Session

from exchange_sync.core.config import settings
from exchange_sync.core.structured_logging import build_log_context
from exchange_sync.db.enums import ResourceType, SyncMode, SyncStatus
from exchange_sync.db.models import (
    Contact,
    Exchange,
    Expense,
    Invoice,
    Note,
    StaffUser,
    SyncTimestamp,
    Task,
)
from exchange_sync.services import pp_api, pp_field_mapping
from exchange_sync.services.pp_errors import PracticePantherError
from exchange_sync.services.upsert_service import upsert_records
from exchange_sync.types import JsonObject

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ResourceDefinition:
    """How one vendor collection flows into its normalized table."""

    name: str
    endpoint: str
    model: type
    mapper: Callable[[JsonObject], JsonObject]
    conflict_key: str
    since_param: str = "updated_since"


# Ordered: matters first so exchanges exist before their tasks/notes/billing
RESOURCES: dict[str, ResourceDefinition] = {
    definition.name: definition
    for definition in (
        ResourceDefinition(
            ResourceType.MATTERS.value, "matters", Exchange, pp_field_mapping.map_matter, "pp_matter_id"
        ),
        ResourceDefinition(
            ResourceType.CONTACTS.value, "contacts", Contact, pp_field_mapping.map_contact, "pp_id"
        ),
        ResourceDefinition(
            ResourceType.USERS.value, "users", StaffUser, pp_field_mapping.map_user, "pp_id"
        ),
        ResourceDefinition(
            ResourceType.TASKS.value, "tasks", Task, pp_field_mapping.map_task, "pp_id"
        ),
        ResourceDefinition(
            ResourceType.NOTES.value,
            "notes",
            Note,
            pp_field_mapping.map_note,
            "pp_id",
            since_param="created_since",
        ),
        ResourceDefinition(
            ResourceType.INVOICES.value, "invoices", Invoice, pp_field_mapping.map_invoice, "pp_id"
        ),
        ResourceDefinition(
            ResourceType.EXPENSES.value, "expenses", Expense, pp_field_mapping.map_expense, "pp_id"
        ),
    )
}

DEFAULT_RESOURCE_ORDER: tuple[str, ...] = tuple(RESOURCES)


@dataclass
class PipelineResult:
    resource: str
    mode: str
    status: str = SyncStatus.SUCCESS.value
    fetched: int = 0
    synced: int = 0
    created: int = 0
    updated: int = 0
    skipped: int = 0
    errors: int = 0
    error_type: str | None = None
    error_message: str | None = None
    since: datetime | None = None
    high_water_mark: datetime | None = None
    duration_ms: int = 0

    @property
    def succeeded(self) -> bool:
        return self.errors == 0

    def to_dict(self) -> dict:
        data = asdict(self)
        for key in ("since", "high_water_mark"):
            if data[key] is not None:
                data[key] = data[key].isoformat()
        return data


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def resolve_resources(resources: Iterable[str] | None) -> list[str]:
    """
    Validate requested resource names; None or empty means all.

    Returned in canonical run order without duplicates.

    Raises:
        ValueError: unknown resource name
    """
    if not resources:
        return list(DEFAULT_RESOURCE_ORDER)
    requested = {str(getattr(name, "value", name)).strip().lower() for name in resources}
    unknown = requested - set(RESOURCES)
    if unknown:
        raise ValueError(f"Unknown resource type(s): {', '.join(sorted(unknown))}")
    return [name for name in DEFAULT_RESOURCE_ORDER if name in requested]


# =============================================================================
# High-water marks
# =============================================================================


def get_sync_timestamp(db: Session, resource: str) -> datetime | None:
    """Return the stored high-water mark for a resource, if any."""
    value = db.scalar(
        select(SyncTimestamp.last_synced_at).where(SyncTimestamp.resource_type == resource)
    )
    return _as_utc(value) if value else None


def get_all_sync_timestamps(db: Session) -> dict[str, datetime | None]:
    rows = db.execute(select(SyncTimestamp.resource_type, SyncTimestamp.last_synced_at)).all()
    stored = {resource: _as_utc(value) for resource, value in rows}
    return {resource: stored.get(resource) for resource in DEFAULT_RESOURCE_ORDER}


def set_sync_timestamp(db: Session, resource: str, value: datetime) -> None:
    """Advance the high-water mark. Called only after a committed upsert."""
    row = db.scalar(select(SyncTimestamp).where(SyncTimestamp.resource_type == resource))
    if row is None:
        db.add(SyncTimestamp(resource_type=resource, last_synced_at=value))
    else:
        row.last_synced_at = value
    db.commit()


def resolve_since(db: Session, resource: str, now: datetime | None = None) -> datetime:
    """Stored high-water mark, or the fixed lookback window when none exists."""
    stored = get_sync_timestamp(db, resource)
    if stored is not None:
        return stored
    now = now or _now_utc()
    return now - timedelta(hours=settings.PP_INCREMENTAL_LOOKBACK_HOURS)


# =============================================================================
# Pipeline
# =============================================================================


async def run_pipeline(
    db: Session,
    resource: str,
    mode: SyncMode | str = SyncMode.INCREMENTAL,
    since: datetime | None = None,
    *,
    run_started_at: datetime | None = None,
    sync_log_id: str | None = None,
    client: httpx.AsyncClient | None = None,
) -> PipelineResult:
    """
    Sync one resource type.

    Args:
        db: Database session
        resource: Key of RESOURCES
        mode: incremental (filtered by `since`) or full (bounded by page cap)
        since: Override for the incremental filter; defaults to the stored
            high-water mark or the lookback window
        run_started_at: Becomes the new high-water mark on success
        sync_log_id: For log context only
        client: Optional shared httpx client

    Returns:
        PipelineResult; `errors` is 1 when any step failed.
    """
    definition = RESOURCES.get(resource)
    if definition is None:
        raise ValueError(f"Unknown resource type: {resource}")

    mode = SyncMode(mode)
    started = run_started_at or _now_utc()
    clock = time.monotonic()
    result = PipelineResult(resource=resource, mode=mode.value)
    log_context = build_log_context(
        sync_log_id=sync_log_id, resource=resource, mode=mode.value
    )

    try:
        filter_params: dict[str, str] = {}
        max_pages = None
        if mode == SyncMode.INCREMENTAL:
            result.since = since or resolve_since(db, resource, started)
            filter_params[definition.since_param] = pp_api.format_since(result.since)
        else:
            max_pages = settings.PP_FULL_SYNC_MAX_PAGES

        records = await pp_api.fetch_all_pages(
            db,
            definition.endpoint,
            filter_params,
            max_pages=max_pages,
            client=client,
        )
        result.fetched = len(records)

        synced_at = _now_utc()
        mapped = []
        for record in records:
            row = definition.mapper(record)
            row["pp_synced_at"] = synced_at
            mapped.append(row)

        upserted = upsert_records(db, definition.model, mapped, definition.conflict_key)
        result.synced = upserted.written
        result.created = upserted.created
        result.updated = upserted.updated
        result.skipped = upserted.skipped

        set_sync_timestamp(db, resource, started)
        result.high_water_mark = started
    except Exception as exc:
        db.rollback()
        result.status = SyncStatus.ERROR.value
        result.errors = 1
        result.error_type = type(exc).__name__
        result.error_message = str(exc)[:500]
        logger.warning(
            "Sync pipeline for %s failed: %s",
            resource,
            result.error_type,
            extra=log_context,
            exc_info=not isinstance(exc, PracticePantherError),
        )
    finally:
        result.duration_ms = int((time.monotonic() - clock) * 1000)

    if result.succeeded:
        logger.info(
            "Sync pipeline for %s: %s fetched, %s created, %s updated, %s skipped",
            resource,
            result.fetched,
            result.created,
            result.updated,
            result.skipped,
            extra=log_context,
        )
    return result
