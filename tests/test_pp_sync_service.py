"""Tests for per-resource sync pipelines."""

from datetime import datetime, timedelta, timezone

import httpx
import pytest
from sqlalchemy import func, select

from exchange_sync.core.config import settings
from exchange_sync.db.enums import SyncMode
from exchange_sync.db.models import Contact, Exchange, Note
from exchange_sync.services import pp_sync_service
from exchange_sync.services.pp_sync_service import (
    get_sync_timestamp,
    resolve_resources,
    run_pipeline,
    set_sync_timestamp,
)

from tests.fakes import API_PREFIX, paged

T0 = datetime(2024, 1, 1, tzinfo=timezone.utc)


def _since_filtered(records: list[dict], param: str = "updated_since"):
    """Serve only records changed after the requested since filter."""

    def handler(request: httpx.Request) -> httpx.Response:
        raw = request.url.params.get(param)
        since = datetime.strptime(raw, "%Y-%m-%dT%H:%M:%SZ").replace(tzinfo=timezone.utc) if raw else None
        visible = [
            record
            for record in records
            if since is None
            or datetime.fromisoformat(record["updated_at"].replace("Z", "+00:00")) > since
        ]
        return paged(visible)(request)

    return handler


def test_resolve_resources():
    assert resolve_resources(None) == list(pp_sync_service.DEFAULT_RESOURCE_ORDER)
    assert resolve_resources(["notes", "MATTERS", "notes"]) == ["matters", "notes"]
    with pytest.raises(ValueError):
        resolve_resources(["contacts", "widgets"])


def test_resource_registry_covers_every_table():
    assert list(pp_sync_service.RESOURCES) == [
        "matters",
        "contacts",
        "users",
        "tasks",
        "notes",
        "invoices",
        "expenses",
    ]
    assert pp_sync_service.RESOURCES["notes"].since_param == "created_since"
    assert pp_sync_service.RESOURCES["matters"].conflict_key == "pp_matter_id"


def test_resolve_since_falls_back_to_lookback(db):
    now = datetime(2024, 6, 1, 12, tzinfo=timezone.utc)
    assert pp_sync_service.resolve_since(db, "contacts", now) == now - timedelta(
        hours=settings.PP_INCREMENTAL_LOOKBACK_HOURS
    )

    set_sync_timestamp(db, "contacts", T0)
    assert pp_sync_service.resolve_since(db, "contacts", now) == T0


@pytest.mark.asyncio
async def test_incremental_sync_only_stores_changed_records(db, stored_token, fake_pp, pp_client):
    set_sync_timestamp(db, "contacts", T0)
    fake_pp.resource(
        "contacts",
        _since_filtered(
            [
                {"id": "c-old", "first_name": "Old", "updated_at": "2023-12-31T00:00:00Z"},
                {"id": "c-1", "first_name": "New", "updated_at": "2024-01-02T00:00:00Z"},
                {"id": "c-2", "first_name": "Newer", "updated_at": "2024-01-03T00:00:00Z"},
            ]
        ),
    )
    run_started_at = datetime(2024, 1, 5, 8, tzinfo=timezone.utc)

    result = await run_pipeline(db, "contacts", SyncMode.INCREMENTAL, run_started_at=run_started_at, client=pp_client)

    assert result.succeeded
    assert (result.fetched, result.synced, result.created) == (2, 2, 2)
    assert result.since == T0
    assert db.scalar(select(func.count()).select_from(Contact)) == 2
    assert get_sync_timestamp(db, "contacts") == run_started_at
    assert fake_pp.requests[0].url.params["updated_since"] == "2024-01-01T00:00:00Z"

    contact = db.scalar(select(Contact).where(Contact.pp_id == "c-1"))
    assert contact.pp_synced_at is not None


@pytest.mark.asyncio
async def test_failed_fetch_keeps_timestamp(db, stored_token, fake_pp, pp_client):
    set_sync_timestamp(db, "contacts", T0)
    fake_pp.resource("contacts", lambda request: httpx.Response(500))

    result = await run_pipeline(db, "contacts", client=pp_client)

    assert not result.succeeded
    assert result.status == "error"
    assert result.errors == 1
    assert result.error_type == "FetchError"
    assert result.high_water_mark is None
    assert get_sync_timestamp(db, "contacts") == T0


@pytest.mark.asyncio
async def test_failed_write_keeps_timestamp(db, stored_token, fake_pp, pp_client, monkeypatch):
    from exchange_sync.services.pp_errors import WriteError

    def failing_upsert(*args, **kwargs):
        raise WriteError("disk full", table="contacts")

    monkeypatch.setattr(pp_sync_service, "upsert_records", failing_upsert)
    fake_pp.resource("contacts", paged([{"id": "c-1"}]))

    result = await run_pipeline(db, "contacts", client=pp_client)

    assert result.error_type == "WriteError"
    assert result.fetched == 1
    assert result.synced == 0
    assert get_sync_timestamp(db, "contacts") is None


@pytest.mark.asyncio
async def test_full_sync_ignores_watermark(db, stored_token, fake_pp, pp_client):
    set_sync_timestamp(db, "matters", T0)
    fake_pp.resource(
        "matters",
        paged([{"id": "m-1", "display_name": "One"}, {"id": "m-2", "display_name": "Two"}]),
    )
    started = datetime(2024, 2, 1, tzinfo=timezone.utc)

    result = await run_pipeline(db, "matters", SyncMode.FULL, run_started_at=started, client=pp_client)

    assert result.succeeded
    assert result.since is None
    assert "updated_since" not in fake_pp.requests[0].url.params
    assert db.scalar(select(func.count()).select_from(Exchange)) == 2
    assert get_sync_timestamp(db, "matters") == started


@pytest.mark.asyncio
async def test_full_sync_respects_page_cap(db, stored_token, fake_pp, pp_client, monkeypatch):
    monkeypatch.setattr(settings, "PP_FULL_SYNC_MAX_PAGES", 1)
    monkeypatch.setattr(settings, "PP_PAGE_SIZE", 2)
    fake_pp.resource("contacts", paged([{"id": f"c-{index}"} for index in range(5)]))

    result = await run_pipeline(db, "contacts", SyncMode.FULL, client=pp_client)

    assert result.fetched == 2
    assert len(fake_pp.requests) == 1


@pytest.mark.asyncio
async def test_notes_filter_on_created_since(db, stored_token, fake_pp, pp_client):
    set_sync_timestamp(db, "notes", T0)
    fake_pp.resource("notes", paged([{"id": "n-1", "note": "Hello"}]))

    result = await run_pipeline(db, "notes", client=pp_client)

    assert result.succeeded
    params = fake_pp.calls_to(f"{API_PREFIX}/notes")[0].url.params
    assert params["created_since"] == "2024-01-01T00:00:00Z"
    assert "updated_since" not in params
    assert db.scalar(select(Note.body)) == "Hello"


@pytest.mark.asyncio
async def test_rerun_is_idempotent(db, stored_token, fake_pp, pp_client):
    fake_pp.resource("contacts", paged([{"id": "c-1"}, {"id": "c-2"}]))

    first = await run_pipeline(db, "contacts", SyncMode.FULL, client=pp_client)
    second = await run_pipeline(db, "contacts", SyncMode.FULL, client=pp_client)

    assert (first.created, first.updated) == (2, 0)
    assert (second.created, second.updated) == (0, 2)
    assert db.scalar(select(func.count()).select_from(Contact)) == 2


@pytest.mark.asyncio
async def test_records_without_id_are_skipped(db, stored_token, fake_pp, pp_client):
    fake_pp.resource("contacts", paged([{"id": "c-1"}, {"first_name": "No id"}]))

    result = await run_pipeline(db, "contacts", SyncMode.FULL, client=pp_client)

    assert result.succeeded
    assert (result.fetched, result.synced, result.skipped) == (2, 1, 1)


@pytest.mark.asyncio
async def test_unknown_resource_raises(db):
    with pytest.raises(ValueError):
        await run_pipeline(db, "widgets")


def test_pipeline_result_to_dict():
    result = pp_sync_service.PipelineResult(resource="contacts", mode="incremental", since=T0)
    data = result.to_dict()
    assert data["since"] == "2024-01-01T00:00:00+00:00"
    assert data["high_water_mark"] is None
