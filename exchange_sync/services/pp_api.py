"""PracticePanther REST client for paginated resource collections.

Pages are requested as `GET /{resource}?page=N&limit=L[&updated_since=...]`
until a page shorter than the page size comes back. A 401 triggers exactly
one forced token refresh and one retry of that page; transient failures
(timeouts, 429, 5xx) go through the shared retry/backoff helper.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, AsyncIterator

import httpx
from pydantic import BaseModel
from sqlalchemy.orm import Session

from exchange_sync.core.config import settings
from exchange_sync.services import pp_token_service
from exchange_sync.services.http_service import request_with_retries
from exchange_sync.services.pp_errors import FetchError, PracticePantherError
from exchange_sync.types import JsonObject

logger = logging.getLogger(__name__)

# Some endpoints wrap the page in an envelope instead of returning a bare array
ENVELOPE_KEYS = ("data", "results", "items")


class ConnectionTestResult(BaseModel):
    """Outcome of a one-record connection check against the API."""

    success: bool
    message: str
    status_code: int | None = None
    rate_limit_limit: int | None = None
    rate_limit_remaining: int | None = None
    rate_limit_reset: str | None = None


def _resource_url(resource: str) -> str:
    return f"{settings.PP_API_BASE_URL.rstrip('/')}/{resource.strip('/')}"


def format_since(value: datetime) -> str:
    """Format a high-water mark for `updated_since` / `created_since`."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


@asynccontextmanager
async def _client_scope(client: httpx.AsyncClient | None) -> AsyncIterator[httpx.AsyncClient]:
    """Yield the caller's client, or a short-lived one we own."""
    if client is not None:
        yield client
        return
    async with httpx.AsyncClient(timeout=settings.PP_HTTP_TIMEOUT_SECONDS) as owned:
        yield owned


async def _get(
    http: httpx.AsyncClient,
    url: str,
    params: dict[str, Any],
    access_token: str,
    *,
    resource: str,
    page: int | None,
) -> httpx.Response:
    headers = {
        "Authorization": f"Bearer {access_token}",
        "Accept": "application/json",
    }
    try:
        return await request_with_retries(
            lambda: http.get(url, params=params, headers=headers),
            max_attempts=settings.PP_HTTP_MAX_ATTEMPTS,
            base_delay=settings.PP_HTTP_RETRY_BASE_DELAY,
        )
    except httpx.RequestError as exc:
        raise FetchError(
            f"{resource} request failed: {type(exc).__name__}",
            resource=resource,
            page=page,
        ) from exc


def _extract_records(response: httpx.Response, resource: str, page: int) -> list[JsonObject]:
    try:
        payload = response.json()
    except ValueError as exc:
        raise FetchError(
            f"{resource} page {page} is not valid JSON",
            resource=resource,
            page=page,
            status_code=response.status_code,
        ) from exc

    if payload is None:
        return []
    if isinstance(payload, dict):
        for key in ENVELOPE_KEYS:
            if isinstance(payload.get(key), list):
                payload = payload[key]
                break
    if not isinstance(payload, list):
        raise FetchError(
            f"{resource} page {page} returned an unexpected payload",
            resource=resource,
            page=page,
            status_code=response.status_code,
        )
    return [record for record in payload if isinstance(record, dict)]


async def _fetch_page(
    db: Session,
    http: httpx.AsyncClient,
    resource: str,
    page: int,
    params: dict[str, Any],
    access_token: str,
) -> tuple[list[JsonObject], str]:
    """Fetch one page; returns its records and the token that worked."""
    url = _resource_url(resource)
    response = await _get(http, url, params, access_token, resource=resource, page=page)

    if response.status_code == 401:
        logger.info("%s page %s returned 401, refreshing token once", resource, page)
        access_token = await pp_token_service.get_valid_access_token(
            db, force_refresh=True, client=http
        )
        response = await _get(http, url, params, access_token, resource=resource, page=page)

    if response.status_code >= 400:
        raise FetchError(
            f"{resource} page {page} failed with status {response.status_code}",
            resource=resource,
            page=page,
            status_code=response.status_code,
        )

    return _extract_records(response, resource, page), access_token


async def fetch_all_pages(
    db: Session,
    resource: str,
    filter_params: dict[str, Any] | None = None,
    *,
    page_size: int | None = None,
    max_pages: int | None = None,
    client: httpx.AsyncClient | None = None,
) -> list[JsonObject]:
    """
    Fetch every record of a resource under an optional filter.

    Args:
        db: Database session (token store)
        resource: Endpoint name, e.g. "contacts"
        filter_params: Extra query params, e.g. {"updated_since": "..."}
        page_size: Records per page (default PP_PAGE_SIZE)
        max_pages: Stop after this many pages (full-mode cap)
        client: Optional shared httpx client

    Returns:
        All records in page order.

    Raises:
        FetchError: a page failed after retries; earlier pages are discarded
        NoTokenError / RefreshError: token could not be resolved
    """
    page_size = page_size or settings.PP_PAGE_SIZE
    records: list[JsonObject] = []
    page = 1

    async with _client_scope(client) as http:
        access_token = await pp_token_service.get_valid_access_token(db, client=http)
        while True:
            if max_pages and page > max_pages:
                logger.warning(
                    "Stopped %s fetch at page cap %s (%s records)",
                    resource,
                    max_pages,
                    len(records),
                )
                break

            params = {"page": page, "limit": page_size, **(filter_params or {})}
            batch, access_token = await _fetch_page(db, http, resource, page, params, access_token)
            records.extend(batch)
            logger.debug("%s page %s: %s records (total %s)", resource, page, len(batch), len(records))

            if len(batch) < page_size:
                break
            page += 1

    logger.info("Fetched %s %s records in %s page(s)", len(records), resource, page)
    return records


def _header_int(response: httpx.Response, name: str) -> int | None:
    raw = response.headers.get(name)
    try:
        return int(raw) if raw is not None else None
    except ValueError:
        return None


async def test_connection(
    db: Session,
    *,
    client: httpx.AsyncClient | None = None,
) -> ConnectionTestResult:
    """Check the API with a one-record request and report rate-limit headers."""
    try:
        async with _client_scope(client) as http:
            access_token = await pp_token_service.get_valid_access_token(db, client=http)
            response = await _get(
                http,
                _resource_url("contacts"),
                {"page": 1, "limit": 1},
                access_token,
                resource="contacts",
                page=1,
            )
    except PracticePantherError as exc:
        return ConnectionTestResult(success=False, message=str(exc))

    if response.status_code >= 400:
        return ConnectionTestResult(
            success=False,
            message=f"API returned status {response.status_code}",
            status_code=response.status_code,
        )

    return ConnectionTestResult(
        success=True,
        message="Connection successful",
        status_code=response.status_code,
        rate_limit_limit=_header_int(response, "X-RateLimit-Limit"),
        rate_limit_remaining=_header_int(response, "X-RateLimit-Remaining"),
        rate_limit_reset=response.headers.get("X-RateLimit-Reset"),
    )
