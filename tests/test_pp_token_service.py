"""Tests for the PracticePanther token manager."""

from datetime import datetime, timedelta, timezone
from urllib.parse import parse_qs, urlparse

import httpx
import pytest
from sqlalchemy import select

from exchange_sync.core.config import settings
from exchange_sync.db.enums import TokenStatus
from exchange_sync.db.models import OAuthToken
from exchange_sync.services import pp_token_service
from exchange_sync.services.pp_errors import NoTokenError, RefreshError, TokenExchangeError

from tests.fakes import TOKEN_PATH, token_response


def _form(request: httpx.Request) -> dict[str, str]:
    return {key: values[0] for key, values in parse_qs(request.content.decode()).items()}


def _expire(db, token: OAuthToken, delta: timedelta = timedelta(minutes=-1)) -> None:
    token.expires_at = datetime.now(timezone.utc) + delta
    db.commit()


def test_generate_auth_url_includes_client_and_state():
    url = pp_token_service.generate_auth_url(state="abc123")

    parsed = urlparse(url)
    params = parse_qs(parsed.query)
    assert url.startswith(settings.PP_AUTH_URL)
    assert params["response_type"] == ["code"]
    assert params["client_id"] == [settings.PP_CLIENT_ID]
    assert params["redirect_uri"] == [settings.PP_REDIRECT_URI]
    assert params["state"] == ["abc123"]


def test_generate_auth_url_without_state():
    params = parse_qs(urlparse(pp_token_service.generate_auth_url("https://x.test/cb")).query)
    assert "state" not in params
    assert params["redirect_uri"] == ["https://x.test/cb"]


def test_store_token_replaces_active_token(db, stored_token):
    replacement = pp_token_service.store_token(
        db,
        {"access_token": "access-9", "expires_in": 600},
        grant_type="refresh_token",
        fallback_refresh_token="refresh-1",
    )

    rows = db.scalars(select(OAuthToken)).all()
    assert len(rows) == 2
    assert [row.is_active for row in rows].count(True) == 1
    assert pp_token_service.get_stored_token(db).id == replacement.id
    assert replacement.refresh_token == "refresh-1"
    assert replacement.last_refreshed_at is not None
    assert replacement.provider_metadata["grant_type"] == "refresh_token"


def test_store_token_defaults_missing_expiry(db):
    token = pp_token_service.store_token(db, {"access_token": "a"}, grant_type="authorization_code")
    assert token.provider_metadata["expires_in"] == settings.PP_TOKEN_DEFAULT_TTL_SECONDS


def test_tokens_are_encrypted_at_rest(db, stored_token):
    raw = db.connection().exec_driver_sql("SELECT access_token FROM oauth_tokens").scalar()
    assert raw != "access-1"
    assert pp_token_service.get_stored_token(db).access_token == "access-1"


@pytest.mark.asyncio
async def test_exchange_code_for_token_stores_token(db, fake_pp, pp_client):
    fake_pp.route(TOKEN_PATH, token_response("access-new", "refresh-new"))

    token = await pp_token_service.exchange_code_for_token(db, "code-1", client=pp_client)

    assert token.access_token == "access-new"
    assert token.refresh_token == "refresh-new"
    form = _form(fake_pp.calls_to(TOKEN_PATH)[0])
    assert form["grant_type"] == "authorization_code"
    assert form["code"] == "code-1"
    assert form["client_secret"] == settings.PP_CLIENT_SECRET


@pytest.mark.asyncio
async def test_exchange_code_for_token_rejected(db, fake_pp, pp_client):
    fake_pp.route(TOKEN_PATH, lambda request: httpx.Response(400, json={"error": "invalid_grant"}))

    with pytest.raises(TokenExchangeError) as exc_info:
        await pp_token_service.exchange_code_for_token(db, "bad", client=pp_client)

    assert exc_info.value.status_code == 400
    assert pp_token_service.get_stored_token(db) is None


@pytest.mark.asyncio
async def test_get_valid_access_token_without_token(db, pp_client):
    with pytest.raises(NoTokenError):
        await pp_token_service.get_valid_access_token(db, client=pp_client)


@pytest.mark.asyncio
async def test_get_valid_access_token_returns_stored_token(db, stored_token, fake_pp, pp_client):
    access_token = await pp_token_service.get_valid_access_token(db, client=pp_client)

    assert access_token == "access-1"
    assert fake_pp.requests == []
    assert pp_token_service.get_stored_token(db).last_used_at is not None


@pytest.mark.asyncio
async def test_expired_token_is_refreshed_transparently(db, stored_token, fake_pp, pp_client):
    _expire(db, stored_token)
    fake_pp.route(TOKEN_PATH, token_response("access-2", refresh_token=None))

    access_token = await pp_token_service.get_valid_access_token(db, client=pp_client)

    assert access_token == "access-2"
    form = _form(fake_pp.calls_to(TOKEN_PATH)[0])
    assert form["grant_type"] == "refresh_token"
    assert form["refresh_token"] == "refresh-1"
    # Provider sent no new refresh token, so the old one is kept
    assert pp_token_service.get_stored_token(db).refresh_token == "refresh-1"


@pytest.mark.asyncio
async def test_token_inside_refresh_margin_is_refreshed(db, stored_token, fake_pp, pp_client):
    _expire(db, stored_token, timedelta(seconds=settings.PP_TOKEN_REFRESH_MARGIN_SECONDS - 30))
    fake_pp.route(TOKEN_PATH, token_response("access-2"))

    assert await pp_token_service.get_valid_access_token(db, client=pp_client) == "access-2"


@pytest.mark.asyncio
async def test_rejected_refresh_deactivates_token(db, stored_token, fake_pp, pp_client):
    _expire(db, stored_token)
    fake_pp.route(TOKEN_PATH, lambda request: httpx.Response(400, json={"error": "invalid_grant"}))

    with pytest.raises(RefreshError) as exc_info:
        await pp_token_service.get_valid_access_token(db, client=pp_client)

    assert exc_info.value.needs_reauth is True
    assert pp_token_service.get_stored_token(db) is None
    assert pp_token_service.get_token_status(db).status == TokenStatus.NO_TOKEN


@pytest.mark.asyncio
async def test_refresh_transport_failure_keeps_token(db, stored_token, fake_pp, pp_client):
    _expire(db, stored_token)

    def unreachable(request):
        raise httpx.ConnectError("down", request=request)

    fake_pp.route(TOKEN_PATH, unreachable)

    with pytest.raises(RefreshError) as exc_info:
        await pp_token_service.get_valid_access_token(db, client=pp_client)

    assert exc_info.value.needs_reauth is False
    assert len(fake_pp.calls_to(TOKEN_PATH)) == settings.PP_HTTP_MAX_ATTEMPTS
    assert pp_token_service.get_stored_token(db) is not None


@pytest.mark.asyncio
async def test_refresh_without_refresh_token(db, pp_client):
    pp_token_service.store_token(db, {"access_token": "a", "expires_in": 10}, grant_type="authorization_code")

    with pytest.raises(RefreshError):
        await pp_token_service.refresh_token(db, client=pp_client)


def test_token_status_reports(db):
    assert pp_token_service.get_token_status(db).status == TokenStatus.NO_TOKEN

    token = pp_token_service.store_token(
        db, {"access_token": "a", "refresh_token": "r", "expires_in": 86400}, grant_type="authorization_code"
    )
    report = pp_token_service.get_token_status(db)
    assert report.status == TokenStatus.VALID
    assert report.has_refresh_token is True
    assert report.expires_in_minutes > 60

    _expire(db, token, timedelta(minutes=30))
    assert pp_token_service.get_token_status(db).status == TokenStatus.EXPIRING_SOON

    _expire(db, token)
    report = pp_token_service.get_token_status(db)
    assert report.status == TokenStatus.EXPIRED
    assert report.expires_in_minutes == 0


def test_deactivate_tokens(db, stored_token):
    assert pp_token_service.deactivate_tokens(db) == 1
    assert pp_token_service.deactivate_tokens(db) == 0
    assert pp_token_service.get_stored_token(db) is None
