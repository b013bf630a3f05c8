"""PracticePanther OAuth2 token manager.

Owns the authorization-code and refresh-token flows and hands out currently
valid access tokens, refreshing transparently when the stored token is
expired or within the safety margin of expiry.

State machine:
    no token -> active -> (near expiry) refreshing -> active
                                     refreshing -> invalid (provider rejected)
    active -> invalid (deactivate_tokens)
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Any
from urllib.parse import urlencode

import httpx
from pydantic import BaseModel
from sqlalchemy import select, update
from sqlalchemy.orm import Session

from exchange_sync.core.config import settings
from exchange_sync.db.enums import OAuthProvider, TokenStatus
from exchange_sync.db.models import OAuthToken
from exchange_sync.services.http_service import request_with_retries
from exchange_sync.services.pp_errors import (
    NoTokenError,
    RefreshError,
    TokenExchangeError,
)

logger = logging.getLogger(__name__)

PROVIDER = OAuthProvider.PRACTICEPANTHER.value


class TokenStatusReport(BaseModel):
    """Read-only diagnostic view of the stored token set."""

    status: TokenStatus
    has_token: bool
    has_refresh_token: bool = False
    token_type: str | None = None
    scope: str | None = None
    expires_at: datetime | None = None
    expires_in_minutes: int | None = None
    last_used_at: datetime | None = None
    last_refreshed_at: datetime | None = None
    minutes_since_refresh: int | None = None
    created_at: datetime | None = None


def _now_utc() -> datetime:
    """Timezone-aware UTC timestamp."""
    return datetime.now(timezone.utc)


def _as_utc(value: datetime) -> datetime:
    """Treat naive datetimes (SQLite) as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _needs_refresh(expires_at: datetime, now: datetime | None = None) -> bool:
    """True when the token is expired or inside the refresh safety margin."""
    now = now or _now_utc()
    margin = timedelta(seconds=settings.PP_TOKEN_REFRESH_MARGIN_SECONDS)
    return _as_utc(expires_at) <= now + margin


def _coerce_expires_in(raw: Any) -> int:
    try:
        expires_in = int(raw)
    except (TypeError, ValueError):
        return settings.PP_TOKEN_DEFAULT_TTL_SECONDS
    if expires_in <= 0:
        return settings.PP_TOKEN_DEFAULT_TTL_SECONDS
    return expires_in


# =============================================================================
# Credential Store
# =============================================================================


def get_stored_token(db: Session) -> OAuthToken | None:
    """Return the active token set, if any."""
    return db.scalar(
        select(OAuthToken)
        .where(OAuthToken.provider == PROVIDER, OAuthToken.is_active.is_(True))
        .order_by(OAuthToken.created_at.desc())
        .limit(1)
    )


def store_token(
    db: Session,
    token_data: dict[str, Any],
    *,
    grant_type: str,
    fallback_refresh_token: str | None = None,
) -> OAuthToken:
    """
    Persist a token endpoint response as the new active token set.

    Prior active rows are deactivated in the same transaction; the new row
    replaces them rather than merging. If the provider omits a refresh token,
    `fallback_refresh_token` (the one just used) is kept.
    """
    now = _now_utc()
    expires_in = _coerce_expires_in(token_data.get("expires_in"))

    db.execute(
        update(OAuthToken)
        .where(OAuthToken.provider == PROVIDER, OAuthToken.is_active.is_(True))
        .values(is_active=False, updated_at=now)
    )
    db.flush()

    token = OAuthToken(
        provider=PROVIDER,
        access_token=token_data["access_token"],
        refresh_token=token_data.get("refresh_token") or fallback_refresh_token,
        token_type=token_data.get("token_type") or "Bearer",
        scope=token_data.get("scope") or settings.PP_OAUTH_SCOPE,
        expires_at=now + timedelta(seconds=expires_in),
        is_active=True,
        last_refreshed_at=now if grant_type == "refresh_token" else None,
        provider_metadata={
            "expires_in": expires_in,
            "grant_type": grant_type,
            "refreshed_at": now.isoformat(),
        },
    )
    db.add(token)
    db.commit()
    db.refresh(token)

    logger.info(
        "Stored PracticePanther token (grant_type=%s, expires_at=%s)",
        grant_type,
        token.expires_at.isoformat(),
    )
    return token


def deactivate_tokens(db: Session) -> int:
    """Invalidate the stored token set. Returns the number of rows changed."""
    result = db.execute(
        update(OAuthToken)
        .where(OAuthToken.provider == PROVIDER, OAuthToken.is_active.is_(True))
        .values(is_active=False, updated_at=_now_utc())
    )
    db.commit()
    count = result.rowcount or 0
    if count:
        logger.warning("Deactivated %s PracticePanther token(s)", count)
    return count


# =============================================================================
# OAuth Flows
# =============================================================================


def generate_auth_url(redirect_uri: str | None = None, state: str | None = None) -> str:
    """Generate the PracticePanther consent URL."""
    params = {
        "response_type": "code",
        "client_id": settings.PP_CLIENT_ID,
        "redirect_uri": redirect_uri or settings.PP_REDIRECT_URI,
        "scope": settings.PP_OAUTH_SCOPE,
    }
    if state:
        params["state"] = state
    return f"{settings.PP_AUTH_URL}?{urlencode(params)}"


async def _post_token_request(
    form: dict[str, str], client: httpx.AsyncClient | None
) -> httpx.Response:
    headers = {
        "Content-Type": "application/x-www-form-urlencoded",
        "Accept": "application/json",
    }

    async def _send(http: httpx.AsyncClient) -> httpx.Response:
        return await request_with_retries(
            lambda: http.post(settings.PP_TOKEN_URL, data=form, headers=headers),
            max_attempts=settings.PP_HTTP_MAX_ATTEMPTS,
            base_delay=settings.PP_HTTP_RETRY_BASE_DELAY,
        )

    if client is not None:
        return await _send(client)
    async with httpx.AsyncClient(timeout=settings.PP_HTTP_TIMEOUT_SECONDS) as owned:
        return await _send(owned)


def _token_payload(response: httpx.Response) -> dict[str, Any] | None:
    try:
        payload = response.json()
    except ValueError:
        return None
    if not isinstance(payload, dict) or not payload.get("access_token"):
        return None
    return payload


async def exchange_code_for_token(
    db: Session,
    code: str,
    redirect_uri: str | None = None,
    *,
    client: httpx.AsyncClient | None = None,
) -> OAuthToken:
    """Complete the authorization-code flow and persist the token set."""
    form = {
        "grant_type": "authorization_code",
        "code": code,
        "redirect_uri": redirect_uri or settings.PP_REDIRECT_URI,
        "client_id": settings.PP_CLIENT_ID,
        "client_secret": settings.PP_CLIENT_SECRET,
    }
    try:
        response = await _post_token_request(form, client)
    except httpx.RequestError as exc:
        raise TokenExchangeError(f"Token endpoint unreachable: {type(exc).__name__}") from exc

    if response.status_code >= 400:
        logger.error("PracticePanther code exchange rejected (status=%s)", response.status_code)
        raise TokenExchangeError(
            f"Authorization code exchange failed with status {response.status_code}",
            status_code=response.status_code,
        )

    payload = _token_payload(response)
    if payload is None:
        raise TokenExchangeError(
            "Token endpoint returned no access token", status_code=response.status_code
        )

    return store_token(db, payload, grant_type="authorization_code")


async def refresh_token(
    db: Session,
    token: OAuthToken | None = None,
    *,
    client: httpx.AsyncClient | None = None,
) -> OAuthToken:
    """
    Exchange the stored refresh token for a new token set.

    Returns the replacement token row (its `expires_at` is the new expiry).

    Raises:
        NoTokenError: nothing stored
        RefreshError: no refresh token, provider rejection (token set is
            deactivated), or transport failure (token set left as is,
            needs_reauth=False)
    """
    token = token or get_stored_token(db)
    if token is None:
        raise NoTokenError()

    current_refresh = token.refresh_token
    if not current_refresh:
        raise RefreshError("No refresh token available. Re-authorization required.")

    form = {
        "grant_type": "refresh_token",
        "refresh_token": current_refresh,
        "client_id": settings.PP_CLIENT_ID,
        "client_secret": settings.PP_CLIENT_SECRET,
    }
    try:
        response = await _post_token_request(form, client)
    except httpx.RequestError as exc:
        logger.warning("PracticePanther token refresh failed in transport", exc_info=exc)
        raise RefreshError(
            f"Token endpoint unreachable: {type(exc).__name__}", needs_reauth=False
        ) from exc

    if response.status_code >= 500:
        raise RefreshError(
            f"Token endpoint error (status {response.status_code})",
            needs_reauth=False,
            status_code=response.status_code,
        )

    if response.status_code >= 400:
        logger.error(
            "PracticePanther refresh token rejected (status=%s); deactivating",
            response.status_code,
        )
        deactivate_tokens(db)
        raise RefreshError(
            "Refresh token expired or revoked. Re-authorization required.",
            status_code=response.status_code,
        )

    payload = _token_payload(response)
    if payload is None:
        raise RefreshError(
            "Token endpoint returned no access token",
            needs_reauth=False,
            status_code=response.status_code,
        )

    return store_token(
        db,
        payload,
        grant_type="refresh_token",
        fallback_refresh_token=current_refresh,
    )


async def get_valid_access_token(
    db: Session,
    *,
    force_refresh: bool = False,
    client: httpx.AsyncClient | None = None,
) -> str:
    """
    Return an access token that is not expired.

    Refreshes first when the stored token is expired, within the safety
    margin, or when `force_refresh` is set (after a 401).
    """
    token = get_stored_token(db)
    if token is None:
        raise NoTokenError()

    if force_refresh or _needs_refresh(token.expires_at):
        logger.info(
            "Refreshing PracticePanther token (forced=%s, expires_at=%s)",
            force_refresh,
            _as_utc(token.expires_at).isoformat(),
        )
        token = await refresh_token(db, token, client=client)

    token.last_used_at = _now_utc()
    db.commit()
    return token.access_token


# =============================================================================
# Diagnostics
# =============================================================================


def get_token_status(db: Session) -> TokenStatusReport:
    """Report presence, expiry and time since last refresh."""
    token = get_stored_token(db)
    if token is None:
        return TokenStatusReport(status=TokenStatus.NO_TOKEN, has_token=False)

    now = _now_utc()
    expires_at = _as_utc(token.expires_at)
    expires_in_minutes = int((expires_at - now).total_seconds() // 60)

    if expires_at <= now:
        status = TokenStatus.EXPIRED
    elif expires_at - now < timedelta(minutes=settings.PP_TOKEN_EXPIRING_SOON_MINUTES):
        status = TokenStatus.EXPIRING_SOON
    else:
        status = TokenStatus.VALID

    refreshed_at = token.last_refreshed_at or token.created_at
    minutes_since_refresh = None
    if refreshed_at:
        minutes_since_refresh = int((now - _as_utc(refreshed_at)).total_seconds() // 60)

    return TokenStatusReport(
        status=status,
        has_token=True,
        has_refresh_token=bool(token.refresh_token),
        token_type=token.token_type,
        scope=token.scope,
        expires_at=expires_at,
        expires_in_minutes=max(0, expires_in_minutes),
        last_used_at=token.last_used_at,
        last_refreshed_at=token.last_refreshed_at,
        minutes_since_refresh=minutes_since_refresh,
        created_at=token.created_at,
    )
