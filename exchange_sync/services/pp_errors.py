"""Error taxonomy for the PracticePanther sync engine.

- NoTokenError: never authorized, interactive setup required
- RefreshError: refresh token rejected or refresh failed
- TokenExchangeError: authorization-code exchange rejected
- FetchError: page request failed after retries
- WriteError: backing-store failure while upserting
- SyncAlreadyRunningError: single-flight marker is held

Mapping never raises; bad fields degrade to None.
"""


class PracticePantherError(Exception):
    """Base exception for PracticePanther integration errors."""

    pass


class NoTokenError(PracticePantherError):
    """No active token set is stored; authorization must be completed first."""

    def __init__(self, message: str = "No PracticePanther token stored. Authorization required."):
        super().__init__(message)


class RefreshError(PracticePantherError):
    """Refreshing the access token failed.

    `needs_reauth` is True when the provider rejected the refresh token
    (expired/revoked/missing) and False for transport failures, where the
    stored token set is left untouched and a later attempt may succeed.
    """

    def __init__(self, message: str, *, needs_reauth: bool = True, status_code: int | None = None):
        super().__init__(message)
        self.needs_reauth = needs_reauth
        self.status_code = status_code


class TokenExchangeError(PracticePantherError):
    """Authorization-code exchange was rejected."""

    def __init__(self, message: str, *, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class FetchError(PracticePantherError):
    """A resource page could not be fetched."""

    def __init__(
        self,
        message: str,
        *,
        resource: str,
        page: int | None = None,
        status_code: int | None = None,
    ):
        super().__init__(message)
        self.resource = resource
        self.page = page
        self.status_code = status_code


class WriteError(PracticePantherError):
    """Upserting mapped records failed."""

    def __init__(self, message: str, *, table: str):
        super().__init__(message)
        self.table = table


class SyncAlreadyRunningError(PracticePantherError):
    """Another sync run holds the single-flight marker."""

    def __init__(self, sync_log_id: str | None = None):
        super().__init__("A sync is already running")
        self.sync_log_id = sync_log_id
