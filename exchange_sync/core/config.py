"""Application configuration with environment variables."""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # Environment
    ENV: str = "dev"

    # Database
    DATABASE_URL: str

    # Token Encryption (Fernet key for OAuth tokens at rest)
    TOKEN_ENCRYPTION_KEY: str = ""  # Generate with: python -c "from cryptography.fernet import Fernet; print(Fernet.generate_key().decode())"

    # PracticePanther OAuth
    PP_CLIENT_ID: str = ""
    PP_CLIENT_SECRET: str = ""
    PP_REDIRECT_URI: str = "http://localhost:8000/integrations/practicepanther/callback"
    PP_AUTH_URL: str = "https://app.practicepanther.com/OAuth/Authorize"
    PP_TOKEN_URL: str = "https://app.practicepanther.com/OAuth/Token"
    PP_OAUTH_SCOPE: str = "full"
    PP_TOKEN_REFRESH_MARGIN_SECONDS: int = 300  # Refresh 5 minutes before expiry
    PP_TOKEN_DEFAULT_TTL_SECONDS: int = 86400  # PP access tokens live 24 hours
    PP_TOKEN_EXPIRING_SOON_MINUTES: int = 60

    # PracticePanther REST API
    PP_API_BASE_URL: str = "https://app.practicepanther.com/api/v2"
    PP_HTTP_TIMEOUT_SECONDS: float = 30.0
    PP_HTTP_MAX_ATTEMPTS: int = 3
    PP_HTTP_RETRY_BASE_DELAY: float = 0.5
    PP_PAGE_SIZE: int = 100
    PP_FULL_SYNC_MAX_PAGES: int = 500
    PP_INCREMENTAL_LOOKBACK_HOURS: int = 24
    PP_UPSERT_BATCH_SIZE: int = 500

    # Scheduled sync
    SYNC_SCHEDULER_ENABLED: bool = True
    SYNC_INCREMENTAL_INTERVAL_MINUTES: int = 15
    SYNC_DAILY_FULL_HOUR: int = 2
    SYNC_DAILY_FULL_MINUTE: int = 0
    SYNC_TIMEZONE: str = "America/New_York"
    SYNC_STALE_RUN_MINUTES: int = 180  # Running logs older than this are abandoned

    @property
    def pp_oauth_configured(self) -> bool:
        """True when client credentials are present."""
        return bool(self.PP_CLIENT_ID and self.PP_CLIENT_SECRET)


settings = Settings()
