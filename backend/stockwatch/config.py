"""Application configuration via Pydantic Settings."""

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Process-level settings loaded from environment variables.

    User-facing preferences (headless fallback, notification toggles,
    background interval) live in the database, see SettingService.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # Database
    DATABASE_URL: str = "sqlite+aiosqlite:///./stockwatch.db"

    @model_validator(mode="after")
    def fix_database_url(self) -> "Settings":
        """Hosted Postgres hands out postgresql:// but asyncpg needs postgresql+asyncpg://"""
        url = self.DATABASE_URL
        if url.startswith("postgresql://"):
            self.DATABASE_URL = url.replace("postgresql://", "postgresql+asyncpg://", 1)
        elif url.startswith("postgres://"):
            self.DATABASE_URL = url.replace("postgres://", "postgresql+asyncpg://", 1)
        return self

    # App
    ENVIRONMENT: str = "development"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"
    LOG_JSON: bool = False

    # Plain HTTP fetch
    HTTP_TIMEOUT_SECONDS: float = 30.0
    HTTP_CONNECT_TIMEOUT_SECONDS: float = 10.0

    # Browser tiers
    HEADLESS_PAGE_TIMEOUT_SECONDS: float = 60.0
    MANUAL_VERIFICATION_TIMEOUT_SECONDS: float = 300.0
    MANUAL_VERIFICATION_POLL_SECONDS: float = 5.0
    CHROME_PATH: str = ""  # Empty uses the Playwright-managed chromium
    BROWSER_USER_DATA_DIR: str = ""  # Empty launches a fresh profile per run

    # Bulk checks
    BULK_CHECK_DELAY_MS: int = 500
    SCHEDULER_IDLE_POLL_SECONDS: int = 60
    MAINTENANCE_INTERVAL_MINUTES: int = 60

    # Exchange rates
    EXCHANGE_RATE_API_URL: str = "https://api.frankfurter.app/latest"
    EXCHANGE_RATE_MAX_AGE_HOURS: int = 24

    def get_chrome_path(self) -> str | None:
        """Return the configured chromium executable, or None for the bundled one."""
        return self.CHROME_PATH.strip() or None

    def get_browser_user_data_dir(self) -> str | None:
        """Return the persistent browser profile directory, if one is configured."""
        return self.BROWSER_USER_DATA_DIR.strip() or None


settings = Settings()
