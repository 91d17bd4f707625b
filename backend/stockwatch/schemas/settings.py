"""User preference schemas."""

from pydantic import BaseModel, ConfigDict, Field, field_validator

from stockwatch.scrapers.fetch_state import FetchPolicy
from stockwatch.services.currency import is_supported_currency


class UserSettings(BaseModel):
    """User-editable preferences, persisted in ``app_settings``."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    headless_enabled: bool = True
    manual_verification_allowed: bool = False
    session_cache_ttl_days: int = Field(default=14, ge=1, le=365)
    notifications_enabled: bool = True
    preferred_currency: str = "USD"
    background_interval_minutes: int = Field(default=60, ge=5, le=1440)
    background_enabled: bool = False

    @field_validator("preferred_currency")
    @classmethod
    def check_currency(cls, value: str) -> str:
        code = value.strip().upper()
        if not is_supported_currency(code):
            raise ValueError(f"Unsupported currency '{value}'")
        return code

    def snapshot(self) -> "CheckSnapshot":
        """Freeze the subset a bulk run needs for its whole duration."""
        return CheckSnapshot(
            headless_enabled=self.headless_enabled,
            manual_verification_allowed=self.manual_verification_allowed,
            session_cache_ttl_days=self.session_cache_ttl_days,
            notifications_enabled=self.notifications_enabled,
            preferred_currency=self.preferred_currency,
        )


class CheckSnapshot(BaseModel):
    """Settings captured once at the start of a run and threaded through it."""

    model_config = ConfigDict(frozen=True)

    headless_enabled: bool = True
    manual_verification_allowed: bool = False
    session_cache_ttl_days: int = 14
    notifications_enabled: bool = True
    preferred_currency: str = "USD"

    @property
    def fetch_policy(self) -> FetchPolicy:
        return FetchPolicy(
            headless_enabled=self.headless_enabled,
            manual_verification_allowed=self.manual_verification_allowed,
            session_ttl_days=self.session_cache_ttl_days,
        )
