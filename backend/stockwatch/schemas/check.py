"""Availability check result schemas."""

from typing import Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from stockwatch.models.availability_check import AvailabilityStatus


class CheckProcessingResult(BaseModel):
    """Transition flags computed against the previous check for the link."""

    model_config = ConfigDict(frozen=True)

    is_back_in_stock: bool = False
    is_price_drop: bool = False
    error: Optional[str] = None


class BulkCheckResult(BaseModel):
    """One row of a bulk run summary."""

    product_id: UUID
    product_retailer_id: UUID
    product_name: str
    url: str
    status: AvailabilityStatus
    previous_status: Optional[AvailabilityStatus] = None
    is_back_in_stock: bool = False
    is_price_drop: bool = False
    price_minor_units: Optional[int] = None
    price_currency: Optional[str] = None
    normalized_price_minor_units: Optional[int] = None
    normalized_currency: Optional[str] = None
    error: Optional[str] = None


class BulkCheckSummary(BaseModel):
    """Outcome of a bulk run."""

    total: int = 0
    successful: int = 0
    failed: int = 0
    back_in_stock_count: int = 0
    price_drop_count: int = 0
    cancelled: bool = False
    results: list[BulkCheckResult] = Field(default_factory=list)


class ProgressEvent(BaseModel):
    """Emitted once per item during a bulk run."""

    model_config = ConfigDict(frozen=True)

    product_id: UUID
    status: AvailabilityStatus
    current: int
    total: int


class NotificationData(BaseModel):
    model_config = ConfigDict(frozen=True)

    title: str
    body: str


class DailyPriceComparison(BaseModel):
    """Average scraped price over the last 24 hours and the 24 hours before."""

    model_config = ConfigDict(frozen=True)

    today_average_minor_units: Optional[int] = None
    yesterday_average_minor_units: Optional[int] = None

    @property
    def is_price_drop(self) -> bool:
        if self.today_average_minor_units is None or self.yesterday_average_minor_units is None:
            return False
        return self.today_average_minor_units < self.yesterday_average_minor_units
