"""Pydantic schemas for StockWatch.

All result and settings models are defined here for easy import.
"""

from stockwatch.schemas.check import (
    BulkCheckResult,
    BulkCheckSummary,
    CheckProcessingResult,
    DailyPriceComparison,
    NotificationData,
    ProgressEvent,
)
from stockwatch.schemas.settings import CheckSnapshot, UserSettings

__all__ = [
    # Checks
    "BulkCheckResult",
    "BulkCheckSummary",
    "CheckProcessingResult",
    "DailyPriceComparison",
    "NotificationData",
    "ProgressEvent",
    # Settings
    "CheckSnapshot",
    "UserSettings",
]
