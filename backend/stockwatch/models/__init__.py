"""SQLAlchemy models for StockWatch.

All models are imported here so Base.metadata knows every table.
"""

from stockwatch.models.base import Base, TimestampMixin, UUIDPrimaryKeyMixin
from stockwatch.models.product import Product
from stockwatch.models.retailer import Retailer
from stockwatch.models.product_retailer import ProductRetailer
from stockwatch.models.availability_check import AvailabilityCheck, AvailabilityStatus
from stockwatch.models.verified_session import VerifiedSession
from stockwatch.models.exchange_rate import ExchangeRate
from stockwatch.models.app_setting import AppSetting

__all__ = [
    "Base",
    "TimestampMixin",
    "UUIDPrimaryKeyMixin",
    "Product",
    "Retailer",
    "ProductRetailer",
    "AvailabilityCheck",
    "AvailabilityStatus",
    "VerifiedSession",
    "ExchangeRate",
    "AppSetting",
]
