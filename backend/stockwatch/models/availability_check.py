"""Availability check history, one row per observation."""

import enum
import re
import uuid
from datetime import datetime
from typing import TYPE_CHECKING, Optional

import structlog
from sqlalchemy import BigInteger, String, Text, DateTime, ForeignKey, Index
from sqlalchemy.orm import Mapped, mapped_column, relationship

from stockwatch.models.base import Base, UUIDPrimaryKeyMixin, utcnow

if TYPE_CHECKING:
    from stockwatch.models.product import Product
    from stockwatch.models.product_retailer import ProductRetailer

logger = structlog.get_logger(__name__)

_NON_ALPHANUMERIC = re.compile(r"[^a-z0-9]")
_IN_STOCK_TOKENS = ("instock", "instoreonly", "onlineonly", "limitedavailability", "available")
_OUT_OF_STOCK_TOKENS = ("outofstock", "soldout", "discontinued", "unavailable")
_BACK_ORDER_TOKENS = ("backorder", "preorder", "presale")


class AvailabilityStatus(str, enum.Enum):
    """Stock status stored on every check."""

    IN_STOCK = "in_stock"
    OUT_OF_STOCK = "out_of_stock"
    BACK_ORDER = "back_order"
    UNKNOWN = "unknown"

    @classmethod
    def from_schema_org(cls, value: str) -> "AvailabilityStatus":
        """Map a schema.org ItemAvailability value to a status.

        Accepts the full URI (``http://schema.org/InStock``), the short form
        (``InStock``) and loose spellings such as ``"In Stock"`` or
        ``"sold_out"``: case and punctuation are ignored.
        """
        token = _NON_ALPHANUMERIC.sub("", value.lower())
        # "unavailable" contains "available"
        if "unavailable" in token:
            return cls.OUT_OF_STOCK
        if any(marker in token for marker in _IN_STOCK_TOKENS):
            return cls.IN_STOCK
        if any(marker in token for marker in _OUT_OF_STOCK_TOKENS):
            return cls.OUT_OF_STOCK
        if any(marker in token for marker in _BACK_ORDER_TOKENS):
            return cls.BACK_ORDER
        logger.warning("unrecognized_availability", raw_availability=value)
        return cls.UNKNOWN


class AvailabilityCheck(UUIDPrimaryKeyMixin, Base):
    """A single stock/price observation for a product-retailer link.

    Rows are append-only. A failed check still gets a row, with
    ``status='unknown'``, an error message and no price.
    """

    __tablename__ = "availability_checks"

    product_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("products.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    product_retailer_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("product_retailers.id", ondelete="CASCADE"),
        nullable=False,
    )

    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=AvailabilityStatus.UNKNOWN.value,
        comment="in_stock, out_of_stock, back_order or unknown",
    )
    raw_availability: Mapped[Optional[str]] = mapped_column(
        String(255),
        nullable=True,
        comment="Verbatim source value, e.g. http://schema.org/InStock",
    )
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Price as scraped
    price_minor_units: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)
    price_currency: Mapped[Optional[str]] = mapped_column(String(3), nullable=True)
    raw_price: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    # Price converted to the preferred currency
    normalized_price_minor_units: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)
    normalized_currency: Mapped[Optional[str]] = mapped_column(String(3), nullable=True)

    checked_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
    )

    __table_args__ = (
        Index("idx_availability_checks_link_checked", "product_retailer_id", "checked_at"),
    )

    # Relationships
    product: Mapped["Product"] = relationship(back_populates="checks")
    product_retailer: Mapped["ProductRetailer"] = relationship(back_populates="checks")

    @property
    def availability(self) -> AvailabilityStatus:
        return AvailabilityStatus(self.status)

    @property
    def is_error(self) -> bool:
        return self.error_message is not None

    def __repr__(self) -> str:
        return (
            f"<AvailabilityCheck(id={self.id}, product_retailer_id={self.product_retailer_id}, "
            f"status='{self.status}', checked_at={self.checked_at})>"
        )
