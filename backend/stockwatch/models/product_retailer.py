"""Link between a product and the URL it is tracked at."""

import uuid
from datetime import datetime
from typing import TYPE_CHECKING, Optional

from sqlalchemy import String, DateTime, ForeignKey, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from stockwatch.models.base import Base, UUIDPrimaryKeyMixin, utcnow

if TYPE_CHECKING:
    from stockwatch.models.product import Product
    from stockwatch.models.retailer import Retailer
    from stockwatch.models.availability_check import AvailabilityCheck


class ProductRetailer(UUIDPrimaryKeyMixin, Base):
    """One URL at which one product is tracked at one retailer.

    Links are never edited; changing the URL means removing the link and
    adding a new one.
    """

    __tablename__ = "product_retailers"

    product_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("products.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    retailer_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("retailers.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    url: Mapped[str] = mapped_column(String(2048), nullable=False)
    label: Mapped[Optional[str]] = mapped_column(String(100), nullable=True, comment="e.g. '64GB' or 'Blue'")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)

    __table_args__ = (
        UniqueConstraint("product_id", "url", name="uq_product_retailers_product_url"),
    )

    # Relationships
    product: Mapped["Product"] = relationship(back_populates="retailer_links")
    retailer: Mapped["Retailer"] = relationship(back_populates="links")
    checks: Mapped[list["AvailabilityCheck"]] = relationship(
        back_populates="product_retailer",
        cascade="all, delete-orphan",
    )

    def __repr__(self) -> str:
        return f"<ProductRetailer(id={self.id}, product_id={self.product_id}, url='{self.url}')>"
