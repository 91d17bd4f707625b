"""Product model representing an item the user tracks."""

from typing import TYPE_CHECKING, Optional

from sqlalchemy import String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from stockwatch.models.base import Base, TimestampMixin, UUIDPrimaryKeyMixin

if TYPE_CHECKING:
    from stockwatch.models.product_retailer import ProductRetailer
    from stockwatch.models.availability_check import AvailabilityCheck


class Product(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    """A product tracked at one or more retailers.

    The currency is learned from the first scraped price when the user
    did not set one.
    """

    __tablename__ = "products"

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    currency: Mapped[Optional[str]] = mapped_column(
        String(3),
        nullable=True,
        comment="ISO 4217 code, auto-set from the first scraped price",
    )

    # Relationships
    retailer_links: Mapped[list["ProductRetailer"]] = relationship(
        back_populates="product",
        cascade="all, delete-orphan",
    )
    checks: Mapped[list["AvailabilityCheck"]] = relationship(
        back_populates="product",
        cascade="all, delete-orphan",
    )

    def __repr__(self) -> str:
        return f"<Product(id={self.id}, name='{self.name}')>"
