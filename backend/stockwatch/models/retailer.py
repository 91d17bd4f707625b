"""Retailer model, one row per shop domain."""

from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import String, DateTime
from sqlalchemy.orm import Mapped, mapped_column, relationship

from stockwatch.models.base import Base, UUIDPrimaryKeyMixin, utcnow

if TYPE_CHECKING:
    from stockwatch.models.product_retailer import ProductRetailer


class Retailer(UUIDPrimaryKeyMixin, Base):
    """A shop identified by its host name (``www.`` stripped)."""

    __tablename__ = "retailers"

    domain: Mapped[str] = mapped_column(String(255), unique=True, index=True, nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)

    links: Mapped[list["ProductRetailer"]] = relationship(back_populates="retailer")

    def __repr__(self) -> str:
        return f"<Retailer(id={self.id}, domain='{self.domain}')>"
