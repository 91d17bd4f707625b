"""Exchange rates between currency pairs."""

from datetime import datetime

from sqlalchemy import String, Float, DateTime, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from stockwatch.models.base import Base, UUIDPrimaryKeyMixin, utcnow

RATE_SOURCE_API = "api"
RATE_SOURCE_MANUAL = "manual"


class ExchangeRate(UUIDPrimaryKeyMixin, Base):
    """How many units of ``to_currency`` one unit of ``from_currency`` buys.

    There is one row per pair; writing a pair again overwrites rate, source
    and fetched_at whatever the previous source was.
    """

    __tablename__ = "exchange_rates"

    from_currency: Mapped[str] = mapped_column(String(3), nullable=False)
    to_currency: Mapped[str] = mapped_column(String(3), nullable=False)
    rate: Mapped[float] = mapped_column(Float, nullable=False)
    source: Mapped[str] = mapped_column(
        String(10),
        nullable=False,
        default=RATE_SOURCE_API,
        comment="'api' or 'manual'",
    )
    fetched_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)

    __table_args__ = (
        UniqueConstraint("from_currency", "to_currency", name="uq_exchange_rates_pair"),
    )

    def __repr__(self) -> str:
        return f"<ExchangeRate({self.from_currency}->{self.to_currency}={self.rate}, source='{self.source}')>"
