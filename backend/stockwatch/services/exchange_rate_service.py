"""Exchange rate storage, lookup and refresh from frankfurter.app."""

from datetime import timedelta
from typing import Optional

import httpx
import structlog
from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from stockwatch.config import settings
from stockwatch.core.exceptions import ExternalError, NotFoundError, ValidationError
from stockwatch.models.base import as_utc, utcnow
from stockwatch.models.exchange_rate import ExchangeRate, RATE_SOURCE_API, RATE_SOURCE_MANUAL
from stockwatch.scrapers.utils.retry import http_retry
from stockwatch.services.currency import convert_minor_units

logger = structlog.get_logger(__name__)


class ExchangeRateService:
    """Service for managing exchange rates.

    Rates are stored per (from, to) pair. Writing a pair overwrites the
    previous rate and source, so an automatic refresh replaces a manual
    override for the same pair. Lookups still query the manual row first.
    """

    def __init__(self, db: AsyncSession, transport: Optional[httpx.AsyncBaseTransport] = None):
        """Initialize exchange rate service.

        Args:
            db: Async database session
            transport: Optional httpx transport, used by tests
        """
        self.db = db
        self._transport = transport
        self.logger = logger.bind(service="exchange_rate_service")

    async def find_rate(self, from_currency: str, to_currency: str) -> Optional[float]:
        """Rate for a pair, preferring a manual override; None if unknown."""
        from_code, to_code = from_currency.upper(), to_currency.upper()
        if from_code == to_code:
            return 1.0

        manual = await self._find(from_code, to_code, source=RATE_SOURCE_MANUAL)
        if manual is not None:
            return manual.rate

        stored = await self._find(from_code, to_code)
        return stored.rate if stored is not None else None

    async def get_rate(self, from_currency: str, to_currency: str) -> float:
        """Like find_rate but raises NotFoundError for unknown pairs."""
        rate = await self.find_rate(from_currency, to_currency)
        if rate is None:
            raise NotFoundError("ExchangeRate", f"{from_currency.upper()}->{to_currency.upper()}")
        return rate

    async def _find(self, from_code: str, to_code: str, source: Optional[str] = None) -> Optional[ExchangeRate]:
        stmt = select(ExchangeRate).where(
            ExchangeRate.from_currency == from_code,
            ExchangeRate.to_currency == to_code,
        )
        if source is not None:
            stmt = stmt.where(ExchangeRate.source == source)
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def upsert_rate(
        self,
        from_currency: str,
        to_currency: str,
        rate: float,
        source: str = RATE_SOURCE_API,
    ) -> ExchangeRate:
        """Insert or overwrite the rate for a pair."""
        from_code, to_code = from_currency.upper(), to_currency.upper()
        existing = await self._find(from_code, to_code)
        now = utcnow()

        if existing:
            existing.rate = rate
            existing.source = source
            existing.fetched_at = now
            await self.db.flush()
            return existing

        row = ExchangeRate(
            from_currency=from_code,
            to_currency=to_code,
            rate=rate,
            source=source,
            fetched_at=now,
        )
        self.db.add(row)
        await self.db.flush()
        return row

    async def set_manual_rate(self, from_currency: str, to_currency: str, rate: float) -> ExchangeRate:
        """Store a user-entered rate for a pair."""
        if rate <= 0:
            raise ValidationError("Exchange rate must be positive")
        for code in (from_currency, to_currency):
            if len(code) != 3 or not code.isalpha():
                raise ValidationError(f"Invalid currency code '{code}'")

        row = await self.upsert_rate(from_currency, to_currency, rate, RATE_SOURCE_MANUAL)
        self.logger.info("manual_rate_set", from_currency=row.from_currency, to_currency=row.to_currency, rate=rate)
        return row

    async def delete_rate(self, from_currency: str, to_currency: str) -> bool:
        result = await self.db.execute(
            delete(ExchangeRate).where(
                ExchangeRate.from_currency == from_currency.upper(),
                ExchangeRate.to_currency == to_currency.upper(),
            )
        )
        await self.db.flush()
        return result.rowcount > 0

    async def get_all(self) -> list[ExchangeRate]:
        result = await self.db.execute(
            select(ExchangeRate).order_by(ExchangeRate.from_currency, ExchangeRate.to_currency)
        )
        return list(result.scalars().all())

    async def fetch_from_api(self, base: str) -> dict[str, float]:
        """Fetch latest rates for ``base``: ``{"USD": 0.63}`` means 1 base = 0.63 USD.

        Raises:
            ExternalError: API unreachable or returned something unexpected
        """
        try:
            payload = await self._get_latest(base.upper())
        except (httpx.HTTPError, ValueError) as e:
            self.logger.warning("exchange_rate_fetch_failed", base=base, error=str(e))
            raise ExternalError(f"Failed to fetch exchange rates: {e}") from e

        rates = payload.get("rates") if isinstance(payload, dict) else None
        if not isinstance(rates, dict):
            raise ExternalError("Failed to parse exchange rates: missing 'rates'")
        try:
            return {code.upper(): float(value) for code, value in rates.items() if value}
        except (TypeError, ValueError, AttributeError) as e:
            raise ExternalError(f"Failed to parse exchange rates: {e}") from e

    @http_retry
    async def _get_latest(self, base: str) -> dict:
        async with httpx.AsyncClient(timeout=settings.HTTP_CONNECT_TIMEOUT_SECONDS, transport=self._transport) as client:
            response = await client.get(settings.EXCHANGE_RATE_API_URL, params={"base": base})
            response.raise_for_status()
            return response.json()

    async def refresh_rates(self, preferred_currency: str) -> int:
        """Store both directions of every rate for the preferred currency.

        Returns:
            Number of rows written
        """
        preferred = preferred_currency.upper()
        rates = await self.fetch_from_api(preferred)

        written = 0
        for currency, rate in rates.items():
            # 1 USD buys 1/0.63 AUD when base AUD quotes USD at 0.63
            await self.upsert_rate(currency, preferred, 1.0 / rate, RATE_SOURCE_API)
            await self.upsert_rate(preferred, currency, rate, RATE_SOURCE_API)
            written += 2

        self.logger.info("exchange_rates_refreshed", base=preferred, rows=written)
        return written

    async def refresh_if_stale(self, preferred_currency: str) -> bool:
        """Refresh when there are no rates or the oldest api rate is too old.

        A preferred currency with no api rates quoted into it also counts as
        stale, which covers the user switching preferred currency.

        Returns:
            True if a refresh ran
        """
        preferred = preferred_currency.upper()
        rows = await self.get_all()
        api_rows = [row for row in rows if row.source == RATE_SOURCE_API]
        quotes_preferred = any(row.to_currency == preferred for row in api_rows)

        if api_rows and quotes_preferred:
            oldest = min(as_utc(row.fetched_at) for row in api_rows)
            if utcnow() - oldest < timedelta(hours=settings.EXCHANGE_RATE_MAX_AGE_HOURS):
                return False
        elif rows and not api_rows:
            # Only manual rates stored
            return False

        await self.refresh_rates(preferred_currency)
        return True

    async def normalize_price(
        self,
        amount: Optional[int],
        currency: Optional[str],
        preferred_currency: str,
    ) -> tuple[Optional[int], Optional[str]]:
        """Convert an amount into the preferred currency.

        Returns:
            (amount, currency) in the preferred currency, or (None, None)
            when there is no amount, no currency or no rate
        """
        if amount is None or currency is None:
            return None, None
        rate = await self.find_rate(currency, preferred_currency)
        if rate is None:
            self.logger.debug("no_exchange_rate", from_currency=currency, to_currency=preferred_currency)
            return None, None
        preferred = preferred_currency.upper()
        return convert_minor_units(amount, rate, currency, preferred), preferred
