"""Availability checks: run one, store it, compare it with the last one."""

from datetime import datetime, timedelta
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional
from uuid import UUID

import structlog
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from stockwatch.core.exceptions import InternalError, StockWatchException, ValidationError
from stockwatch.models.availability_check import AvailabilityCheck, AvailabilityStatus
from stockwatch.models.base import utcnow
from stockwatch.models.product_retailer import ProductRetailer
from stockwatch.schemas.check import BulkCheckResult, CheckProcessingResult, DailyPriceComparison, NotificationData
from stockwatch.schemas.settings import CheckSnapshot
from stockwatch.scrapers.base import ScrapingResult
from stockwatch.scrapers.scraper_service import AvailabilityScraper
from stockwatch.services.currency import rescale_minor_units
from stockwatch.services.exchange_rate_service import ExchangeRateService
from stockwatch.services.notification_service import NotificationService
from stockwatch.services.product_service import ProductService
from stockwatch.services.session_service import VerifiedSessionService

logger = structlog.get_logger(__name__)


def is_back_in_stock(
    previous_status: Optional[AvailabilityStatus],
    new_status: AvailabilityStatus,
) -> bool:
    """In stock now, and the previous check (if there was one) was not."""
    if previous_status is None:
        return False
    return previous_status != AvailabilityStatus.IN_STOCK and new_status == AvailabilityStatus.IN_STOCK


def is_price_drop(previous: Optional[AvailabilityCheck], current: AvailabilityCheck) -> bool:
    """Normalized price strictly lower than the previous check's, same currency."""
    if previous is None:
        return False
    if previous.normalized_price_minor_units is None or current.normalized_price_minor_units is None:
        return False
    if previous.normalized_currency != current.normalized_currency:
        return False
    return current.normalized_price_minor_units < previous.normalized_price_minor_units


class AvailabilityService:
    """Checks product-retailer links and records the outcome.

    Every check that reaches the scraper stores exactly one
    ``AvailabilityCheck`` row, failed or not.
    """

    def __init__(
        self,
        db: AsyncSession,
        scraper: Optional[AvailabilityScraper] = None,
        exchange_rates: Optional[ExchangeRateService] = None,
    ):
        """Initialize availability service.

        Args:
            db: Async database session
            scraper: Scraper override, tests inject one with fake fetchers
            exchange_rates: Exchange rate service override
        """
        self.db = db
        self.products = ProductService(db)
        self.scraper = scraper or AvailabilityScraper(VerifiedSessionService(db))
        self.exchange_rates = exchange_rates or ExchangeRateService(db)
        self.logger = logger.bind(service="availability_service")

    async def check_product_retailer(
        self,
        link_id: UUID,
        snapshot: CheckSnapshot,
    ) -> tuple[AvailabilityCheck, Optional[AvailabilityCheck]]:
        """Check one link by id.

        Returns:
            (new check, the check that preceded it or None)

        Raises:
            NotFoundError: Link does not exist
        """
        link = await self.products.get_link(link_id)
        return await self.check_link(link, snapshot)

    async def check_link(
        self,
        link: ProductRetailer,
        snapshot: CheckSnapshot,
    ) -> tuple[AvailabilityCheck, Optional[AvailabilityCheck]]:
        """Run the scraper for a loaded link and store the outcome."""
        previous = await self.get_latest_for_link(link.id)

        try:
            result = await self.scraper.check(link.url, snapshot.fetch_policy)
        except StockWatchException as e:
            log = self.logger.error if isinstance(e, InternalError) else self.logger.warning
            log("availability_check_failed", link_id=str(link.id), url=link.url, code=e.code, error=e.message)
            check = await self._record_failure(link, e.message)
        except Exception as e:
            self.logger.error(
                "availability_check_crashed",
                link_id=str(link.id),
                url=link.url,
                error=str(e),
                exc_info=True,
            )
            check = await self._record_failure(link, f"Unexpected error: {e}")
        else:
            check = await self._record_success(link, result, snapshot.preferred_currency)

        return check, previous

    async def check_product(
        self,
        product_id: UUID,
        snapshot: CheckSnapshot,
        notifications: Optional[NotificationService] = None,
    ) -> tuple[list[AvailabilityCheck], Optional[NotificationData]]:
        """Check every link of one product, notifying if it came back in stock.

        Returns:
            (new checks in link order, notification sent or None)

        Raises:
            NotFoundError: Product does not exist
            ValidationError: Product has no links to check
        """
        product = await self.products.get_product(product_id)
        links = await self.products.get_links_for_product(product.id)
        if not links:
            raise ValidationError(f"Product '{product.name}' has no retailer links to check")

        checks = []
        back_in_stock = False
        for link in links:
            check, previous = await self.check_link(link, snapshot)
            checks.append(check)
            back_in_stock = back_in_stock or self.process_check_result(check, previous).is_back_in_stock

        notification = None
        if back_in_stock and snapshot.notifications_enabled:
            notification = NotificationService.build_single_notification(product.name)
            if notifications is not None:
                await notifications.send(notification)
        return checks, notification

    async def _record_success(
        self,
        link: ProductRetailer,
        result: ScrapingResult,
        preferred_currency: str,
    ) -> AvailabilityCheck:
        price = result.price
        amount = rescale_minor_units(price.minor_units, price.currency) if price.is_present else None
        normalized, normalized_currency = await self.exchange_rates.normalize_price(
            amount, price.currency, preferred_currency
        )

        check = AvailabilityCheck(
            product_id=link.product_id,
            product_retailer_id=link.id,
            status=result.status.value,
            raw_availability=result.raw_availability,
            price_minor_units=amount,
            price_currency=price.currency if amount is not None else None,
            raw_price=price.raw,
            normalized_price_minor_units=normalized,
            normalized_currency=normalized_currency,
            checked_at=utcnow(),
        )
        self.db.add(check)
        await self.db.flush()

        if price.currency:
            product = await self.products.get_product(link.product_id)
            await self.products.set_currency_if_missing(product, price.currency)

        self.logger.info(
            "availability_check_recorded",
            link_id=str(link.id),
            status=check.status,
            price_minor_units=amount,
            currency=check.price_currency,
        )
        return check

    async def _record_failure(self, link: ProductRetailer, message: str) -> AvailabilityCheck:
        check = AvailabilityCheck(
            product_id=link.product_id,
            product_retailer_id=link.id,
            status=AvailabilityStatus.UNKNOWN.value,
            error_message=message,
            checked_at=utcnow(),
        )
        self.db.add(check)
        await self.db.flush()
        return check

    async def get_latest_for_link(self, link_id: UUID) -> Optional[AvailabilityCheck]:
        result = await self.db.execute(
            select(AvailabilityCheck)
            .where(AvailabilityCheck.product_retailer_id == link_id)
            .order_by(AvailabilityCheck.checked_at.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def get_previous_check(self, check: AvailabilityCheck) -> Optional[AvailabilityCheck]:
        """The check stored for the same link immediately before ``check``."""
        result = await self.db.execute(
            select(AvailabilityCheck)
            .where(
                AvailabilityCheck.product_retailer_id == check.product_retailer_id,
                AvailabilityCheck.checked_at < check.checked_at,
            )
            .order_by(AvailabilityCheck.checked_at.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def get_history(self, link_id: UUID, limit: Optional[int] = None) -> list[AvailabilityCheck]:
        """Checks for a link, newest first."""
        stmt = (
            select(AvailabilityCheck)
            .where(AvailabilityCheck.product_retailer_id == link_id)
            .order_by(AvailabilityCheck.checked_at.desc())
        )
        if limit is not None:
            stmt = stmt.limit(limit)
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def get_cheapest_current_price(self, product_id: UUID) -> Optional[AvailabilityCheck]:
        """The cheapest latest check across a product's links.

        Only each link's most recent check counts, and only if it carries a
        price. Prices in a single currency are compared as scraped; mixed
        currencies are compared by normalized price, leaving out links with
        no rate. Returns None when nothing is comparable.
        """
        priced = []
        for link in await self.products.get_links_for_product(product_id):
            latest = await self.get_latest_for_link(link.id)
            if latest is not None and latest.price_minor_units is not None:
                priced.append(latest)
        if not priced:
            return None

        if len({c.price_currency for c in priced}) == 1:
            return min(priced, key=lambda c: c.price_minor_units)

        normalized = [c for c in priced if c.normalized_price_minor_units is not None]
        if not normalized or len({c.normalized_currency for c in normalized}) > 1:
            return None
        return min(normalized, key=lambda c: c.normalized_price_minor_units)

    async def get_daily_price_comparison(
        self,
        product_id: UUID,
        now: Optional[datetime] = None,
    ) -> DailyPriceComparison:
        """Average price over the last 24 hours vs the 24 hours before, all links."""
        return await self._daily_comparison(AvailabilityCheck.product_id == product_id, now)

    async def get_daily_price_comparison_for_link(
        self,
        link_id: UUID,
        now: Optional[datetime] = None,
    ) -> DailyPriceComparison:
        """Same as get_daily_price_comparison, for a single link."""
        return await self._daily_comparison(AvailabilityCheck.product_retailer_id == link_id, now)

    async def _daily_comparison(self, condition, now: Optional[datetime]) -> DailyPriceComparison:
        # Rolling windows rather than calendar days, so the local timezone never matters
        now = now or utcnow()
        day_ago = now - timedelta(hours=24)
        two_days_ago = now - timedelta(hours=48)
        return DailyPriceComparison(
            today_average_minor_units=await self._average_price(condition, day_ago, now),
            yesterday_average_minor_units=await self._average_price(condition, two_days_ago, day_ago),
        )

    async def _average_price(self, condition, start: datetime, end: datetime) -> Optional[int]:
        """Rounded (half up) average of priced checks with start < checked_at <= end."""
        result = await self.db.execute(
            select(func.avg(AvailabilityCheck.price_minor_units)).where(
                condition,
                AvailabilityCheck.price_minor_units.is_not(None),
                AvailabilityCheck.checked_at > start,
                AvailabilityCheck.checked_at <= end,
            )
        )
        average = result.scalar_one_or_none()
        if average is None:
            return None
        return int(Decimal(str(average)).quantize(Decimal("1"), rounding=ROUND_HALF_UP))

    @staticmethod
    def process_check_result(
        check: AvailabilityCheck,
        previous: Optional[AvailabilityCheck],
    ) -> CheckProcessingResult:
        """Compare a new check with the one before it."""
        if check.is_error:
            return CheckProcessingResult(error=check.error_message)
        previous_status = previous.availability if previous is not None else None
        return CheckProcessingResult(
            is_back_in_stock=is_back_in_stock(previous_status, check.availability),
            is_price_drop=is_price_drop(previous, check),
        )

    async def check_link_with_context(
        self,
        link: ProductRetailer,
        snapshot: CheckSnapshot,
    ) -> tuple[BulkCheckResult, CheckProcessingResult]:
        """Check a link for a bulk run; never raises.

        Failures that happen before a check can be stored (e.g. the database
        going away) still produce an error row in the summary.
        """
        # Read up front: a rollback expires the link
        context = {
            "product_id": link.product_id,
            "product_retailer_id": link.id,
            "product_name": link.product.name,
            "url": link.url,
        }
        try:
            check, previous = await self.check_link(link, snapshot)
        except Exception as e:
            self.logger.error("bulk_item_failed", link_id=str(context["product_retailer_id"]), error=str(e), exc_info=True)
            await self.db.rollback()
            return self.build_context_error_result(context, str(e))

        processing = self.process_check_result(check, previous)
        row = BulkCheckResult(
            **context,
            status=check.availability,
            previous_status=previous.availability if previous is not None else None,
            is_back_in_stock=processing.is_back_in_stock,
            is_price_drop=processing.is_price_drop,
            price_minor_units=check.price_minor_units,
            price_currency=check.price_currency,
            normalized_price_minor_units=check.normalized_price_minor_units,
            normalized_currency=check.normalized_currency,
            error=check.error_message,
        )
        return row, processing

    @staticmethod
    def build_context_error_result(
        context: dict,
        message: str,
    ) -> tuple[BulkCheckResult, CheckProcessingResult]:
        """Summary row for an item whose check could not even be stored."""
        row = BulkCheckResult(**context, status=AvailabilityStatus.UNKNOWN, error=message)
        return row, CheckProcessingResult(error=message)
