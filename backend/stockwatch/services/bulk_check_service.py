"""Bulk availability checks over every tracked link.

Links are checked one at a time with a fixed delay between them. A run
takes one settings snapshot up front and uses it for every item, so the
policy cannot change half way through a batch.
"""

import asyncio
import weakref
from typing import Optional, Protocol
from uuid import UUID

import structlog
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from stockwatch.config import settings
from stockwatch.core.exceptions import ExternalError, NotFoundError
from stockwatch.models.availability_check import AvailabilityStatus
from stockwatch.schemas.check import BulkCheckResult, BulkCheckSummary, CheckProcessingResult, ProgressEvent
from stockwatch.schemas.settings import CheckSnapshot
from stockwatch.services.availability_service import AvailabilityService
from stockwatch.services.exchange_rate_service import ExchangeRateService
from stockwatch.services.notification_service import NotificationService
from stockwatch.services.product_service import ProductService
from stockwatch.services.setting_service import SettingService

logger = structlog.get_logger(__name__)

_run_locks: "weakref.WeakKeyDictionary[asyncio.AbstractEventLoop, asyncio.Lock]" = weakref.WeakKeyDictionary()


def bulk_check_lock() -> asyncio.Lock:
    """The single-flight guard shared by scheduled and user-triggered runs."""
    loop = asyncio.get_running_loop()
    lock = _run_locks.get(loop)
    if lock is None:
        lock = _run_locks[loop] = asyncio.Lock()
    return lock


class ProgressSink(Protocol):
    async def report(self, product_id: UUID, status: AvailabilityStatus, current: int, total: int) -> None: ...


class LogProgressSink:
    """Default progress sink: one debug line per item."""

    async def report(self, product_id: UUID, status: AvailabilityStatus, current: int, total: int) -> None:
        event = ProgressEvent(product_id=product_id, status=status, current=current, total=total)
        logger.debug("bulk_check_progress", **event.model_dump(mode="json"))


def build_summary(
    results: list[tuple[BulkCheckResult, CheckProcessingResult]],
    cancelled: bool = False,
) -> BulkCheckSummary:
    """Count outcomes. Transition counts only include successful items."""
    summary = BulkCheckSummary(total=len(results), cancelled=cancelled)
    for row, processing in results:
        summary.results.append(row)
        if processing.error is not None:
            summary.failed += 1
            continue
        summary.successful += 1
        if processing.is_back_in_stock:
            summary.back_in_stock_count += 1
        if processing.is_price_drop:
            summary.price_drop_count += 1
    return summary


class BulkCheckService:
    """Runs the availability check over every link, one after another."""

    def __init__(
        self,
        db: AsyncSession,
        availability: Optional[AvailabilityService] = None,
        notifications: Optional[NotificationService] = None,
        exchange_rates: Optional[ExchangeRateService] = None,
        delay_ms: Optional[int] = None,
        refresh_exchange_rates: bool = True,
    ):
        """Initialize bulk check service.

        Args:
            db: Async database session; committed after every item
            availability: Availability service override for tests
            notifications: Where the end-of-run notification goes
            exchange_rates: Exchange rate service override
            delay_ms: Pause between items, defaults to settings.BULK_CHECK_DELAY_MS
            refresh_exchange_rates: Refresh stale rates before the run
        """
        self.db = db
        self.exchange_rates = exchange_rates or ExchangeRateService(db)
        self.availability = availability or AvailabilityService(db, exchange_rates=self.exchange_rates)
        self.notifications = notifications or NotificationService()
        self.products = ProductService(db)
        self.settings = SettingService(db)
        self.delay_seconds = (settings.BULK_CHECK_DELAY_MS if delay_ms is None else delay_ms) / 1000
        self.refresh_exchange_rates = refresh_exchange_rates
        self.logger = logger.bind(service="bulk_check_service")

    async def check_all(
        self,
        progress: Optional[ProgressSink] = None,
        cancel: Optional[asyncio.Event] = None,
        snapshot: Optional[CheckSnapshot] = None,
    ) -> BulkCheckSummary:
        """Check every tracked link.

        A second caller waits for a run already in progress instead of
        interleaving with it.

        Args:
            progress: Receives one report per item
            cancel: Set to stop before the next item; the item in flight finishes
            snapshot: Settings to use; read from the database when omitted
        """
        lock = bulk_check_lock()
        if lock.locked():
            self.logger.info("bulk_check_waiting_for_running_batch")
        async with lock:
            return await self._run(progress or LogProgressSink(), cancel, snapshot)

    async def _run(
        self,
        progress: ProgressSink,
        cancel: Optional[asyncio.Event],
        snapshot: Optional[CheckSnapshot],
    ) -> BulkCheckSummary:
        if snapshot is None:
            snapshot = (await self.settings.get()).snapshot()

        if self.refresh_exchange_rates:
            await self._refresh_rates(snapshot.preferred_currency)

        # Ids only: a rollback after a failed item expires loaded links
        link_ids = [link.id for link in await self.products.get_all_links()]
        total = len(link_ids)
        self.logger.info("bulk_check_started", total=total, **snapshot.model_dump())

        results: list[tuple[BulkCheckResult, CheckProcessingResult]] = []
        cancelled = False
        for index, link_id in enumerate(link_ids):
            if index > 0 and self.delay_seconds > 0:
                await asyncio.sleep(self.delay_seconds)
            if cancel is not None and cancel.is_set():
                cancelled = True
                self.logger.info("bulk_check_cancelled", checked=len(results), total=total)
                break

            try:
                link = await self.products.get_link(link_id)
            except NotFoundError:
                self.logger.info("bulk_item_link_removed", link_id=str(link_id))
                continue

            row, processing = await self.availability.check_link_with_context(link, snapshot)
            row, processing = await self._commit_item(row, processing)
            results.append((row, processing))
            await self._report(progress, row, index + 1, total)

        summary = build_summary(results, cancelled=cancelled)
        notification = NotificationService.build_bulk_notification(snapshot, summary)
        await self.notifications.send(notification)

        self.logger.info(
            "bulk_check_completed",
            total=summary.total,
            successful=summary.successful,
            failed=summary.failed,
            back_in_stock=summary.back_in_stock_count,
            price_drops=summary.price_drop_count,
            cancelled=summary.cancelled,
        )
        return summary

    async def _commit_item(
        self,
        row: BulkCheckResult,
        processing: CheckProcessingResult,
    ) -> tuple[BulkCheckResult, CheckProcessingResult]:
        try:
            await self.db.commit()
        except SQLAlchemyError as e:
            self.logger.error("bulk_item_commit_failed", link_id=str(row.product_retailer_id), error=str(e))
            await self.db.rollback()
            message = f"Check could not be saved: {e}"
            failed = row.model_copy(
                update={
                    "status": AvailabilityStatus.UNKNOWN,
                    "is_back_in_stock": False,
                    "is_price_drop": False,
                    "error": message,
                }
            )
            return failed, CheckProcessingResult(error=message)
        return row, processing

    async def _report(self, progress: ProgressSink, row: BulkCheckResult, current: int, total: int) -> None:
        try:
            await progress.report(row.product_id, row.status, current, total)
        except Exception as e:
            self.logger.warning("progress_report_failed", current=current, error=str(e))

    async def _refresh_rates(self, preferred_currency: str) -> None:
        try:
            await self.exchange_rates.refresh_if_stale(preferred_currency)
            await self.db.commit()
        except ExternalError as e:
            # Stored rates, if any, are still usable
            self.logger.warning("exchange_rate_refresh_skipped", error=e.message)
