"""Notification text and delivery."""

from typing import Iterable, Optional, Protocol

import structlog

from stockwatch.schemas.check import BulkCheckResult, BulkCheckSummary, NotificationData
from stockwatch.schemas.settings import CheckSnapshot

logger = structlog.get_logger(__name__)


class NotificationSink(Protocol):
    """Delivers a notification to the user (desktop toast, webhook, ...)."""

    async def notify(self, title: str, body: str) -> None: ...


class LogNotificationSink:
    """Default sink: writes notifications to the log."""

    async def notify(self, title: str, body: str) -> None:
        logger.info("notification", title=title, body=body)


class NotificationService:
    """Builds notification text from check outcomes and hands it to a sink."""

    def __init__(self, sink: Optional[NotificationSink] = None):
        self.sink = sink or LogNotificationSink()
        self.logger = logger.bind(service="notification_service")

    @staticmethod
    def build_single_notification(product_name: str) -> NotificationData:
        return NotificationData(
            title="Product Back in Stock!",
            body=f"{product_name} is now available!",
        )

    @staticmethod
    def build_bulk_notification(
        snapshot: CheckSnapshot,
        summary: BulkCheckSummary,
    ) -> Optional[NotificationData]:
        """Notification for a bulk run, or None if there is nothing to say.

        Counts are per product: one product back in stock at two retailers
        is still named on its own. Several products are counted and listed.
        """
        if not snapshot.notifications_enabled:
            return None
        back_in_stock = summary.back_in_stock_count
        price_drops = summary.price_drop_count
        if back_in_stock == 0 and price_drops == 0:
            return None

        if back_in_stock > 0 and price_drops > 0:
            title = "Stock & Price Updates!"
        elif back_in_stock > 0:
            title = "Products Back in Stock!"
        else:
            title = "Price Drops!"

        parts = []
        if back_in_stock > 0:
            names = _names(r for r in summary.results if r.is_back_in_stock)
            if len(names) == 1:
                parts.append(f"{names[0]} is back in stock!")
            else:
                parts.append(f"{len(names)} products back in stock: {', '.join(names)}")
        if price_drops > 0:
            names = _names(r for r in summary.results if r.is_price_drop)
            if len(names) == 1:
                parts.append(f"{names[0]} has a price drop!")
            else:
                parts.append(f"{len(names)} products have price drops: {', '.join(names)}")

        return NotificationData(title=title, body=" ".join(parts))

    async def send(self, notification: Optional[NotificationData]) -> bool:
        """Deliver a notification; delivery errors are logged, never raised.

        Returns:
            True if the sink accepted the notification
        """
        if notification is None:
            return False
        try:
            await self.sink.notify(notification.title, notification.body)
        except Exception as e:
            self.logger.warning("notification_delivery_failed", title=notification.title, error=str(e))
            return False
        return True


def _names(results: Iterable[BulkCheckResult]) -> list[str]:
    """Product names in order, each once (a product can have several links)."""
    seen: list[str] = []
    for result in results:
        if result.product_name not in seen:
            seen.append(result.product_name)
    return seen
