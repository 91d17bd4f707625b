"""Run one bulk availability check over every tracked link.

Uses the settings stored in the database, exactly like a background cycle.

Usage:
    python scripts/check_all.py
    python scripts/check_all.py --delay-ms 2000
"""

import argparse
import asyncio
import os
import sys
from uuid import UUID

# Add backend to path so the script runs from a plain checkout
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "backend"))

from stockwatch.core.logging import configure_logging
from stockwatch.db.session import async_session_factory
from stockwatch.db.utils import init_db
from stockwatch.models.availability_check import AvailabilityStatus
from stockwatch.services.bulk_check_service import BulkCheckService


class PrintProgress:
    async def report(self, product_id: UUID, status: AvailabilityStatus, current: int, total: int) -> None:
        print(f"  [{current}/{total}] {product_id}  {status.value}")


async def check_all(delay_ms: int | None) -> int:
    await init_db()

    print(f"\n{'='*70}")
    print("  Bulk availability check")
    print(f"{'='*70}\n")

    async with async_session_factory() as db:
        service = BulkCheckService(db, delay_ms=delay_ms)
        summary = await service.check_all(progress=PrintProgress())

    print(f"\n{'='*70}")
    print("  Summary")
    print(f"{'='*70}")
    print(f"  Checked:        {summary.total}{' (cancelled)' if summary.cancelled else ''}")
    print(f"  Successful:     {summary.successful}")
    print(f"  Failed:         {summary.failed}")
    print(f"  Back in stock:  {summary.back_in_stock_count}")
    print(f"  Price drops:    {summary.price_drop_count}")

    failures = [row for row in summary.results if row.error]
    if failures:
        print("  Errors:")
        for row in failures:
            print(f"    - {row.product_name} ({row.url}): {row.error}")
    print(f"{'='*70}\n")
    return 1 if summary.failed else 0


def main():
    parser = argparse.ArgumentParser(description="Check every tracked product link once")
    parser.add_argument(
        "--delay-ms",
        type=int,
        default=None,
        help="Pause between links (default: BULK_CHECK_DELAY_MS)",
    )
    parser.add_argument("--verbose", action="store_true", help="Log at debug level")
    args = parser.parse_args()

    configure_logging(level="DEBUG" if args.verbose else "INFO")
    sys.exit(asyncio.run(check_all(args.delay_ms)))


if __name__ == "__main__":
    main()
