"""One-off availability check of a single product URL.

Nothing is recorded except a verified session when the manual tier runs.

Usage:
    python scripts/check_url.py https://shop.example.com/products/widget
    python scripts/check_url.py https://shop.example.com/p/1 --no-headless
    python scripts/check_url.py https://shop.example.com/p/1 --manual
"""

import argparse
import asyncio
import os
import sys

# Add backend to path so the script runs from a plain checkout
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "backend"))

from stockwatch.core.exceptions import StockWatchException
from stockwatch.core.logging import configure_logging
from stockwatch.db.utils import init_db, session_scope
from stockwatch.scrapers.fetch_state import FetchPolicy
from stockwatch.scrapers.scraper_service import AvailabilityScraper
from stockwatch.services.currency import currency_exponent
from stockwatch.services.session_service import VerifiedSessionService


async def check_url(url: str, headless: bool, manual: bool) -> int:
    """Check one URL and print what was found.

    Returns:
        Process exit code
    """
    await init_db()
    policy = FetchPolicy(headless_enabled=headless, manual_verification_allowed=manual)

    print(f"\n{'='*70}")
    print(f"  Checking {url}")
    print(f"  Headless fallback: {'on' if headless else 'off'}   Manual verification: {'on' if manual else 'off'}")
    print(f"{'='*70}\n")

    try:
        async with session_scope() as db:
            scraper = AvailabilityScraper(VerifiedSessionService(db))
            result = await scraper.check(url, policy)
    except StockWatchException as e:
        print(f"Check failed [{e.code}]: {e.message}\n")
        return 1

    print(f"  Status:       {result.status.value}")
    print(f"  Raw value:    {result.raw_availability or '-'}")
    print(f"  Price:        {_format_price(result.price.minor_units, result.price.currency)}")
    print(f"  Raw price:    {result.price.raw or '-'}\n")
    return 0


def _format_price(minor_units, currency) -> str:
    if minor_units is None:
        return "-"
    if currency is None:
        return f"{minor_units / 100:,.2f}"
    exponent = currency_exponent(currency)
    return f"{minor_units / 10 ** exponent:,.{exponent}f} {currency}"


def main():
    parser = argparse.ArgumentParser(
        description="Check availability and price of one product URL",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("url", help="Product page URL")
    parser.add_argument(
        "--no-headless",
        action="store_true",
        help="Do not fall back to a headless browser on bot protection",
    )
    parser.add_argument(
        "--manual",
        action="store_true",
        help="Open a visible browser for CAPTCHA solving if headless fails",
    )
    parser.add_argument("--verbose", action="store_true", help="Log at debug level")
    args = parser.parse_args()

    configure_logging(level="DEBUG" if args.verbose else "WARNING")
    sys.exit(asyncio.run(check_url(args.url, not args.no_headless, args.manual)))


if __name__ == "__main__":
    main()
