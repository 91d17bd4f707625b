"""Add a product and its retailer links to the watch list.

Usage:
    python scripts/track_product.py "Nintendo Switch OLED" https://shop-a.example/p/1 https://shop-b.example/p/9
    python scripts/track_product.py "Widget" https://shop.example/widget --currency AUD
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
from stockwatch.services.product_service import ProductService


async def track_product(name: str, urls: list[str], currency: str | None) -> int:
    await init_db()
    try:
        async with session_scope() as db:
            products = ProductService(db)
            product = await products.create_product(name, currency=currency)
            for url in urls:
                link = await products.add_link(product.id, url)
                print(f"  + {link.url}")
    except StockWatchException as e:
        print(f"Could not add product [{e.code}]: {e.message}")
        return 1

    print(f"Tracking '{name}' at {len(urls)} retailer(s)")
    return 0


def main():
    parser = argparse.ArgumentParser(description="Track a product at one or more retailers")
    parser.add_argument("name", help="Product name")
    parser.add_argument("urls", nargs="+", help="Retailer product page URLs")
    parser.add_argument("--currency", help="Currency the product is priced in (detected on first check)")
    args = parser.parse_args()

    configure_logging(level="WARNING")
    sys.exit(asyncio.run(track_product(args.name, args.urls, args.currency)))


if __name__ == "__main__":
    main()
