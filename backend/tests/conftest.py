"""Pytest configuration and shared fixtures."""

import json
from typing import Callable, Optional

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from stockwatch.models import Base, Product, ProductRetailer
from stockwatch.schemas.settings import CheckSnapshot
from stockwatch.models.availability_check import AvailabilityStatus
from stockwatch.scrapers.base import PriceInfo, ScrapingResult
from stockwatch.services.product_service import ProductService


# ============================================================================
# DATABASE
# ============================================================================

@pytest_asyncio.fixture
async def test_engine():
    """Create an in-memory SQLite database for testing."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        poolclass=StaticPool,
        echo=False,
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(test_engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def test_db(session_factory):
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture
async def sample_product(test_db: AsyncSession) -> Product:
    """A product with no currency set yet."""
    product = await ProductService(test_db).create_product("Nintendo Switch OLED")
    await test_db.commit()
    return product


@pytest_asyncio.fixture
async def sample_link(test_db: AsyncSession, sample_product: Product) -> ProductRetailer:
    link = await ProductService(test_db).add_link(
        sample_product.id,
        "https://www.shop.example.com/products/switch-oled",
    )
    await test_db.commit()
    return await ProductService(test_db).get_link(link.id)


@pytest.fixture
def snapshot() -> CheckSnapshot:
    return CheckSnapshot(preferred_currency="USD")


# ============================================================================
# PAGES
# ============================================================================

def build_product_page(
    availability: str = "https://schema.org/InStock",
    price: Optional[str] = "19.99",
    currency: Optional[str] = "USD",
) -> str:
    offer = {"@type": "Offer", "availability": availability}
    if price is not None:
        offer["price"] = price
    if currency is not None:
        offer["priceCurrency"] = currency
    block = {"@context": "https://schema.org", "@type": "Product", "name": "Widget", "offers": offer}
    return (
        "<html><head>"
        f'<script type="application/ld+json">{json.dumps(block)}</script>'
        "</head><body><h1>Widget</h1></body></html>"
    )


@pytest.fixture
def product_page() -> Callable[..., str]:
    """Builder for a product page with one JSON-LD offer."""
    return build_product_page


# ============================================================================
# SCRAPER STUBS
# ============================================================================

class StubScraper:
    """Returns (or raises) queued outcomes in order, recording each URL."""

    def __init__(self, *outcomes):
        self.outcomes = list(outcomes)
        self.calls = []

    async def check(self, url, policy):
        self.calls.append((url, policy))
        outcome = self.outcomes.pop(0)
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome


@pytest.fixture
def stub_scraper() -> Callable[..., StubScraper]:
    return StubScraper


_SCHEMA_ORG_VALUES = {
    AvailabilityStatus.IN_STOCK: "https://schema.org/InStock",
    AvailabilityStatus.OUT_OF_STOCK: "https://schema.org/OutOfStock",
    AvailabilityStatus.BACK_ORDER: "https://schema.org/BackOrder",
}


@pytest.fixture
def scraping_result() -> Callable[..., ScrapingResult]:
    """Builder for what the scraper returns for a page with product data."""

    def build(
        status: AvailabilityStatus = AvailabilityStatus.IN_STOCK,
        minor_units: Optional[int] = 1999,
        currency: Optional[str] = "USD",
    ) -> ScrapingResult:
        if minor_units is None:
            price = PriceInfo()
        else:
            price = PriceInfo(minor_units=minor_units, currency=currency, raw=f"{minor_units / 100:.2f}")
        return ScrapingResult(status=status, raw_availability=_SCHEMA_ORG_VALUES.get(status), price=price)

    return build
