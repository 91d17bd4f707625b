"""Product catalog: products, retailers and the links between them."""

from typing import Optional
from uuid import UUID

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from stockwatch.core.exceptions import NotFoundError, ValidationError
from stockwatch.models.product import Product
from stockwatch.models.product_retailer import ProductRetailer
from stockwatch.models.retailer import Retailer
from stockwatch.scrapers.utils.normalizer import normalize_url, retailer_domain, validate_product_url

logger = structlog.get_logger(__name__)


class ProductService:
    """Service for managing tracked products and their retailer links.

    Links are the unit of checking: every link is fetched on its own and
    carries its own check history.
    """

    def __init__(self, db: AsyncSession):
        """Initialize product service.

        Args:
            db: Async database session
        """
        self.db = db
        self.logger = logger.bind(service="product_service")

    async def create_product(
        self,
        name: str,
        description: Optional[str] = None,
        notes: Optional[str] = None,
        currency: Optional[str] = None,
    ) -> Product:
        """Create a product to track.

        Raises:
            ValidationError: Empty name or unknown currency
        """
        if not name or not name.strip():
            raise ValidationError("Product name is required")
        code = currency.strip().upper() if currency else None
        if code and (len(code) != 3 or not code.isalpha()):
            raise ValidationError(f"Invalid currency code '{currency}'")

        product = Product(name=name.strip(), description=description, notes=notes, currency=code)
        self.db.add(product)
        await self.db.flush()

        self.logger.info("product_created", product_id=str(product.id), name=product.name)
        return product

    async def get_product(self, product_id: UUID) -> Product:
        product = await self.db.get(Product, product_id)
        if product is None:
            raise NotFoundError("Product", str(product_id))
        return product

    async def list_products(self) -> list[Product]:
        result = await self.db.execute(select(Product).order_by(Product.created_at, Product.id))
        return list(result.scalars().all())

    async def delete_product(self, product_id: UUID) -> None:
        product = await self.get_product(product_id)
        await self.db.delete(product)
        await self.db.flush()
        self.logger.info("product_deleted", product_id=str(product_id))

    async def get_or_create_retailer(self, url: str) -> Retailer:
        """Find the retailer for a URL's domain, creating it on first use."""
        domain = retailer_domain(url)
        result = await self.db.execute(select(Retailer).where(Retailer.domain == domain))
        retailer = result.scalar_one_or_none()
        if retailer:
            return retailer

        retailer = Retailer(domain=domain, name=domain)
        self.db.add(retailer)
        await self.db.flush()
        self.logger.info("retailer_created", domain=domain)
        return retailer

    async def add_link(self, product_id: UUID, url: str, label: Optional[str] = None) -> ProductRetailer:
        """Track a product at a URL.

        Tracking parameters are stripped; ``?variant=`` and other real
        parameters are kept.

        Raises:
            ValidationError: URL is not http(s), or already linked to the product
            NotFoundError: Product does not exist
        """
        clean_url = normalize_url(validate_product_url(url))
        product = await self.get_product(product_id)

        duplicate = await self.db.execute(
            select(ProductRetailer.id).where(
                ProductRetailer.product_id == product.id,
                ProductRetailer.url == clean_url,
            )
        )
        if duplicate.scalar_one_or_none() is not None:
            raise ValidationError(f"Product already tracks {clean_url}")

        retailer = await self.get_or_create_retailer(clean_url)
        link = ProductRetailer(
            product_id=product.id,
            retailer_id=retailer.id,
            url=clean_url,
            label=label.strip() if label and label.strip() else None,
        )
        self.db.add(link)
        await self.db.flush()

        self.logger.info(
            "product_link_added",
            product_id=str(product.id),
            link_id=str(link.id),
            domain=retailer.domain,
        )
        return link

    async def get_link(self, link_id: UUID) -> ProductRetailer:
        """Load a link with its product and retailer."""
        result = await self.db.execute(
            select(ProductRetailer)
            .options(selectinload(ProductRetailer.product), selectinload(ProductRetailer.retailer))
            .where(ProductRetailer.id == link_id)
        )
        link = result.scalar_one_or_none()
        if link is None:
            raise NotFoundError("ProductRetailer", str(link_id))
        return link

    async def get_links_for_product(self, product_id: UUID) -> list[ProductRetailer]:
        result = await self.db.execute(
            select(ProductRetailer)
            .options(selectinload(ProductRetailer.retailer))
            .where(ProductRetailer.product_id == product_id)
            .order_by(ProductRetailer.created_at, ProductRetailer.id)
        )
        return list(result.scalars().all())

    async def get_all_links(self) -> list[ProductRetailer]:
        """Every tracked link in a stable order: product age, then link age."""
        result = await self.db.execute(
            select(ProductRetailer)
            .join(Product, ProductRetailer.product_id == Product.id)
            .options(selectinload(ProductRetailer.product), selectinload(ProductRetailer.retailer))
            .order_by(Product.created_at, Product.id, ProductRetailer.created_at, ProductRetailer.id)
        )
        return list(result.scalars().all())

    async def remove_link(self, link_id: UUID) -> None:
        link = await self.get_link(link_id)
        await self.db.delete(link)
        await self.db.flush()
        self.logger.info("product_link_removed", link_id=str(link_id))

    async def set_currency_if_missing(self, product: Product, currency: Optional[str]) -> bool:
        """Adopt the first scraped currency for a product without one.

        A different currency on a product that already has one is logged and
        ignored.

        Returns:
            True if the product's currency was set
        """
        if not currency:
            return False
        code = currency.upper()
        if product.currency is None:
            product.currency = code
            await self.db.flush()
            self.logger.info("product_currency_set", product_id=str(product.id), currency=code)
            return True
        if product.currency != code:
            self.logger.warning(
                "product_currency_mismatch",
                product_id=str(product.id),
                product_currency=product.currency,
                scraped_currency=code,
            )
        return False
