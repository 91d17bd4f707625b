"""Availability and price extraction from embedded structured data.

Two sources are tried in order:

1. Schema.org JSON-LD (``<script type="application/ld+json">``), including
   ``@graph`` arrays, top-level arrays and ``ProductGroup`` variants.
2. Next.js page data (``<script id="__NEXT_DATA__">``), descending into
   ``props.pageProps`` to find a product object.

Nothing here raises on bad markup: unparsable blocks are skipped and a page
without product data yields None.
"""

import json
from typing import Any, Iterable, Optional
from urllib.parse import parse_qs, urljoin, urlparse

import structlog
from bs4 import BeautifulSoup

from stockwatch.models.availability_check import AvailabilityStatus
from stockwatch.scrapers.base import PriceInfo, ScrapingResult
from stockwatch.scrapers.utils.normalizer import PriceNormalizer

logger = structlog.get_logger(__name__)

# Candidate is (raw availability, price)
Candidate = tuple[str, PriceInfo]

_VARIANT_BASE_URL = "http://localhost"

NEXT_DATA_IDENTIFIER_KEYS = ("name", "sku", "productName")
NEXT_DATA_STOCK_KEYS = ("availability", "stockStatus", "stock", "inStock", "price")
NEXT_DATA_PRICE_KEYS = ("price", "currentPrice", "salePrice")

_NEXT_IN_STOCK = {"in-stock", "instock", "in stock", "available"}
_NEXT_OUT_OF_STOCK = {"out-of-stock", "outofstock", "out of stock", "unavailable", "sold out", "soldout"}
_NEXT_BACK_ORDER = {"backorder", "back-order", "back order", "preorder", "pre-order", "pre order"}


def extract_product_data(html: str, url: Optional[str] = None) -> Optional[ScrapingResult]:
    """Extract availability and price from a product page.

    Args:
        html: Page HTML, from a plain fetch or a rendered browser page
        url: Page URL, used to pick the right variant of a ProductGroup

    Returns:
        ScrapingResult, or None if the page has no recognizable product data
    """
    soup = BeautifulSoup(html, "html.parser")

    result = _extract_from_json_ld(soup, url)
    if result is not None:
        return result

    result = _extract_from_next_data(soup)
    if result is not None:
        logger.debug("next_data_fallback_used", url=url)
    return result


# ---------------------------------------------------------------------------
# Schema.org JSON-LD
# ---------------------------------------------------------------------------


def extract_json_ld_blocks(soup: BeautifulSoup) -> list[Any]:
    """Parse every JSON-LD script block, skipping the ones that are not JSON."""
    blocks = []
    for script in soup.find_all("script", attrs={"type": "application/ld+json"}):
        payload = script.string or script.get_text()
        if not payload or not payload.strip():
            continue
        try:
            blocks.append(json.loads(payload))
        except json.JSONDecodeError:
            logger.debug("json_ld_block_unparseable", preview=payload[:80])
    return blocks


def extract_variant_id(url: Optional[str]) -> Optional[str]:
    """Return the ``variant`` query parameter of a product URL, if any."""
    if not url:
        return None
    values = parse_qs(urlparse(url).query).get("variant")
    return values[0] if values else None


def _extract_from_json_ld(soup: BeautifulSoup, url: Optional[str]) -> Optional[ScrapingResult]:
    variant_id = extract_variant_id(url)
    for block in extract_json_ld_blocks(soup):
        candidate = find_availability_and_price(block, variant_id)
        if candidate is not None:
            raw_availability, price = candidate
            return ScrapingResult(
                status=AvailabilityStatus.from_schema_org(raw_availability),
                raw_availability=raw_availability,
                price=price,
            )
    return None


def find_availability_and_price(block: Any, variant_id: Optional[str] = None) -> Optional[Candidate]:
    """Search one JSON-LD payload for an offer with availability.

    Order: the object as a Product, as a ProductGroup, as a bare Offer,
    then its ``@graph`` array, then the payload itself as an array.
    """
    if isinstance(block, dict):
        candidate = _from_item(block, variant_id)
        if candidate is not None:
            return candidate

        graph = block.get("@graph")
        if isinstance(graph, list):
            candidate = _from_items(graph, variant_id)
            if candidate is not None:
                return candidate

    if isinstance(block, list):
        return _from_items(block, variant_id)

    return None


def _from_items(items: Iterable[Any], variant_id: Optional[str]) -> Optional[Candidate]:
    for item in items:
        if isinstance(item, dict):
            candidate = _from_item(item, variant_id)
            if candidate is not None:
                return candidate
    return None


def _from_item(item: dict, variant_id: Optional[str]) -> Optional[Candidate]:
    if _has_schema_type(item, "Product"):
        candidate = _from_product(item)
        if candidate is not None:
            return candidate
    if _has_schema_type(item, "ProductGroup"):
        candidate = _from_product_group(item, variant_id)
        if candidate is not None:
            return candidate
    if _has_schema_type(item, "Offer"):
        return _from_offer(item)
    return None


def _has_schema_type(item: dict, expected: str) -> bool:
    declared = item.get("@type")
    if isinstance(declared, str):
        return declared == expected
    if isinstance(declared, list):
        return expected in declared
    return False


def _from_product(product: dict) -> Optional[Candidate]:
    offers = product.get("offers")
    if isinstance(offers, dict):
        return _from_offer(offers)
    if isinstance(offers, list):
        for offer in offers:
            if isinstance(offer, dict):
                candidate = _from_offer(offer)
                if candidate is not None:
                    return candidate
    return None


def _from_offer(offer: dict) -> Optional[Candidate]:
    availability = offer.get("availability")
    if not isinstance(availability, str):
        return None
    price = PriceNormalizer.build_price_info(offer.get("price"), offer.get("priceCurrency"))
    return availability, price


def _from_product_group(group: dict, variant_id: Optional[str]) -> Optional[Candidate]:
    variants = group.get("hasVariant")
    if not isinstance(variants, list):
        return None
    variants = [v for v in variants if isinstance(v, dict)]

    if variant_id:
        for variant in variants:
            if _variant_matches(variant, variant_id):
                candidate = _from_product(variant)
                if candidate is not None:
                    return candidate

    for variant in variants:
        candidate = _from_product(variant)
        if candidate is not None:
            return candidate
    return None


def _variant_matches(variant: dict, variant_id: str) -> bool:
    variant_ref = variant.get("@id")
    if not isinstance(variant_ref, str):
        return False
    # @id is often relative, e.g. "/products/shirt?variant=123"
    absolute = urljoin(_VARIANT_BASE_URL, variant_ref)
    return variant_id in parse_qs(urlparse(absolute).query).get("variant", [])


# ---------------------------------------------------------------------------
# Next.js __NEXT_DATA__
# ---------------------------------------------------------------------------


def _extract_from_next_data(soup: BeautifulSoup) -> Optional[ScrapingResult]:
    script = soup.find("script", id="__NEXT_DATA__")
    if script is None:
        return None
    payload = script.string or script.get_text()
    try:
        data = json.loads(payload)
    except (json.JSONDecodeError, TypeError):
        logger.warning("next_data_parse_failed")
        return None

    page_props = _dig(data, "props", "pageProps")
    if not isinstance(page_props, dict):
        return None

    product = find_next_data_product(page_props)
    if product is None:
        return None

    raw_availability = _next_data_availability(product)
    if raw_availability is None:
        return None

    price = PriceNormalizer.build_price_info(
        _next_data_price(product),
        product.get("currency") or product.get("priceCurrency"),
    )
    return ScrapingResult(
        status=map_next_data_availability(raw_availability),
        raw_availability=raw_availability,
        price=price,
    )


def find_next_data_product(page_props: dict) -> Optional[dict]:
    """Locate the product object inside Next.js ``pageProps``."""
    candidates = (
        page_props.get("product"),
        page_props.get("productDetail"),
        _dig(page_props, "data", "product"),
        page_props,
    )
    for candidate in candidates:
        if isinstance(candidate, dict) and _looks_like_product(candidate):
            return candidate
    return None


def _looks_like_product(data: dict) -> bool:
    has_identifier = any(k in data for k in NEXT_DATA_IDENTIFIER_KEYS)
    has_stock_info = any(k in data for k in NEXT_DATA_STOCK_KEYS)
    return has_identifier and has_stock_info


def _next_data_availability(product: dict) -> Optional[str]:
    for key in ("availability", "stockStatus", "stock"):
        value = product.get(key)
        if isinstance(value, str) and value.strip():
            return value
    in_stock = product.get("inStock")
    if isinstance(in_stock, bool):
        return "in-stock" if in_stock else "out-of-stock"
    return None


def _next_data_price(product: dict) -> Any:
    for key in NEXT_DATA_PRICE_KEYS:
        value = product.get(key)
        if value is not None and not isinstance(value, dict):
            return value
    return _dig(product, "pricing", "price")


def map_next_data_availability(value: str) -> AvailabilityStatus:
    """Map the free-form stock strings Next.js storefronts use."""
    token = value.strip().lower()
    if token in _NEXT_IN_STOCK:
        return AvailabilityStatus.IN_STOCK
    if token in _NEXT_OUT_OF_STOCK:
        return AvailabilityStatus.OUT_OF_STOCK
    if token in _NEXT_BACK_ORDER:
        return AvailabilityStatus.BACK_ORDER
    # Some storefronts emit schema.org tokens here too
    return AvailabilityStatus.from_schema_org(value)


def _dig(data: Any, *keys: str) -> Any:
    for key in keys:
        if not isinstance(data, dict):
            return None
        data = data.get(key)
    return data
