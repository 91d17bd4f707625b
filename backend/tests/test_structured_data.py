"""Tests for JSON-LD and Next.js product data extraction."""

import json

import pytest

from stockwatch.models.availability_check import AvailabilityStatus
from stockwatch.scrapers.structured_data import (
    extract_product_data,
    extract_variant_id,
    map_next_data_availability,
)


def _json_ld_page(*blocks) -> str:
    scripts = "".join(
        f'<script type="application/ld+json">{b if isinstance(b, str) else json.dumps(b)}</script>'
        for b in blocks
    )
    return f"<html><head>{scripts}</head><body></body></html>"


def _next_data_page(page_props: dict) -> str:
    payload = json.dumps({"props": {"pageProps": page_props}, "page": "/product/[slug]"})
    return f'<html><body><script id="__NEXT_DATA__" type="application/json">{payload}</script></body></html>'


def _variant(variant_id: str, availability: str, price: str) -> dict:
    return {
        "@type": "Product",
        "@id": f"/products/shirt?variant={variant_id}",
        "offers": {"@type": "Offer", "availability": availability, "price": price, "priceCurrency": "AUD"},
    }


# ============================================================================
# TESTS: JSON-LD
# ============================================================================

class TestJsonLd:
    """Tests for schema.org extraction."""

    def test_product_with_single_offer(self, product_page):
        result = extract_product_data(product_page())

        assert result is not None
        assert result.status == AvailabilityStatus.IN_STOCK
        assert result.raw_availability == "https://schema.org/InStock"
        assert result.price.minor_units == 1999
        assert result.price.currency == "USD"
        assert result.price.raw == "19.99"

    def test_numeric_price_is_stringified(self):
        html = _json_ld_page({
            "@type": "Product",
            "offers": {"@type": "Offer", "availability": "InStock", "price": 29.9, "priceCurrency": "usd"},
        })
        result = extract_product_data(html)

        assert result.price.minor_units == 2990
        assert result.price.raw == "29.9"
        assert result.price.currency == "USD"

    def test_price_with_symbol_and_thousands_separator(self):
        html = _json_ld_page({
            "@type": "Product",
            "offers": {"@type": "Offer", "availability": "InStock", "price": "$1,234.56"},
        })
        result = extract_product_data(html)

        assert result.price.minor_units == 123456
        assert result.price.currency is None

    def test_currency_without_price_is_dropped(self):
        html = _json_ld_page({
            "@type": "Product",
            "offers": {"@type": "Offer", "availability": "OutOfStock", "priceCurrency": "USD"},
        })
        result = extract_product_data(html)

        assert result.status == AvailabilityStatus.OUT_OF_STOCK
        assert result.price.minor_units is None
        assert result.price.currency is None
        assert result.price.raw is None

    def test_graph_array(self):
        html = _json_ld_page({
            "@context": "https://schema.org",
            "@graph": [
                {"@type": "WebPage", "name": "Widget page"},
                {"@type": "Product", "offers": {"@type": "Offer", "availability": "https://schema.org/BackOrder"}},
            ],
        })
        assert extract_product_data(html).status == AvailabilityStatus.BACK_ORDER

    def test_top_level_array(self):
        html = _json_ld_page([
            {"@type": "BreadcrumbList"},
            {"@type": "Product", "offers": {"@type": "Offer", "availability": "http://schema.org/SoldOut"}},
        ])
        assert extract_product_data(html).status == AvailabilityStatus.OUT_OF_STOCK

    def test_offer_list_skips_offers_without_availability(self):
        html = _json_ld_page({
            "@type": "Product",
            "offers": [
                {"@type": "Offer", "price": "5.00"},
                {"@type": "Offer", "availability": "PreOrder", "price": "7.50", "priceCurrency": "EUR"},
            ],
        })
        result = extract_product_data(html)

        assert result.status == AvailabilityStatus.BACK_ORDER
        assert result.price.minor_units == 750

    def test_type_given_as_list(self):
        html = _json_ld_page({
            "@type": ["Product", "Thing"],
            "offers": {"@type": "Offer", "availability": "LimitedAvailability"},
        })
        assert extract_product_data(html).status == AvailabilityStatus.IN_STOCK

    def test_unparseable_block_is_skipped(self, product_page):
        broken = '<script type="application/ld+json">{not json</script>'
        html = product_page().replace("<head>", f"<head>{broken}", 1)

        assert extract_product_data(html).status == AvailabilityStatus.IN_STOCK

    def test_unrecognized_availability_is_unknown(self):
        html = _json_ld_page({"@type": "Offer", "availability": "https://schema.org/MaybeLater"})
        result = extract_product_data(html)

        assert result.status == AvailabilityStatus.UNKNOWN
        assert result.raw_availability == "https://schema.org/MaybeLater"

    def test_page_without_product_data(self):
        assert extract_product_data("<html><body><h1>About us</h1></body></html>") is None


class TestProductGroupVariants:
    """Tests for ProductGroup variant selection."""

    def _group_page(self) -> str:
        return _json_ld_page({
            "@type": "ProductGroup",
            "hasVariant": [
                _variant("111", "https://schema.org/OutOfStock", "40.00"),
                _variant("222", "https://schema.org/InStock", "45.00"),
            ],
        })

    def test_variant_from_url_is_used(self):
        result = extract_product_data(self._group_page(), "https://shop.example.com/products/shirt?variant=222")

        assert result.status == AvailabilityStatus.IN_STOCK
        assert result.price.minor_units == 4500
        assert result.price.currency == "AUD"

    def test_first_variant_without_variant_param(self):
        result = extract_product_data(self._group_page(), "https://shop.example.com/products/shirt")

        assert result.status == AvailabilityStatus.OUT_OF_STOCK

    def test_unknown_variant_falls_back_to_first(self):
        result = extract_product_data(self._group_page(), "https://shop.example.com/products/shirt?variant=999")

        assert result.status == AvailabilityStatus.OUT_OF_STOCK

    @pytest.mark.parametrize(
        "url,expected",
        [
            ("https://shop.example.com/p?variant=42&color=red", "42"),
            ("https://shop.example.com/p?color=red", None),
            (None, None),
        ],
    )
    def test_extract_variant_id(self, url, expected):
        assert extract_variant_id(url) == expected


# ============================================================================
# TESTS: STATUS MAPPING
# ============================================================================

class TestStatusMapping:
    """Tests for AvailabilityStatus.from_schema_org."""

    @pytest.mark.parametrize(
        "raw,expected",
        [
            ("https://schema.org/InStock", AvailabilityStatus.IN_STOCK),
            ("In Stock", AvailabilityStatus.IN_STOCK),
            ("in-stock", AvailabilityStatus.IN_STOCK),
            ("Available", AvailabilityStatus.IN_STOCK),
            ("Out of stock", AvailabilityStatus.OUT_OF_STOCK),
            ("sold_out", AvailabilityStatus.OUT_OF_STOCK),
            ("Unavailable", AvailabilityStatus.OUT_OF_STOCK),
            ("Pre-Order", AvailabilityStatus.BACK_ORDER),
            ("MaybeLater", AvailabilityStatus.UNKNOWN),
        ],
    )
    def test_loose_spellings(self, raw, expected):
        assert AvailabilityStatus.from_schema_org(raw) == expected

    def test_loose_spelling_in_json_ld(self):
        html = _json_ld_page({"@type": "Product", "offers": {"@type": "Offer", "availability": "Out of stock"}})

        result = extract_product_data(html)

        assert result.status == AvailabilityStatus.OUT_OF_STOCK
        assert result.raw_availability == "Out of stock"


# ============================================================================
# TESTS: NEXT.JS FALLBACK
# ============================================================================

class TestNextData:
    """Tests for the __NEXT_DATA__ fallback."""

    def test_product_in_page_props(self):
        html = _next_data_page({"product": {"name": "Widget", "inStock": False, "price": 49.95, "currency": "AUD"}})
        result = extract_product_data(html)

        assert result.status == AvailabilityStatus.OUT_OF_STOCK
        assert result.raw_availability == "out-of-stock"
        assert result.price.minor_units == 4995
        assert result.price.currency == "AUD"

    def test_nested_data_product_with_stock_status(self):
        html = _next_data_page({"data": {"product": {"sku": "W-1", "stockStatus": "In Stock", "salePrice": "12.00"}}})
        result = extract_product_data(html)

        assert result.status == AvailabilityStatus.IN_STOCK
        assert result.price.minor_units == 1200

    def test_json_ld_preferred_over_next_data(self, product_page):
        next_data = _next_data_page({"product": {"name": "Widget", "availability": "sold out"}})
        html = product_page().replace("<body>", "<body>" + next_data.split("<body>")[1].split("</body>")[0], 1)

        assert extract_product_data(html).status == AvailabilityStatus.IN_STOCK

    def test_page_props_without_product(self):
        assert extract_product_data(_next_data_page({"title": "Home"})) is None

    def test_invalid_next_data_json(self):
        html = '<script id="__NEXT_DATA__">{broken</script>'
        assert extract_product_data(html) is None

    @pytest.mark.parametrize(
        "value,expected",
        [
            ("in-stock", AvailabilityStatus.IN_STOCK),
            ("Sold Out", AvailabilityStatus.OUT_OF_STOCK),
            ("pre-order", AvailabilityStatus.BACK_ORDER),
            ("https://schema.org/InStock", AvailabilityStatus.IN_STOCK),
            ("limited", AvailabilityStatus.UNKNOWN),
        ],
    )
    def test_map_next_data_availability(self, value, expected):
        assert map_next_data_availability(value) == expected
