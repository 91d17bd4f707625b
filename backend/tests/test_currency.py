"""Tests for price parsing, currency exponents and URL utilities."""

from decimal import Decimal

import pytest

from stockwatch.core.exceptions import ValidationError
from stockwatch.scrapers.base import PriceInfo
from stockwatch.scrapers.utils.normalizer import (
    PriceNormalizer,
    extract_domain,
    normalize_url,
    retailer_domain,
    validate_product_url,
)
from stockwatch.services.currency import (
    convert_minor_units,
    currency_exponent,
    is_supported_currency,
    rescale_minor_units,
)


# ============================================================================
# TESTS: PRICE PARSING
# ============================================================================

class TestPriceNormalizer:
    """Tests for PriceNormalizer."""

    @pytest.mark.parametrize(
        "raw,expected",
        [
            ("$1,234.56", Decimal("1234.56")),
            ("1 500", Decimal("1500")),
            ("29.990 KD", Decimal("29.990")),
            ("Free", None),
            ("", None),
            ("1.2.3", Decimal("12.3")),
            ("Rs. 1,234.56", Decimal("1234.56")),
            ("19.99.", Decimal("19.99")),
            ("...", None),
        ],
    )
    def test_clean_price_string(self, raw, expected):
        assert PriceNormalizer.clean_price_string(raw) == expected

    def test_to_minor_units_with_stray_dots(self):
        assert PriceNormalizer.to_minor_units("Rs. 1,234.56") == 123456
        assert PriceNormalizer.to_minor_units("19.99.") == 1999

    def test_to_minor_units_rounds_half_up(self):
        assert PriceNormalizer.to_minor_units("0.125") == 13
        assert PriceNormalizer.to_minor_units("19.99") == 1999

    def test_build_price_info_from_number(self):
        info = PriceNormalizer.build_price_info(10, " eur ")

        assert info == PriceInfo(minor_units=1000, currency="EUR", raw="10")

    def test_build_price_info_ignores_booleans(self):
        assert PriceNormalizer.build_price_info(True, "USD") == PriceInfo()

    def test_price_info_rejects_currency_without_amount(self):
        with pytest.raises(ValueError):
            PriceInfo(currency="USD")


# ============================================================================
# TESTS: CURRENCY EXPONENTS
# ============================================================================

class TestCurrency:
    """Tests for minor-unit arithmetic."""

    @pytest.mark.parametrize("code,exponent", [("USD", 2), ("jpy", 0), ("KRW", 0), ("KWD", 3), ("XYZ", 2)])
    def test_currency_exponent(self, code, exponent):
        assert currency_exponent(code) == exponent

    def test_rescale_zero_decimal_currency(self):
        # "1500" parsed at two decimals
        assert rescale_minor_units(150000, "JPY") == 1500

    def test_rescale_three_decimal_currency(self):
        # "29.990" parsed at two decimals
        assert rescale_minor_units(2999, "KWD") == 29990

    def test_rescale_leaves_two_decimal_and_unknown_currency(self):
        assert rescale_minor_units(1999, "AUD") == 1999
        assert rescale_minor_units(1999, None) == 1999

    def test_convert_between_exponents(self):
        # 1500 JPY at 0.0067 USD per JPY is 10.05 USD
        assert convert_minor_units(1500, 0.0067, "JPY", "USD") == 1005

    def test_convert_into_zero_decimal_currency(self):
        # 19.99 USD at 150 JPY per USD is 2998.5 JPY, rounded half up
        assert convert_minor_units(1999, 150.0, "USD", "JPY") == 2999

    def test_is_supported_currency(self):
        assert is_supported_currency("aud") is True
        assert is_supported_currency("XYZ") is False


# ============================================================================
# TESTS: URLS
# ============================================================================

class TestUrls:
    """Tests for URL validation and normalization."""

    def test_normalize_url_strips_tracking_params(self):
        url = "https://shop.example.com/p/1?variant=5&utm_source=mail&gclid=abc#reviews"
        assert normalize_url(url) == "https://shop.example.com/p/1?variant=5"

    @pytest.mark.parametrize("url", ["ftp://shop.example.com/p/1", "shop.example.com/p/1", "javascript:alert(1)", ""])
    def test_validate_rejects_non_http_urls(self, url):
        with pytest.raises(ValidationError, match="Only http and https"):
            validate_product_url(url)

    def test_validate_rejects_missing_host(self):
        with pytest.raises(ValidationError, match="no host"):
            validate_product_url("https:///p/1")

    def test_validate_strips_whitespace(self):
        assert validate_product_url("  https://shop.example.com/p/1 ") == "https://shop.example.com/p/1"

    def test_domains(self):
        url = "https://WWW.Shop.Example.com/p/1"

        assert extract_domain(url) == "www.shop.example.com"
        assert retailer_domain(url) == "shop.example.com"
