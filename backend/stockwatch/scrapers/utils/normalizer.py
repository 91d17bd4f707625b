"""Price parsing and URL normalization utilities."""

import re
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Optional
from urllib.parse import urlparse, parse_qs, urlencode, urlunparse

import structlog

from stockwatch.core.exceptions import ValidationError
from stockwatch.scrapers.base import PriceInfo

logger = structlog.get_logger(__name__)

_NON_PRICE_CHARS = re.compile(r"[^0-9.]")

# Query parameters that never change which product a URL points at
TRACKING_PARAMS = frozenset({
    "utm_source",
    "utm_medium",
    "utm_campaign",
    "utm_content",
    "utm_term",
    "fbclid",
    "gclid",
    "mc_cid",
    "mc_eid",
})


class PriceNormalizer:
    """Turns scraped price strings into integer minor units."""

    @staticmethod
    def clean_price_string(raw: str) -> Optional[Decimal]:
        """Parse a price string and extract numeric value.

        Keeps ASCII digits and a single decimal point, so currency symbols,
        spaces and thousands separators all disappear. The decimal point is
        the last dot with digits on both sides; any other dot is dropped:
        - "$1,234.56" -> 1234.56
        - "1 500" -> 1500
        - "29.990 KD" -> 29.990
        - "Rs. 1,234.56" -> 1234.56

        Args:
            raw: Raw price string

        Returns:
            Decimal price value, or None if nothing parseable is left
        """
        if not raw:
            return None

        cleaned = _NON_PRICE_CHARS.sub("", raw).strip(".")
        if not cleaned:
            return None

        whole, dot, fraction = cleaned.rpartition(".")
        if dot:
            cleaned = f"{whole.replace('.', '')}.{fraction}"

        try:
            return Decimal(cleaned)
        except InvalidOperation:
            return None

    @classmethod
    def to_minor_units(cls, raw: str) -> Optional[int]:
        """Parse a price string to minor units at two decimal places.

        The currency's real exponent is applied later by
        ``stockwatch.services.currency.rescale_minor_units``.
        """
        value = cls.clean_price_string(raw)
        if value is None:
            return None
        return int((value * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))

    @classmethod
    def build_price_info(cls, raw_price: Any, currency: Any) -> PriceInfo:
        """Build a PriceInfo from loosely typed JSON fields.

        Numbers are stringified first; a currency without a parseable amount
        is dropped rather than stored on its own.
        """
        if raw_price is None or isinstance(raw_price, bool):
            return PriceInfo()
        raw = raw_price if isinstance(raw_price, str) else str(raw_price)
        minor_units = cls.to_minor_units(raw)
        if minor_units is None:
            logger.debug("price_unparseable", raw_price=raw)
            return PriceInfo()

        code = currency.strip().upper() if isinstance(currency, str) and currency.strip() else None
        return PriceInfo(minor_units=minor_units, currency=code, raw=raw)


def normalize_url(url: str) -> str:
    """Normalize a URL by removing tracking parameters.

    Args:
        url: URL to normalize

    Returns:
        Normalized URL
    """
    if not url:
        return url

    parsed = urlparse(url.strip())
    query_params = parse_qs(parsed.query, keep_blank_values=True)

    filtered_params = {
        k: v for k, v in query_params.items() if k not in TRACKING_PARAMS
    }

    new_query = urlencode(filtered_params, doseq=True)

    return urlunparse(
        (parsed.scheme, parsed.netloc, parsed.path, parsed.params, new_query, "")
    )


def validate_product_url(url: str) -> str:
    """Return the stripped URL, or raise ValidationError if it cannot be fetched.

    Only absolute http(s) URLs with a host are accepted.
    """
    candidate = (url or "").strip()
    parsed = urlparse(candidate)
    if parsed.scheme not in ("http", "https"):
        raise ValidationError(
            f"Unsupported URL scheme '{parsed.scheme}'. Only http and https are allowed."
        )
    if not parsed.hostname:
        raise ValidationError(f"URL has no host: {candidate}")
    return candidate


def extract_domain(url: str) -> str:
    """Lower-cased host of a URL, the key for verified sessions."""
    hostname = urlparse(validate_product_url(url)).hostname
    return hostname.lower()


def retailer_domain(url: str) -> str:
    """Host with a leading ``www.`` removed, the key for retailers."""
    domain = extract_domain(url)
    return domain[4:] if domain.startswith("www.") else domain
