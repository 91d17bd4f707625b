"""Scraper utilities for browser identity, retries and price normalization."""

from .user_agents import DESKTOP_USER_AGENT, get_browser_headers
from .normalizer import (
    PriceNormalizer,
    normalize_url,
    validate_product_url,
    extract_domain,
    retailer_domain,
)
from .retry import http_retry, playwright_retry


__all__ = [
    # Identity
    "DESKTOP_USER_AGENT",
    "get_browser_headers",
    # Normalization
    "PriceNormalizer",
    "normalize_url",
    "validate_product_url",
    "extract_domain",
    "retailer_domain",
    # Retry decorators
    "http_retry",
    "playwright_retry",
]
