"""Page fetching and product data extraction.

This package provides:
- Challenge page detection and structured-data extraction (pure functions)
- Plain HTTP, headless and manual-verification fetch tiers
- The escalation state machine tying the tiers together
"""

from .base import CapturedSession, FetchedPage, PriceInfo, ScrapingResult, SessionIdentity
from .bot_detection import is_challenge_page, is_still_challenged
from .fetch_state import FetchPolicy, FetchState, next_state
from .structured_data import extract_product_data

__all__ = [
    # Data structures
    "CapturedSession",
    "FetchedPage",
    "PriceInfo",
    "ScrapingResult",
    "SessionIdentity",
    # Classification and extraction
    "is_challenge_page",
    "is_still_challenged",
    "extract_product_data",
    # Escalation
    "FetchPolicy",
    "FetchState",
    "next_state",
]
