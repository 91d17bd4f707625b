"""Data structures passed between the fetch tiers and the extractors."""

from dataclasses import dataclass, field
from typing import Optional

from stockwatch.models.availability_check import AvailabilityStatus


@dataclass(frozen=True)
class PriceInfo:
    """Price as scraped, in minor units at a two-decimal assumption.

    ``minor_units`` and ``raw`` are set together; ``currency`` only ever
    accompanies an amount.
    """

    minor_units: Optional[int] = None
    currency: Optional[str] = None
    raw: Optional[str] = None

    def __post_init__(self):
        if self.minor_units is None and self.currency is not None:
            raise ValueError("currency requires an amount")

    @property
    def is_present(self) -> bool:
        return self.minor_units is not None


@dataclass(frozen=True)
class ScrapingResult:
    """Availability and price extracted from one product page."""

    status: AvailabilityStatus
    raw_availability: Optional[str] = None
    price: PriceInfo = field(default_factory=PriceInfo)

    @classmethod
    def not_found(cls) -> "ScrapingResult":
        """A page that loaded fine but carried no recognizable product data."""
        return cls(status=AvailabilityStatus.UNKNOWN)


@dataclass(frozen=True)
class FetchedPage:
    """HTML returned by one fetch tier."""

    status: int
    html: str
    url: str


@dataclass(frozen=True)
class SessionIdentity:
    """Browser identity replayed from a verified session."""

    user_agent: str
    cookies: list[dict] = field(default_factory=list)


@dataclass(frozen=True)
class CapturedSession:
    """What a solved manual verification hands back."""

    html: str
    cookies: list[dict]
    user_agent: str
