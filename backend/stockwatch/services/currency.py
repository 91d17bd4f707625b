"""Currency exponents and minor-unit arithmetic.

Scraped prices are parsed at a two-decimal assumption; these helpers move
them onto each currency's real exponent and across currencies.
"""

from decimal import Decimal, ROUND_HALF_UP

ZERO_DECIMAL_CURRENCIES = frozenset({"JPY", "KRW", "VND"})
THREE_DECIMAL_CURRENCIES = frozenset({"KWD", "BHD", "OMR"})
DEFAULT_EXPONENT = 2

# Currencies the user may pick as the comparison currency
SUPPORTED_CURRENCIES = (
    "USD", "EUR", "GBP", "JPY", "AUD", "CAD", "NZD", "CHF", "CNY", "HKD",
    "SGD", "SEK", "NOK", "DKK", "KRW", "INR", "BRL", "ZAR", "MXN", "TWD",
    "THB", "MYR", "PHP", "IDR", "PLN", "CZK", "HUF", "ILS", "TRY", "AED",
)


def currency_exponent(code: str) -> int:
    """Number of decimal places the currency uses (case-insensitive)."""
    upper = code.upper()
    if upper in ZERO_DECIMAL_CURRENCIES:
        return 0
    if upper in THREE_DECIMAL_CURRENCIES:
        return 3
    return DEFAULT_EXPONENT


def minor_unit_multiplier(code: str) -> int:
    return 10 ** currency_exponent(code)


def _round(value: Decimal) -> int:
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def rescale_minor_units(amount: int, code: str | None) -> int:
    """Move a two-decimal minor amount onto the currency's own exponent.

    "1500" JPY parses to 150000 and rescales to 1500; "29.990" KWD parses
    to 2999 and rescales to 29990. Without a currency the amount is left
    untouched.
    """
    if code is None:
        return amount
    multiplier = minor_unit_multiplier(code)
    if multiplier == 100:
        return amount
    return _round(Decimal(amount) * multiplier / 100)


def convert_minor_units(amount: int, rate: float, from_code: str, to_code: str) -> int:
    """Convert minor units of one currency into minor units of another.

    Args:
        amount: Amount in ``from_code`` minor units
        rate: Units of ``to_code`` per unit of ``from_code``
    """
    from_exp = currency_exponent(from_code)
    to_exp = currency_exponent(to_code)
    major = Decimal(amount) / (Decimal(10) ** from_exp)
    return _round(major * Decimal(str(rate)) * (Decimal(10) ** to_exp))


def is_supported_currency(code: str) -> bool:
    return code.upper() in SUPPORTED_CURRENCIES
