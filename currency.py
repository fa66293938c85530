# currency.py
from __future__ import annotations

import math

# code -> display symbol. Add a row here (and to SUPPORTED_CURRENCIES) to offer a new currency.
CURRENCY_SYMBOLS = {
    "PKR": "₨",
    "MYR": "RM",
}

# (code, label) pairs for the currency select
SUPPORTED_CURRENCIES = [
    ("PKR", "Pakistani Rupee"),
    ("MYR", "Malaysian Ringgit"),
]


def coerce_amount(value) -> float:
    """
    Lenient numeric coercion used for line item amounts.
    Numbers pass through, numeric strings are parsed, anything else
    (empty string, None, junk, NaN/inf) counts as 0.
    """
    if isinstance(value, str):
        value = value.strip()
        if not value:
            return 0.0
    try:
        num = float(value)
    except (TypeError, ValueError):
        return 0.0
    if not math.isfinite(num):
        return 0.0
    return num


def is_supported(currency_code: str | None) -> bool:
    return (currency_code or "") in CURRENCY_SYMBOLS


def currency_symbol(currency_code: str | None) -> str:
    code = (currency_code or "").strip()
    # unknown codes display as the code itself
    return CURRENCY_SYMBOLS.get(code, code)


def format_currency(amount, currency_code: str | None) -> str:
    """format_currency(5000, "PKR") -> "₨ 5,000.00" """
    return f"{currency_symbol(currency_code)} {coerce_amount(amount):,.2f}"


def total_label(currency_code: str | None) -> str:
    if currency_code == "PKR":
        return f"Total Amount ({currency_code}):"
    return "Total:"
