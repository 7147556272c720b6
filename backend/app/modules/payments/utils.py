"""Payment helper functions shared by gateways and services."""

import random
import re
import string
import time
from typing import Any, Optional

# ISO 4217 numeric codes for currencies accepted by the bank providers
CURRENCY_NUMERIC_CODES: dict[str, str] = {
    "AMD": "051",
    "USD": "840",
    "EUR": "978",
    "RUB": "643",
}

# Minor units per major unit
CURRENCY_MINOR_UNITS: dict[str, int] = {
    "AMD": 100,
    "USD": 100,
    "EUR": 100,
    "RUB": 100,
}

RETRY_BASE_DELAY_MS = 1000
RETRY_MAX_DELAY_MS = 60000

_BASE36_ALPHABET = string.digits + string.ascii_lowercase


def generate_idempotency_key(gateway_type: str, order_id: str) -> str:
    """Mint a unique key for one initiation attempt.

    Format: {gateway_type}_{order_id}_{epoch_ms}_{random base36}
    """
    suffix = "".join(random.choices(_BASE36_ALPHABET, k=9))
    return f"{gateway_type}_{order_id}_{int(time.time() * 1000)}_{suffix}"


def calculate_retry_delay(
    attempt: int,
    base_delay_ms: int = RETRY_BASE_DELAY_MS,
    max_delay_ms: int = RETRY_MAX_DELAY_MS,
) -> int:
    """Exponential backoff delay in milliseconds for a 1-based attempt number."""
    if attempt < 1:
        return 0
    return min(base_delay_ms * (2 ** (attempt - 1)), max_delay_ms)


def to_minor_units(amount: float, currency: str = "AMD") -> int:
    """Convert a major-unit amount to the currency's smallest unit."""
    return int(round(amount * CURRENCY_MINOR_UNITS.get(currency.upper(), 100)))


def from_minor_units(amount: int | float | str, currency: str = "AMD") -> float:
    """Convert a smallest-unit amount back to major units."""
    return float(amount) / CURRENCY_MINOR_UNITS.get(currency.upper(), 100)


def format_amount(amount: float, decimals: int = 2) -> str:
    return f"{amount:.{decimals}f}"


def currency_numeric_code(currency: str) -> Optional[str]:
    return CURRENCY_NUMERIC_CODES.get(currency.upper())


def remove_order_number_prefix(order_number: str) -> str:
    """Strip a date prefix: "250113-ABC123" becomes "ABC123"."""
    if not order_number:
        return ""
    parts = order_number.split("-")
    return "-".join(parts[1:]) if len(parts) > 1 else order_number


def format_order_number_for_gateway(
    order_number: str,
    max_length: int = 50,
    remove_prefix: bool = False,
) -> str:
    """Make an order number acceptable to provider APIs.

    Truncates to max_length and keeps only letters, digits, dash and underscore.
    """
    formatted = remove_order_number_prefix(order_number) if remove_prefix else order_number
    formatted = formatted[:max_length]
    return re.sub(r"[^a-zA-Z0-9\-_]", "", formatted)


def mask_sensitive_data(
    data: dict[str, Any],
    fields: tuple[str, ...] = ("password", "key", "secret", "token", "cardNumber", "cvv", "cvc"),
) -> dict[str, Any]:
    """Partially mask selected fields, keeping the first and last two characters."""
    masked = dict(data)
    for field in fields:
        if masked.get(field):
            value = str(masked[field])
            if len(value) > 4:
                masked[field] = f"{value[:2]}{'*' * (len(value) - 4)}{value[-2:]}"
            else:
                masked[field] = "****"
    return masked


def first_present(payload: dict[str, Any], *keys: str) -> Optional[str]:
    """Return the first non-empty value among keys, as a string."""
    for key in keys:
        value = payload.get(key)
        if value not in (None, ""):
            return str(value)
    return None
