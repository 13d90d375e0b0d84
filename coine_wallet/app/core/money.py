from __future__ import annotations

from decimal import Decimal

MINOR_UNITS_PER_MAJOR = 100


def format_minor_units(amount: int) -> str:
    """Render integer minor units as a two-decimal string, e.g. 123456 -> "1234.56"."""
    return str((Decimal(amount) / MINOR_UNITS_PER_MAJOR).quantize(Decimal("0.01")))
