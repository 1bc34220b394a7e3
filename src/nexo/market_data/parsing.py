"""Numeric parsing for upstream payloads."""

from decimal import Decimal, InvalidOperation
from typing import Any


def parse_decimal(raw: Any) -> Decimal | None:
    """Parse an upstream number (JSON number or numeric string) into a Decimal.

    Absent, unparsable, NaN and infinite values all yield None, which
    adapters treat as a provider failure.
    """
    if raw is None or isinstance(raw, bool):
        return None
    try:
        value = Decimal(str(raw).strip())
    except (InvalidOperation, ValueError):
        return None
    if not value.is_finite():
        return None
    return value
