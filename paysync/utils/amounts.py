from __future__ import annotations

from decimal import Decimal, InvalidOperation
from typing import Any

from paysync.domain.errors import MalformedPayloadError

MINOR_UNIT = Decimal("100")


def to_decimal(value: Any, *, field_name: str) -> Decimal | None:
    """Parse a processor amount; None/empty stays None."""
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        raise MalformedPayloadError(f"{field_name} is not a number")
    if isinstance(value, Decimal):
        amount = value
    else:
        try:
            amount = Decimal(str(value))
        except (InvalidOperation, TypeError, ValueError) as exc:
            raise MalformedPayloadError(f"{field_name} is not a number") from exc
    if not amount.is_finite():
        raise MalformedPayloadError(f"{field_name} is not a number")
    return amount


def from_minor_units(value: Any, *, field_name: str) -> Decimal | None:
    amount = to_decimal(value, field_name=field_name)
    if amount is None:
        return None
    return amount / MINOR_UNIT


def format_amount(value: Decimal | None) -> str:
    if value is None:
        return "?"
    return format(value.normalize(), "f")
