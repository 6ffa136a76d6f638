"""Invoice amount calculation in integer minor units.

Tax is ``round_half_up(subtotal * tax_rate / 100)`` and
``total == subtotal + tax_amount`` always holds.
"""

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal
from typing import Any

from billing.core.config import settings
from billing.core.errors import ValidationError


@dataclass
class InvoiceAmounts:
    line_items: list[dict[str, Any]] = field(default_factory=list)
    subtotal: int = 0
    tax_rate: Decimal = Decimal("0")
    tax_amount: int = 0
    total: int = 0


def tax_rate_for(currency: str) -> Decimal:
    """Return the tax percentage applied to invoices in ``currency``."""
    rate = settings.TAX_RATES.get(currency.upper())
    if rate is None:
        return Decimal("0")
    return Decimal(str(rate))


def round_half_up(value: Decimal) -> int:
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def calculate_tax(subtotal: int, tax_rate: Decimal) -> int:
    return round_half_up(Decimal(subtotal) * tax_rate / Decimal(100))


def _item_value(item: Any, name: str) -> Any:
    if isinstance(item, Mapping):
        return item.get(name)
    return getattr(item, name, None)


def normalize_line_items(items: Iterable[Any]) -> list[dict[str, Any]]:
    """Validate line items and attach ``amount = quantity * rate``."""
    normalized: list[dict[str, Any]] = []
    for item in items:
        description = str(_item_value(item, "description") or "").strip()
        quantity = _item_value(item, "quantity")
        rate = _item_value(item, "rate")
        if not description:
            raise ValidationError("Each line item needs a description")
        if not isinstance(quantity, int) or isinstance(quantity, bool) or quantity < 1:
            raise ValidationError("Line item quantity must be a whole number of at least 1")
        if not isinstance(rate, int) or isinstance(rate, bool) or rate < 0:
            raise ValidationError("Line item rate must be a non-negative amount in minor units")
        normalized.append(
            {
                "description": description,
                "quantity": quantity,
                "rate": rate,
                "amount": quantity * rate,
            }
        )
    if not normalized:
        raise ValidationError("At least one line item is required")
    return normalized


def calculate_amounts(items: Iterable[Any], currency: str) -> InvoiceAmounts:
    """Compute line item amounts, subtotal, tax and total for an invoice."""
    line_items = normalize_line_items(items)
    subtotal = sum(item["amount"] for item in line_items)
    tax_rate = tax_rate_for(currency)
    tax_amount = calculate_tax(subtotal, tax_rate)
    return InvoiceAmounts(
        line_items=line_items,
        subtotal=subtotal,
        tax_rate=tax_rate,
        tax_amount=tax_amount,
        total=subtotal + tax_amount,
    )


def format_minor_units(amount: int | None, currency: str = "") -> str:
    """Render minor units as ``KES 1,234.50``."""
    value = Decimal(amount or 0) / Decimal(100)
    formatted = f"{value:,.2f}"
    return f"{currency} {formatted}".strip()
