"""
Line item pricing and invoice totals.

This is the only place prices, taxes and totals are derived. Forms, reports
and the services all call into it instead of re-deriving numbers, so what is
charged and what is shown cannot drift apart.

Rounding rule: intermediate values stay unrounded; round2 is applied only when
a value is persisted or displayed, so rounding error doesn't compound across
many items.
"""
from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable, List, Optional, Sequence, Tuple

from invoicebook.core.exceptions import ValidationError

CENT = Decimal("0.01")

DISCOUNT_EXCEEDS_TOTAL = "discount_exceeds_total"


def round2(value: float) -> float:
    """Round half away from zero to 2 decimals."""
    rounded = float(Decimal(str(value)).quantize(CENT, rounding=ROUND_HALF_UP))
    return rounded + 0.0  # -0.0 -> 0.0


@dataclass(frozen=True)
class PricedLine:
    """Unrounded pricing result for one line item."""
    quantity: float
    unit_price: float
    tax_rate: float
    base_price: float
    line_tax: float
    line_total: float

    @property
    def line_subtotal(self) -> float:
        """Pre-tax amount for the whole line."""
        return self.base_price * self.quantity

    def as_item_fields(self) -> dict:
        """Rounded values stored on the embedded line item."""
        return {
            "base_price": round2(self.base_price),
            "tax_amount": round2(self.line_tax),
            "total": round2(self.line_total),
        }


def price_line(
    quantity: float,
    unit_price: float,
    tax_rate: float = 0,
    is_tax_inclusive: bool = False,
) -> PricedLine:
    """
    Price one line item.

    Rules:
    - exclusive: tax is added on top of unit_price
    - inclusive: unit_price already contains tax; base price is backed out
    - tax_rate of 0 gives unit_price * quantity in both modes
    - quantity 0 is legal (placeholder/service rows) and prices to zero
    """
    if quantity < 0:
        raise ValidationError(f"Quantity cannot be negative: {quantity}")
    if unit_price < 0:
        raise ValidationError(f"Unit price cannot be negative: {unit_price}")
    if tax_rate < 0:
        raise ValidationError(f"Tax rate cannot be negative: {tax_rate}")

    if tax_rate == 0:
        base_price = unit_price
        line_tax = 0.0
        line_total = unit_price * quantity
    elif is_tax_inclusive:
        base_price = unit_price / (1 + tax_rate / 100)
        line_tax = (unit_price - base_price) * quantity
        line_total = unit_price * quantity
    else:
        base_price = unit_price
        line_tax = base_price * quantity * tax_rate / 100
        line_total = base_price * quantity + line_tax

    return PricedLine(
        quantity=quantity,
        unit_price=unit_price,
        tax_rate=tax_rate,
        base_price=base_price,
        line_tax=line_tax,
        line_total=line_total,
    )


def price_items(items: Iterable, is_tax_inclusive: bool) -> List[PricedLine]:
    """Price every item exposing quantity, unit_price and gst_rate."""
    return [
        price_line(item.quantity, item.unit_price, item.gst_rate or 0, is_tax_inclusive)
        for item in items
    ]


@dataclass(frozen=True)
class InvoiceTotals:
    subtotal: float
    tax: float
    additional_charges: float
    discount: float
    grand_total: float
    warnings: Tuple[str, ...] = ()

    @property
    def discount_exceeds_total(self) -> bool:
        return DISCOUNT_EXCEEDS_TOTAL in self.warnings

    def as_invoice_fields(self) -> dict:
        """Rounded values stored on the invoice."""
        return {
            "subtotal": round2(self.subtotal),
            "tax": round2(self.tax),
            "additional_charges": round2(self.additional_charges),
            "discount": round2(self.discount),
            "total_amount": self.grand_total,
        }


def compute_totals(
    lines: Sequence[PricedLine],
    additional_charges: float = 0,
    discount: float = 0,
    tax_override: Optional[float] = None,
) -> InvoiceTotals:
    """
    Aggregate priced lines into invoice totals.

    A caller-supplied tax_override replaces the summed line tax (manual
    adjustments). The grand total is clamped at 0 with a warning when the
    discount exceeds everything else; callers decide whether that is fatal.
    """
    if additional_charges < 0:
        raise ValidationError(f"Additional charges cannot be negative: {additional_charges}")
    if discount < 0:
        raise ValidationError(f"Discount cannot be negative: {discount}")
    if tax_override is not None and tax_override < 0:
        raise ValidationError(f"Tax cannot be negative: {tax_override}")

    subtotal = sum(line.line_subtotal for line in lines)
    tax = tax_override if tax_override is not None else sum(line.line_tax for line in lines)

    warnings: List[str] = []
    grand_total = round2(subtotal + tax + additional_charges - discount)
    if grand_total < 0:
        warnings.append(DISCOUNT_EXCEEDS_TOTAL)
        grand_total = 0.0

    return InvoiceTotals(
        subtotal=subtotal,
        tax=tax,
        additional_charges=additional_charges,
        discount=discount,
        grand_total=grand_total,
        warnings=tuple(warnings),
    )


def balance_due(grand_total: float, amount_received: float) -> float:
    """Grand total minus amount received, rounded."""
    return round2(grand_total - amount_received)
