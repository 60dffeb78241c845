"""Invoice and payment validation utilities."""
from typing import Optional

from bson import ObjectId

from invoicebook.core.exceptions import ValidationError
from invoicebook.utils.pricing import InvoiceTotals, round2

# Owned by the reconciler; callers may never write them
RECONCILER_OWNED_FIELDS = ("amount_received", "status")

# Changing any of these re-prices the invoice
PRICING_FIELDS = ("items", "additional_charges", "discount", "tax")


def parse_object_id(value: str, label: str = "id") -> ObjectId:
    """Parse a client-supplied id, rejecting malformed ones."""
    if isinstance(value, ObjectId):
        return value
    if not value or not ObjectId.is_valid(value):
        raise ValidationError(f"Invalid {label}: {value!r}")
    return ObjectId(value)


def validate_billed_to(customer_id: Optional[str], party_id: Optional[str]) -> None:
    """An invoice is billed to exactly one customer or party, never both."""
    if customer_id and party_id:
        raise ValidationError("Invoice cannot be billed to both a customer and a party")
    if not customer_id and not party_id:
        raise ValidationError("Invoice must be billed to a customer or a party")


def validate_totals(totals: InvoiceTotals) -> None:
    """
    Reject totals the aggregator had to clamp.

    Rules:
    - discount may not exceed subtotal + tax + additional charges
    """
    if totals.discount_exceeds_total:
        payable = round2(totals.subtotal + totals.tax + totals.additional_charges)
        raise ValidationError(
            f"Discount of {round2(totals.discount):.2f} exceeds payable total of {payable:.2f}"
        )


def validate_payment_amount(amount: float) -> None:
    if amount is None or amount <= 0:
        raise ValidationError(f"Payment amount must be positive, got {amount}")


def validate_within_balance(
    amount: float,
    already_received: float,
    total_amount: float,
) -> None:
    """
    Reject a payment that would push amount_received past total_amount.

    already_received must exclude the payment being validated when it is an
    edit of an existing payment.
    """
    balance = round2(total_amount - already_received)
    if round2(already_received + amount) > round2(total_amount):
        raise ValidationError(
            f"Payment of {round2(amount):.2f} exceeds invoice balance of {max(balance, 0.0):.2f}"
        )


def validate_invoice_update(updates: dict, has_payments: bool, is_tax_inclusive: bool) -> None:
    """
    Rules for editing an existing invoice:
    - amount_received and status are derived and never written directly
    - the tax-inclusive flag is fixed at creation
    - pricing fields are frozen once payments exist
    """
    for field in RECONCILER_OWNED_FIELDS:
        if updates.get(field) is not None:
            if has_payments:
                raise ValidationError(
                    f"'{field}' is maintained from the invoice's payments and cannot be set directly"
                )
            raise ValidationError(
                f"'{field}' cannot be set directly; record a payment instead"
            )

    flag = updates.get("is_tax_inclusive")
    if flag is not None and flag != is_tax_inclusive:
        raise ValidationError(
            "Tax-inclusive pricing is fixed when the invoice is created and cannot be changed"
        )

    if has_payments and any(field in updates for field in PRICING_FIELDS):
        raise ValidationError(
            "Items, charges, discount and tax cannot be edited after payments have been recorded"
        )
