"""
Invoice model - what was billed, and the payment facts cached on it.

Design principles:
- Line items are embedded and priced once, at save time
- total_amount only changes when items/charges/discount are edited
- amount_received, payments and status are a materialized cache of the
  payments collection, rebuilt by the reconciler and never hand-edited
- version increments on every write (optimistic concurrency)
"""

from typing import List, Optional
from datetime import datetime
from enum import Enum
from pydantic import BaseModel, Field

from invoicebook.core.config import settings
from invoicebook.models.base import MongoModel, PyObjectId
from invoicebook.utils.pricing import round2


class InvoiceStatus(str, Enum):
    PENDING = "Pending"
    PARTIAL = "Partial"
    PAID = "Paid"
    OVERDUE = "Overdue"


# Embedded documents don't need MongoModel (no separate _id)
class LineItem(BaseModel):
    product_id: Optional[PyObjectId] = None
    description: str = ""
    quantity: float = 0
    unit_price: float = 0  # As entered; tax-inclusive or not per invoice
    gst_rate_id: Optional[PyObjectId] = None
    gst_rate: float = 0  # Percent, snapshotted so later rate edits don't rewrite history
    base_price: float = 0
    tax_amount: float = 0
    total: float = 0


class PaymentSnapshot(BaseModel):
    """Display copy of one payment. Not the source of truth."""
    payment_id: PyObjectId
    amount: float
    payment_date: datetime
    payment_mode: str
    reference: Optional[str] = None
    notes: Optional[str] = None


class Invoice(MongoModel):
    invoice_number: str
    customer_id: Optional[PyObjectId] = None
    party_id: Optional[PyObjectId] = None
    issue_date: datetime
    due_date: Optional[datetime] = None
    is_tax_inclusive: bool = False
    currency: str = Field(default_factory=lambda: settings.CURRENCY_SYMBOL)
    notes: Optional[str] = None

    items: List[LineItem] = []
    additional_charges: float = 0
    discount: float = 0

    # Computed from items/charges/discount
    subtotal: float = 0
    tax: float = 0
    tax_override: Optional[float] = None  # Manual tax total, kept for re-pricing
    total_amount: float = 0

    # Rebuilt from the payments collection
    amount_received: float = 0
    payments: List[PaymentSnapshot] = []
    status: InvoiceStatus = InvoiceStatus.PENDING

    version: int = 1

    def balance_due(self) -> float:
        """How much remains unpaid."""
        return round2(self.total_amount - self.amount_received)

    def is_fully_paid(self) -> bool:
        return round2(self.amount_received) >= round2(self.total_amount)
