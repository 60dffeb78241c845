from typing import Optional
from datetime import datetime, timezone
from enum import Enum
from pydantic import Field

from invoicebook.models.base import MongoModel, PyObjectId


class PaymentMode(str, Enum):
    CASH = "Cash"
    BANK_TRANSFER = "Bank Transfer"
    UPI = "UPI"
    CHEQUE = "Cheque"
    OTHER = "Other"


class Payment(MongoModel):
    """
    Money received. The payments collection is the single source of truth
    for how much an invoice has been paid.

    invoice_id may be empty (direct payment) or dangle after the invoice is
    deleted; customer_id/party_id tag the payer independently of the link.
    """
    invoice_id: Optional[PyObjectId] = None
    customer_id: Optional[PyObjectId] = None
    party_id: Optional[PyObjectId] = None

    amount: float
    payment_date: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    payment_mode: PaymentMode = PaymentMode.CASH
    reference: Optional[str] = None
    notes: Optional[str] = None
