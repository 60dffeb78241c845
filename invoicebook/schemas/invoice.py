from typing import Optional, List
from pydantic import AliasChoices, BaseModel, Field
from datetime import date, datetime
from invoicebook.models.base import PyObjectId
from invoicebook.models.invoice import Invoice, InvoiceStatus, LineItem, PaymentSnapshot
from invoicebook.models.payment import PaymentMode
from invoicebook.utils.invoice_status import is_past_due, today_utc


class LineItemBase(BaseModel):
    product_id: Optional[str] = None
    description: str = ""
    quantity: float = 0
    unit_price: float = 0
    gst_rate_id: Optional[str] = None
    gst_rate: float = 0  # Percent: 18 means 18%

    model_config = {"from_attributes": True}


class InvoiceBase(BaseModel):
    invoice_number: str
    customer_id: Optional[str] = None
    party_id: Optional[str] = None
    issue_date: date
    due_date: Optional[date] = None
    notes: Optional[str] = None
    currency: Optional[str] = None

    model_config = {"from_attributes": True}


class InvoiceCreate(InvoiceBase):
    is_tax_inclusive: bool = False
    items: List[LineItemBase] = []
    additional_charges: float = 0
    discount: float = 0
    tax: Optional[float] = None  # Manual tax total; overrides the summed line tax

    # Optional payment recorded together with the invoice ("mark as paid")
    amount_received: Optional[float] = None
    payment_mode: PaymentMode = PaymentMode.CASH


class InvoiceUpdate(BaseModel):
    """Partial update. amount_received and status are accepted only to be rejected."""
    invoice_number: Optional[str] = None
    customer_id: Optional[str] = None
    party_id: Optional[str] = None
    issue_date: Optional[date] = None
    due_date: Optional[date] = None
    notes: Optional[str] = None
    currency: Optional[str] = None
    is_tax_inclusive: Optional[bool] = None
    items: Optional[List[LineItemBase]] = None
    additional_charges: Optional[float] = None
    discount: Optional[float] = None
    tax: Optional[float] = None
    amount_received: Optional[float] = None
    status: Optional[InvoiceStatus] = None
    version: Optional[int] = None  # Optimistic lock, checked when supplied


class InvoiceResponse(BaseModel):
    id: PyObjectId = Field(validation_alias=AliasChoices("_id", "id"))
    owner_id: PyObjectId
    invoice_number: str
    customer_id: Optional[PyObjectId] = None
    party_id: Optional[PyObjectId] = None
    issue_date: datetime
    due_date: Optional[datetime] = None
    is_tax_inclusive: bool
    currency: str
    notes: Optional[str] = None
    items: List[LineItem]
    additional_charges: float
    discount: float
    subtotal: float
    tax: float
    tax_override: Optional[float] = None
    total_amount: float
    amount_received: float
    balance_due: float
    payments: List[PaymentSnapshot]
    status: InvoiceStatus
    is_past_due: bool = False  # Flags a late Partial invoice without changing its status
    version: int
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True, "arbitrary_types_allowed": True}

    @classmethod
    def from_invoice(cls, invoice: Invoice, today: Optional[date] = None) -> "InvoiceResponse":
        today = today or today_utc()
        return cls(
            **invoice.model_dump(),
            balance_due=invoice.balance_due(),
            is_past_due=is_past_due(invoice.due_date, today) and not invoice.is_fully_paid(),
        )


class ReceivablesSummary(BaseModel):
    invoice_count: int = 0
    total_invoiced: float = 0
    total_received: float = 0
    total_outstanding: float = 0
    overdue_amount: float = 0  # Outstanding on invoices past their due date
    status_counts: dict[str, int] = Field(default_factory=dict)
    currency: str
