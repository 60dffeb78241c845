from typing import Optional
from pydantic import AliasChoices, BaseModel, Field
from datetime import date, datetime
from invoicebook.models.base import PyObjectId
from invoicebook.models.payment import PaymentMode


class PaymentCreate(BaseModel):
    invoice_id: Optional[str] = None
    customer_id: Optional[str] = None
    party_id: Optional[str] = None
    amount: float
    payment_date: Optional[date] = None  # Defaults to today
    payment_mode: PaymentMode = PaymentMode.CASH
    reference: Optional[str] = None
    notes: Optional[str] = None


class PaymentUpdate(BaseModel):
    """Partial update. An explicit null invoice_id unlinks the payment."""
    invoice_id: Optional[str] = None
    amount: Optional[float] = None
    payment_date: Optional[date] = None
    payment_mode: Optional[PaymentMode] = None
    reference: Optional[str] = None
    notes: Optional[str] = None


class PaymentFilter(BaseModel):
    invoice_id: Optional[str] = None
    customer_id: Optional[str] = None
    party_id: Optional[str] = None


class PaymentResponse(BaseModel):
    id: PyObjectId = Field(validation_alias=AliasChoices("_id", "id"))
    owner_id: PyObjectId
    invoice_id: Optional[PyObjectId] = None
    customer_id: Optional[PyObjectId] = None
    party_id: Optional[PyObjectId] = None
    amount: float
    payment_date: datetime
    payment_mode: PaymentMode
    reference: Optional[str] = None
    notes: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True, "arbitrary_types_allowed": True}
