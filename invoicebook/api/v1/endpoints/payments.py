from typing import List, Optional
from fastapi import APIRouter, Depends, status
from invoicebook.api.deps import get_account_id, get_payment_service
from invoicebook.schemas.payment import (
    PaymentCreate,
    PaymentFilter,
    PaymentResponse,
    PaymentUpdate,
)
from invoicebook.services.payment_service import PaymentService

router = APIRouter()


@router.get("/", response_model=List[PaymentResponse])
async def list_payments(
    invoice_id: Optional[str] = None,
    customer_id: Optional[str] = None,
    party_id: Optional[str] = None,
    account_id: str = Depends(get_account_id),
    service: PaymentService = Depends(get_payment_service)
):
    """List payments, optionally for one invoice, customer or party"""
    filters = PaymentFilter(invoice_id=invoice_id, customer_id=customer_id, party_id=party_id)
    return await service.list(account_id, filters)


@router.post("/", response_model=PaymentResponse, status_code=status.HTTP_201_CREATED)
async def create_payment(
    payment_in: PaymentCreate,
    account_id: str = Depends(get_account_id),
    service: PaymentService = Depends(get_payment_service)
):
    """Record a payment and reconcile its invoice"""
    return await service.create(account_id, payment_in)


@router.get("/{payment_id}", response_model=PaymentResponse)
async def get_payment(
    payment_id: str,
    account_id: str = Depends(get_account_id),
    service: PaymentService = Depends(get_payment_service)
):
    """Get a payment by ID"""
    return await service.get(account_id, payment_id)


@router.patch("/{payment_id}", response_model=PaymentResponse)
async def update_payment(
    payment_id: str,
    payment_in: PaymentUpdate,
    account_id: str = Depends(get_account_id),
    service: PaymentService = Depends(get_payment_service)
):
    """Update a payment and reconcile every invoice it touched"""
    return await service.update(account_id, payment_id, payment_in)


@router.delete("/{payment_id}")
async def delete_payment(
    payment_id: str,
    account_id: str = Depends(get_account_id),
    service: PaymentService = Depends(get_payment_service)
):
    """Delete a payment and reconcile its invoice"""
    await service.delete(account_id, payment_id)
    return {"message": "Payment deleted successfully"}
