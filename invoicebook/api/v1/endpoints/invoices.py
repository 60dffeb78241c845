from typing import List, Optional
from fastapi import APIRouter, Depends, status
from invoicebook.api.deps import get_account_id, get_invoice_service
from invoicebook.models.invoice import InvoiceStatus
from invoicebook.schemas.invoice import (
    InvoiceCreate,
    InvoiceResponse,
    InvoiceUpdate,
    ReceivablesSummary,
)
from invoicebook.services.invoice_service import InvoiceService

router = APIRouter()


@router.get("/", response_model=List[InvoiceResponse])
async def list_invoices(
    status: Optional[InvoiceStatus] = None,
    customer_id: Optional[str] = None,
    party_id: Optional[str] = None,
    account_id: str = Depends(get_account_id),
    service: InvoiceService = Depends(get_invoice_service)
):
    """List invoices with their current status"""
    invoices = await service.list(account_id, status=status, customer_id=customer_id, party_id=party_id)
    today = service.today()
    return [InvoiceResponse.from_invoice(invoice, today) for invoice in invoices]


@router.get("/summary", response_model=ReceivablesSummary)
async def receivables_summary(
    customer_id: Optional[str] = None,
    party_id: Optional[str] = None,
    account_id: str = Depends(get_account_id),
    service: InvoiceService = Depends(get_invoice_service)
):
    """Invoiced, received and outstanding totals"""
    return await service.receivables_summary(account_id, customer_id=customer_id, party_id=party_id)


@router.post("/", response_model=InvoiceResponse, status_code=status.HTTP_201_CREATED)
async def create_invoice(
    invoice_in: InvoiceCreate,
    account_id: str = Depends(get_account_id),
    service: InvoiceService = Depends(get_invoice_service)
):
    """Create a priced invoice"""
    invoice = await service.create(account_id, invoice_in)
    return InvoiceResponse.from_invoice(invoice, service.today())


@router.get("/{invoice_id}", response_model=InvoiceResponse)
async def get_invoice(
    invoice_id: str,
    account_id: str = Depends(get_account_id),
    service: InvoiceService = Depends(get_invoice_service)
):
    """Get an invoice by ID"""
    invoice = await service.get(account_id, invoice_id)
    return InvoiceResponse.from_invoice(invoice, service.today())


@router.patch("/{invoice_id}", response_model=InvoiceResponse)
async def update_invoice(
    invoice_id: str,
    invoice_in: InvoiceUpdate,
    account_id: str = Depends(get_account_id),
    service: InvoiceService = Depends(get_invoice_service)
):
    """Update an invoice; re-prices when items, charges, discount or tax change"""
    invoice = await service.update(account_id, invoice_id, invoice_in)
    return InvoiceResponse.from_invoice(invoice, service.today())


@router.delete("/{invoice_id}")
async def delete_invoice(
    invoice_id: str,
    account_id: str = Depends(get_account_id),
    service: InvoiceService = Depends(get_invoice_service)
):
    """Delete an invoice; its payments are kept"""
    await service.delete(account_id, invoice_id)
    return {"message": "Invoice deleted successfully"}


@router.post("/{invoice_id}/reconcile", response_model=InvoiceResponse)
async def reconcile_invoice(
    invoice_id: str,
    account_id: str = Depends(get_account_id),
    service: InvoiceService = Depends(get_invoice_service)
):
    """Rebuild received amount, payments snapshot and status from the payments"""
    invoice = await service.reconcile(account_id, invoice_id)
    return InvoiceResponse.from_invoice(invoice, service.today())
