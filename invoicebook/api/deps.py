from bson import ObjectId
from fastapi import Depends, Header, HTTPException, status
from motor.motor_asyncio import AsyncIOMotorDatabase

from invoicebook.db.session import get_database
from invoicebook.repositories.invoice_repo import InvoiceRepository
from invoicebook.repositories.payment_repo import PaymentRepository
from invoicebook.services.invoice_service import InvoiceService
from invoicebook.services.payment_service import PaymentService
from invoicebook.services.reconciler import PaymentReconciler


def get_account_id(x_account_id: str = Header(...)) -> str:
    """The owning account, supplied by whatever sits in front of this API."""
    if not ObjectId.is_valid(x_account_id):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="X-Account-Id must be a valid ObjectId"
        )
    return x_account_id


def get_invoice_repository(db: AsyncIOMotorDatabase = Depends(get_database)) -> InvoiceRepository:
    return InvoiceRepository(db)


def get_payment_repository(db: AsyncIOMotorDatabase = Depends(get_database)) -> PaymentRepository:
    return PaymentRepository(db)


def get_reconciler(
    invoices: InvoiceRepository = Depends(get_invoice_repository),
    payments: PaymentRepository = Depends(get_payment_repository),
) -> PaymentReconciler:
    return PaymentReconciler(invoices, payments)


def get_invoice_service(
    invoices: InvoiceRepository = Depends(get_invoice_repository),
    payments: PaymentRepository = Depends(get_payment_repository),
    reconciler: PaymentReconciler = Depends(get_reconciler),
) -> InvoiceService:
    return InvoiceService(invoices, payments, reconciler)


def get_payment_service(
    invoices: InvoiceRepository = Depends(get_invoice_repository),
    payments: PaymentRepository = Depends(get_payment_repository),
    reconciler: PaymentReconciler = Depends(get_reconciler),
) -> PaymentService:
    return PaymentService(payments, invoices, reconciler)
