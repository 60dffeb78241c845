from fastapi import APIRouter
from invoicebook.api.v1.endpoints import invoices, payments

api_router = APIRouter()

api_router.include_router(invoices.router, prefix="/invoices", tags=["invoices"])
api_router.include_router(payments.router, prefix="/payments", tags=["payments"])
