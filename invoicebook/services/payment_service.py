import logging
from datetime import datetime, timezone
from typing import List, Optional

from invoicebook.core.exceptions import NotFoundError
from invoicebook.models.base import as_datetime
from invoicebook.models.invoice import Invoice
from invoicebook.models.payment import Payment, PaymentMode
from invoicebook.repositories.invoice_repo import InvoiceRepository
from invoicebook.repositories.payment_repo import PaymentRepository
from invoicebook.schemas.payment import PaymentCreate, PaymentFilter, PaymentUpdate
from invoicebook.services.reconciler import PaymentReconciler
from invoicebook.utils.invoice_validation import (
    parse_object_id,
    validate_payment_amount,
    validate_within_balance,
)

logger = logging.getLogger(__name__)


class PaymentService:
    """
    Payment create/update/delete.

    Each mutation runs validate -> write -> reconcile while holding the lock
    of every invoice it touches, so two payments against one invoice can't
    both pass the balance check or overwrite each other's totals.
    """

    def __init__(
        self,
        payments: PaymentRepository,
        invoices: InvoiceRepository,
        reconciler: PaymentReconciler,
    ) -> None:
        self.payments = payments
        self.invoices = invoices
        self.reconciler = reconciler

    async def get(self, owner_id: str, payment_id: str) -> Payment:
        payment = await self.payments.get_payment(payment_id, owner_id)
        if payment is None:
            raise NotFoundError("Payment not found")
        return payment

    async def list(self, owner_id: str, filters: Optional[PaymentFilter] = None) -> List[Payment]:
        filters = filters or PaymentFilter()
        return await self.payments.list_payments(
            owner_id,
            invoice_id=filters.invoice_id,
            customer_id=filters.customer_id,
            party_id=filters.party_id,
        )

    async def create(self, owner_id: str, payment_in: PaymentCreate) -> Payment:
        validate_payment_amount(payment_in.amount)
        invoice_oid = parse_object_id(payment_in.invoice_id, "invoice id") if payment_in.invoice_id else None

        async with self.reconciler.locks.hold(invoice_oid):
            invoice = None
            if invoice_oid is not None:
                # Unknown invoice ids are rejected rather than kept as direct payments
                invoice = await self._owned_invoice(owner_id, invoice_oid)
                received = await self.payments.sum_for_invoice(invoice.id)
                validate_within_balance(payment_in.amount, received, invoice.total_amount)

            customer_id = parse_object_id(payment_in.customer_id, "customer id") if payment_in.customer_id else None
            party_id = parse_object_id(payment_in.party_id, "party id") if payment_in.party_id else None
            if invoice is not None and not customer_id and not party_id:
                customer_id = invoice.customer_id
                party_id = invoice.party_id

            payment = Payment(
                owner_id=owner_id,
                invoice_id=invoice_oid,
                customer_id=customer_id,
                party_id=party_id,
                amount=payment_in.amount,
                payment_date=as_datetime(payment_in.payment_date) or datetime.now(timezone.utc),
                payment_mode=payment_in.payment_mode,
                reference=payment_in.reference,
                notes=payment_in.notes,
            )
            await self.payments.create_payment(payment)
            logger.info(
                "Recorded payment %s of %.2f against invoice %s",
                payment.id, payment.amount, invoice_oid
            )

            if invoice_oid is not None:
                await self.reconciler.reconcile_locked(invoice_oid)

        return payment

    async def update(self, owner_id: str, payment_id: str, payment_in: PaymentUpdate) -> Payment:
        updates = payment_in.model_dump(exclude_unset=True)

        if "amount" in updates:
            validate_payment_amount(updates["amount"])
        if "invoice_id" in updates:
            updates["invoice_id"] = (
                parse_object_id(updates["invoice_id"], "invoice id") if updates["invoice_id"] else None
            )
        if "payment_date" in updates:
            if updates["payment_date"] is None:
                updates.pop("payment_date")
            else:
                updates["payment_date"] = as_datetime(updates["payment_date"])
        if updates.get("payment_mode") is not None:
            updates["payment_mode"] = PaymentMode(updates["payment_mode"]).value

        while True:
            seen = await self.get(owner_id, payment_id)
            old_invoice_id = seen.invoice_id
            new_invoice_id = updates["invoice_id"] if "invoice_id" in updates else old_invoice_id

            async with self.reconciler.locks.hold(old_invoice_id, new_invoice_id):
                existing = await self.get(owner_id, payment_id)
                if existing.invoice_id != old_invoice_id:
                    # Moved by another request before we got the lock
                    logger.info("Payment %s moved while waiting for its invoice lock, retrying", existing.id)
                    continue
                moved = new_invoice_id != old_invoice_id

                if new_invoice_id is not None:
                    # A payment already linked to a since-deleted invoice can still be edited
                    invoice = (
                        await self._owned_invoice(owner_id, new_invoice_id)
                        if moved
                        else await self.invoices.get_invoice(new_invoice_id, owner_id)
                    )
                    if invoice is not None:
                        received = await self.payments.sum_for_invoice(
                            invoice.id, exclude_payment_id=existing.id
                        )
                        amount = updates.get("amount", existing.amount)
                        validate_within_balance(amount, received, invoice.total_amount)

                updated = await self.payments.update_payment(existing.id, owner_id, updates)
                if updated is None:
                    raise NotFoundError("Payment not found")
                logger.info("Updated payment %s", updated.id)

                # Old invoice first when the payment moved, so its total drops
                await self.reconciler.reconcile_many_locked([old_invoice_id, new_invoice_id])
                return updated

    async def delete(self, owner_id: str, payment_id: str) -> bool:
        while True:
            seen = await self.get(owner_id, payment_id)

            async with self.reconciler.locks.hold(seen.invoice_id):
                existing = await self.get(owner_id, payment_id)
                if existing.invoice_id != seen.invoice_id:
                    logger.info("Payment %s moved while waiting for its invoice lock, retrying", existing.id)
                    continue

                deleted = await self.payments.delete_payment(existing.id, owner_id)
                if not deleted:
                    raise NotFoundError("Payment not found")
                logger.info("Deleted payment %s from invoice %s", existing.id, existing.invoice_id)

                if existing.invoice_id is not None:
                    await self.reconciler.reconcile_locked(existing.invoice_id)
                return True

    async def _owned_invoice(self, owner_id: str, invoice_id) -> Invoice:
        invoice = await self.invoices.get_invoice(invoice_id, owner_id)
        if invoice is None:
            raise NotFoundError("Invoice not found")
        return invoice
