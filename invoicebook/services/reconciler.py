"""
PaymentReconciler - keeps an invoice's payment cache in step with the ledger.

Protocol for one invoice:
1. Read the invoice (and its version)
2. Read every payment referencing it
3. Sum the amounts, round to 2 decimals
4. Build the payments snapshot from the same set
5. Derive status
6. Write amount_received, payments and status in one update, conditional
   on the version read in step 1

Passes for the same invoice are serialised by an in-process lock; the
version check in step 6 covers writers in other processes. A pass that loses
the race is redone from step 1. Nothing is ever patched incrementally.
"""

import asyncio
import logging
import weakref
from contextlib import AsyncExitStack, asynccontextmanager
from typing import Callable, Iterable, List, Optional

from invoicebook.core.config import settings
from invoicebook.core.exceptions import ReconciliationConflict
from invoicebook.models.invoice import Invoice, PaymentSnapshot
from invoicebook.models.payment import Payment
from invoicebook.repositories.invoice_repo import InvoiceRepository
from invoicebook.repositories.payment_repo import PaymentRepository
from invoicebook.utils.invoice_status import compute_status, today_utc
from invoicebook.utils.pricing import round2

logger = logging.getLogger(__name__)


class InvoiceLocks:
    """Per-invoice mutual exclusion within one event loop."""

    def __init__(self) -> None:
        self._locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()

    def get(self, invoice_id) -> asyncio.Lock:
        key = str(invoice_id)
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock

    @asynccontextmanager
    async def hold(self, *invoice_ids):
        """Hold the locks for every given invoice id. None ids are ignored."""
        # Sorted so two holders of overlapping sets can't deadlock
        keys = sorted({str(invoice_id) for invoice_id in invoice_ids if invoice_id is not None})
        async with AsyncExitStack() as stack:
            for key in keys:
                await stack.enter_async_context(self.get(key))
            yield


invoice_locks = InvoiceLocks()


def build_payments_snapshot(payments: Iterable[Payment]) -> List[PaymentSnapshot]:
    return [
        PaymentSnapshot(
            payment_id=payment.id,
            amount=payment.amount,
            payment_date=payment.payment_date,
            payment_mode=payment.payment_mode,
            reference=payment.reference,
            notes=payment.notes,
        )
        for payment in sorted(payments, key=lambda p: p.payment_date)
    ]


class PaymentReconciler:
    def __init__(
        self,
        invoices: InvoiceRepository,
        payments: PaymentRepository,
        *,
        locks: Optional[InvoiceLocks] = None,
        max_retries: Optional[int] = None,
        today: Callable = today_utc,
    ) -> None:
        self.invoices = invoices
        self.payments = payments
        self.locks = locks or invoice_locks
        self.max_retries = settings.RECONCILE_MAX_RETRIES if max_retries is None else max_retries
        self.today = today

    async def reconcile(self, invoice_id) -> Optional[Invoice]:
        """Rebuild one invoice's payment cache. Returns None if the invoice doesn't exist."""
        async with self.locks.hold(invoice_id):
            return await self.reconcile_locked(invoice_id)

    async def reconcile_many(self, invoice_ids: Iterable) -> List[Invoice]:
        ids = _distinct(invoice_ids)
        async with self.locks.hold(*ids):
            return await self.reconcile_many_locked(ids)

    async def reconcile_many_locked(self, invoice_ids: Iterable) -> List[Invoice]:
        """Reconcile several invoices; the caller already holds their locks."""
        reconciled = []
        for invoice_id in _distinct(invoice_ids):
            invoice = await self.reconcile_locked(invoice_id)
            if invoice is not None:
                reconciled.append(invoice)
        return reconciled

    async def reconcile_locked(self, invoice_id) -> Optional[Invoice]:
        """Reconcile with retries; the caller already holds the invoice's lock."""
        attempts = self.max_retries + 1
        for attempt in range(1, attempts + 1):
            try:
                return await self._reconcile_once(invoice_id)
            except ReconciliationConflict:
                if attempt == attempts:
                    logger.error(
                        "Giving up reconciling invoice %s after %d attempts", invoice_id, attempts
                    )
                    raise
                logger.warning(
                    "Invoice %s changed during reconciliation, retrying (%d/%d)",
                    invoice_id, attempt, self.max_retries
                )
        return None

    async def rebuild_owner(self, owner_id) -> int:
        """Rebuild the payment cache of every invoice an account owns."""
        invoices = await self.invoices.list_invoices(owner_id)
        rebuilt = await self.reconcile_many([invoice.id for invoice in invoices])
        logger.info("Rebuilt payment cache for %d invoices of account %s", len(rebuilt), owner_id)
        return len(rebuilt)

    async def _reconcile_once(self, invoice_id) -> Optional[Invoice]:
        invoice = await self.invoices.get_invoice(invoice_id)
        if invoice is None:
            # Orphaned or direct payment: nothing to keep in step
            logger.info("Invoice %s not found, skipping reconciliation", invoice_id)
            return None

        payments = await self.payments.list_for_invoice(invoice.id)
        amount_received = round2(sum(payment.amount for payment in payments))
        snapshot = build_payments_snapshot(payments)
        status = compute_status(
            invoice.total_amount, amount_received, invoice.due_date, self.today()
        )

        if amount_received > round2(invoice.total_amount):
            logger.warning(
                "Invoice %s has received %.2f against a total of %.2f",
                invoice.id, amount_received, invoice.total_amount
            )

        updated = await self.invoices.apply_reconciliation(
            invoice.id, invoice.version, amount_received, snapshot, status
        )
        if updated is None:
            raise ReconciliationConflict(str(invoice.id), invoice.version)

        logger.debug(
            "Reconciled invoice %s: received=%.2f payments=%d status=%s",
            invoice.id, amount_received, len(payments), updated.status
        )
        return updated


def _distinct(invoice_ids: Iterable) -> list:
    seen = {}
    for invoice_id in invoice_ids:
        if invoice_id is not None:
            seen.setdefault(str(invoice_id), invoice_id)
    return list(seen.values())
