import logging
from datetime import datetime, timezone
from typing import Callable, Iterable, List, Optional, Tuple

from invoicebook.core.config import settings
from invoicebook.core.exceptions import NotFoundError, ValidationError
from invoicebook.models.base import as_datetime
from invoicebook.models.invoice import Invoice, InvoiceStatus, LineItem
from invoicebook.models.payment import Payment
from invoicebook.repositories.invoice_repo import InvoiceRepository
from invoicebook.repositories.payment_repo import PaymentRepository
from invoicebook.schemas.invoice import InvoiceCreate, InvoiceUpdate, ReceivablesSummary
from invoicebook.services.reconciler import PaymentReconciler
from invoicebook.utils.invoice_status import compute_status, is_past_due, today_utc
from invoicebook.utils.invoice_validation import (
    PRICING_FIELDS,
    RECONCILER_OWNED_FIELDS,
    parse_object_id,
    validate_billed_to,
    validate_invoice_update,
    validate_payment_amount,
    validate_totals,
    validate_within_balance,
)
from invoicebook.utils.pricing import PricedLine, compute_totals, price_items, round2

logger = logging.getLogger(__name__)


def _optional_id(value, label: str):
    return parse_object_id(value, label) if value else None


def build_line_items(items: Iterable, is_tax_inclusive: bool) -> Tuple[List[LineItem], List[PricedLine]]:
    """Price raw items and stamp the rounded results onto embedded line items."""
    items = list(items)
    lines = price_items(items, is_tax_inclusive)
    line_items = [
        LineItem(
            product_id=_optional_id(item.product_id, "product id"),
            description=item.description,
            quantity=item.quantity,
            unit_price=item.unit_price,
            gst_rate_id=_optional_id(item.gst_rate_id, "GST rate id"),
            gst_rate=item.gst_rate or 0,
            **line.as_item_fields(),
        )
        for item, line in zip(items, lines)
    ]
    return line_items, lines


class InvoiceService:
    def __init__(
        self,
        invoices: InvoiceRepository,
        payments: PaymentRepository,
        reconciler: PaymentReconciler,
        *,
        today: Optional[Callable] = None,
    ) -> None:
        self.invoices = invoices
        self.payments = payments
        self.reconciler = reconciler
        self.today = today or reconciler.today or today_utc

    async def create(self, owner_id: str, invoice_in: InvoiceCreate) -> Invoice:
        """Price, validate and persist a new invoice."""
        validate_billed_to(invoice_in.customer_id, invoice_in.party_id)

        line_items, lines = build_line_items(invoice_in.items, invoice_in.is_tax_inclusive)
        totals = compute_totals(
            lines,
            additional_charges=invoice_in.additional_charges,
            discount=invoice_in.discount,
            tax_override=invoice_in.tax,
        )
        validate_totals(totals)

        if invoice_in.amount_received:
            validate_payment_amount(invoice_in.amount_received)
            validate_within_balance(invoice_in.amount_received, 0, totals.grand_total)

        if await self.invoices.number_exists(owner_id, invoice_in.invoice_number):
            raise ValidationError(f"Invoice number '{invoice_in.invoice_number}' already exists")

        issue_date = as_datetime(invoice_in.issue_date)
        due_date = as_datetime(invoice_in.due_date)
        invoice = Invoice(
            owner_id=owner_id,
            invoice_number=invoice_in.invoice_number,
            customer_id=_optional_id(invoice_in.customer_id, "customer id"),
            party_id=_optional_id(invoice_in.party_id, "party id"),
            issue_date=issue_date,
            due_date=due_date,
            is_tax_inclusive=invoice_in.is_tax_inclusive,
            currency=invoice_in.currency or settings.CURRENCY_SYMBOL,
            notes=invoice_in.notes,
            items=line_items,
            tax_override=invoice_in.tax,
            status=compute_status(totals.grand_total, 0, due_date, self.today()),
            **totals.as_invoice_fields(),
        )
        await self.invoices.create_invoice(invoice)
        logger.info(
            "Created invoice %s (%s) total=%.2f", invoice.id, invoice.invoice_number, invoice.total_amount
        )

        if invoice_in.amount_received:
            invoice = await self._record_initial_payment(invoice, invoice_in)

        return invoice

    async def get(self, owner_id: str, invoice_id: str) -> Invoice:
        invoice = await self.invoices.get_invoice(invoice_id, owner_id)
        if invoice is None:
            raise NotFoundError("Invoice not found")
        return self._with_current_status(invoice)

    async def list(
        self,
        owner_id: str,
        status: Optional[InvoiceStatus] = None,
        customer_id: Optional[str] = None,
        party_id: Optional[str] = None,
    ) -> List[Invoice]:
        """List invoices with status recomputed for today, optionally filtered by it."""
        invoices = await self.invoices.list_invoices(
            owner_id, customer_id=customer_id, party_id=party_id
        )
        invoices = [self._with_current_status(invoice) for invoice in invoices]
        if status is not None:
            wanted = InvoiceStatus(status).value
            invoices = [invoice for invoice in invoices if invoice.status == wanted]
        return invoices

    async def update(self, owner_id: str, invoice_id: str, invoice_in: InvoiceUpdate) -> Invoice:
        seen = await self.get(owner_id, invoice_id)
        updates = invoice_in.model_dump(exclude_unset=True)
        expected_version = updates.pop("version", None)

        async with self.reconciler.locks.hold(seen.id):
            # Re-read under the lock: amount_received may have moved since
            existing = await self.get(owner_id, invoice_id)
            has_payments = await self.payments.has_payments(existing.id)
            validate_invoice_update(updates, has_payments, existing.is_tax_inclusive)
            for field in RECONCILER_OWNED_FIELDS + ("is_tax_inclusive",):
                updates.pop(field, None)
            # Null means "leave as is" for fields that can't be empty
            for field in ("currency", "items", "additional_charges", "discount"):
                if field in updates and updates[field] is None:
                    updates.pop(field)

            if "invoice_number" in updates:
                if not updates["invoice_number"]:
                    raise ValidationError("Invoice number cannot be empty")
                if await self.invoices.number_exists(owner_id, updates["invoice_number"], exclude_id=existing.id):
                    raise ValidationError(f"Invoice number '{updates['invoice_number']}' already exists")

            self._apply_billed_to(existing, updates)

            if "issue_date" in updates:
                if updates["issue_date"] is None:
                    raise ValidationError("Issue date cannot be empty")
                updates["issue_date"] = as_datetime(updates["issue_date"])
            if "due_date" in updates:
                updates["due_date"] = as_datetime(updates["due_date"])

            total_amount = existing.total_amount
            if any(field in updates for field in PRICING_FIELDS):
                total_amount = self._reprice(existing, invoice_in, updates)

            due_date = updates.get("due_date", existing.due_date)
            updates["status"] = compute_status(
                total_amount, existing.amount_received, due_date, self.today()
            ).value

            updated = await self.invoices.update_invoice(
                existing.id, owner_id, updates, expected_version
            )
            if updated is None:
                if expected_version is not None:
                    raise ValidationError(
                        f"Version conflict: expected {expected_version}, invoice has changed"
                    )
                raise NotFoundError("Invoice not found")

        logger.info("Updated invoice %s (%s)", updated.id, ", ".join(sorted(updates)))
        return self._with_current_status(updated)

    async def delete(self, owner_id: str, invoice_id: str) -> bool:
        """Delete an invoice. Its payments stay as direct payments with a dangling link."""
        existing = await self.get(owner_id, invoice_id)

        async with self.reconciler.locks.hold(existing.id):
            orphaned = await self.payments.has_payments(existing.id)
            deleted = await self.invoices.delete_invoice(existing.id, owner_id)
        if not deleted:
            raise NotFoundError("Invoice not found")

        if orphaned:
            logger.info("Deleted invoice %s; its payments are kept unlinked", existing.id)
        else:
            logger.info("Deleted invoice %s", existing.id)
        return True

    async def reconcile(self, owner_id: str, invoice_id: str) -> Invoice:
        """Force a rebuild of one invoice's payment cache."""
        existing = await self.get(owner_id, invoice_id)
        invoice = await self.reconciler.reconcile(existing.id)
        if invoice is None:
            raise NotFoundError("Invoice not found")
        return invoice

    async def receivables_summary(
        self,
        owner_id: str,
        customer_id: Optional[str] = None,
        party_id: Optional[str] = None,
    ) -> ReceivablesSummary:
        invoices = await self.list(owner_id, customer_id=customer_id, party_id=party_id)
        return summarize_receivables(invoices, self.today())

    async def _record_initial_payment(self, invoice: Invoice, invoice_in: InvoiceCreate) -> Invoice:
        async with self.reconciler.locks.hold(invoice.id):
            payment = Payment(
                owner_id=invoice.owner_id,
                invoice_id=invoice.id,
                customer_id=invoice.customer_id,
                party_id=invoice.party_id,
                amount=invoice_in.amount_received,
                payment_date=invoice.issue_date or datetime.now(timezone.utc),
                payment_mode=invoice_in.payment_mode,
                notes=f"Received with invoice {invoice.invoice_number}",
            )
            await self.payments.create_payment(payment)
            reconciled = await self.reconciler.reconcile_locked(invoice.id)
        return reconciled or invoice

    def _apply_billed_to(self, existing: Invoice, updates: dict) -> None:
        if "customer_id" not in updates and "party_id" not in updates:
            return
        # Naming one side alone switches the invoice over to it
        if updates.get("customer_id") and "party_id" not in updates:
            updates["party_id"] = None
        if updates.get("party_id") and "customer_id" not in updates:
            updates["customer_id"] = None

        customer_id = updates.get("customer_id", existing.customer_id)
        party_id = updates.get("party_id", existing.party_id)
        validate_billed_to(customer_id, party_id)
        updates["customer_id"] = _optional_id(customer_id, "customer id")
        updates["party_id"] = _optional_id(party_id, "party id")

    def _reprice(self, existing: Invoice, invoice_in: InvoiceUpdate, updates: dict) -> float:
        """Re-run pricing with the edited fields; writes the results into updates."""
        items = invoice_in.items if "items" in updates else existing.items
        if items is None:
            items = []
        tax_override = updates["tax"] if "tax" in updates else existing.tax_override
        additional_charges = updates.get("additional_charges")
        if additional_charges is None:
            additional_charges = existing.additional_charges
        discount = updates.get("discount")
        if discount is None:
            discount = existing.discount

        line_items, lines = build_line_items(items, existing.is_tax_inclusive)
        totals = compute_totals(
            lines,
            additional_charges=additional_charges,
            discount=discount,
            tax_override=tax_override,
        )
        validate_totals(totals)

        updates["items"] = [item.model_dump() for item in line_items]
        updates["tax_override"] = tax_override
        updates.update(totals.as_invoice_fields())
        return totals.grand_total

    def _with_current_status(self, invoice: Invoice) -> Invoice:
        status = compute_status(
            invoice.total_amount, invoice.amount_received, invoice.due_date, self.today()
        )
        return invoice.model_copy(update={"status": status.value})


def summarize_receivables(invoices: Iterable[Invoice], today) -> ReceivablesSummary:
    """Dashboard figures over a set of invoices with current statuses."""
    invoices = list(invoices)
    status_counts = {status.value: 0 for status in InvoiceStatus}
    total_invoiced = 0.0
    total_received = 0.0
    overdue_amount = 0.0

    for invoice in invoices:
        status_counts[invoice.status] = status_counts.get(invoice.status, 0) + 1
        total_invoiced += invoice.total_amount
        total_received += invoice.amount_received
        if is_past_due(invoice.due_date, today) and not invoice.is_fully_paid():
            overdue_amount += invoice.balance_due()

    currencies = {invoice.currency for invoice in invoices}
    return ReceivablesSummary(
        invoice_count=len(invoices),
        total_invoiced=round2(total_invoiced),
        total_received=round2(total_received),
        total_outstanding=round2(total_invoiced - total_received),
        overdue_amount=round2(overdue_amount),
        status_counts=status_counts,
        currency=currencies.pop() if len(currencies) == 1 else settings.CURRENCY_SYMBOL,
    )
