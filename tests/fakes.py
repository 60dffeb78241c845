"""In-memory stand-ins for the Mongo repositories.

They expose the same async methods as InvoiceRepository/PaymentRepository
and keep documents as dicts, so callers never share mutable state with the
store, the same as with a real collection. Every call yields to the event
loop once so concurrent service calls interleave like they would against
Mongo.
"""
import asyncio
from datetime import date, datetime, timezone
from typing import Dict, List, Optional

from invoicebook.core.exceptions import ValidationError
from invoicebook.models.base import object_id_or_none
from invoicebook.models.invoice import Invoice, InvoiceStatus
from invoicebook.models.payment import Payment
from invoicebook.utils.pricing import round2

# Fixed "today" so due-date logic is deterministic
TODAY = date(2024, 6, 15)


class InMemoryInvoiceRepository:
    def __init__(self) -> None:
        self.docs: Dict[str, dict] = {}
        self.reconciliation_writes = 0

    async def create_invoice(self, invoice: Invoice) -> Invoice:
        await asyncio.sleep(0)
        for doc in self.docs.values():
            if doc["owner_id"] == invoice.owner_id and doc["invoice_number"] == invoice.invoice_number:
                raise ValidationError(f"Invoice number '{invoice.invoice_number}' already exists")
        self.docs[str(invoice.id)] = invoice.to_document()
        return invoice

    async def get_invoice(self, invoice_id, owner_id=None) -> Optional[Invoice]:
        await asyncio.sleep(0)
        doc = self.docs.get(str(invoice_id))
        if doc is None:
            return None
        if owner_id is not None and doc["owner_id"] != object_id_or_none(owner_id):
            return None
        return Invoice(**doc)

    async def list_invoices(self, owner_id, customer_id=None, party_id=None) -> List[Invoice]:
        await asyncio.sleep(0)
        owner = object_id_or_none(owner_id)
        docs = [doc for doc in self.docs.values() if doc["owner_id"] == owner]
        if customer_id:
            docs = [doc for doc in docs if doc.get("customer_id") == object_id_or_none(customer_id)]
        if party_id:
            docs = [doc for doc in docs if doc.get("party_id") == object_id_or_none(party_id)]
        docs.sort(key=lambda doc: doc["issue_date"], reverse=True)
        return [Invoice(**doc) for doc in docs]

    async def number_exists(self, owner_id, invoice_number: str, exclude_id=None) -> bool:
        await asyncio.sleep(0)
        owner = object_id_or_none(owner_id)
        return any(
            doc["owner_id"] == owner
            and doc["invoice_number"] == invoice_number
            and key != str(exclude_id)
            for key, doc in self.docs.items()
        )

    async def update_invoice(self, invoice_id, owner_id, updates: dict, expected_version=None) -> Optional[Invoice]:
        await asyncio.sleep(0)
        doc = self.docs.get(str(invoice_id))
        if doc is None or doc["owner_id"] != object_id_or_none(owner_id):
            return None
        if expected_version is not None and doc["version"] != expected_version:
            return None
        doc.update(updates)
        doc["version"] += 1
        doc["updated_at"] = datetime.now(timezone.utc)
        return Invoice(**doc)

    async def apply_reconciliation(self, invoice_id, expected_version, amount_received, payments, status):
        await asyncio.sleep(0)
        doc = self.docs.get(str(invoice_id))
        if doc is None or doc["version"] != expected_version:
            return None
        doc.update(
            amount_received=amount_received,
            payments=[snapshot.model_dump() for snapshot in payments],
            status=InvoiceStatus(status).value,
            updated_at=datetime.now(timezone.utc),
        )
        doc["version"] += 1
        self.reconciliation_writes += 1
        return Invoice(**doc)

    async def delete_invoice(self, invoice_id, owner_id) -> bool:
        await asyncio.sleep(0)
        doc = self.docs.get(str(invoice_id))
        if doc is None or doc["owner_id"] != object_id_or_none(owner_id):
            return False
        del self.docs[str(invoice_id)]
        return True


class InMemoryPaymentRepository:
    def __init__(self) -> None:
        self.docs: Dict[str, dict] = {}

    async def create_payment(self, payment: Payment) -> Payment:
        await asyncio.sleep(0)
        self.docs[str(payment.id)] = payment.to_document()
        return payment

    async def get_payment(self, payment_id, owner_id=None) -> Optional[Payment]:
        await asyncio.sleep(0)
        doc = self.docs.get(str(payment_id))
        if doc is None:
            return None
        if owner_id is not None and doc["owner_id"] != object_id_or_none(owner_id):
            return None
        return Payment(**doc)

    async def list_payments(self, owner_id, invoice_id=None, customer_id=None, party_id=None) -> List[Payment]:
        await asyncio.sleep(0)
        docs = [doc for doc in self.docs.values() if doc["owner_id"] == object_id_or_none(owner_id)]
        for field, value in (("invoice_id", invoice_id), ("customer_id", customer_id), ("party_id", party_id)):
            if value:
                docs = [doc for doc in docs if doc.get(field) == object_id_or_none(value)]
        docs.sort(key=lambda doc: doc["payment_date"], reverse=True)
        return [Payment(**doc) for doc in docs]

    async def list_for_invoice(self, invoice_id) -> List[Payment]:
        await asyncio.sleep(0)
        oid = object_id_or_none(invoice_id)
        docs = [doc for doc in self.docs.values() if doc.get("invoice_id") == oid]
        docs.sort(key=lambda doc: doc["payment_date"])
        return [Payment(**doc) for doc in docs]

    async def sum_for_invoice(self, invoice_id, exclude_payment_id=None) -> float:
        await asyncio.sleep(0)
        oid = object_id_or_none(invoice_id)
        total = sum(
            doc["amount"]
            for key, doc in self.docs.items()
            if doc.get("invoice_id") == oid and key != str(exclude_payment_id)
        )
        return round2(total)

    async def has_payments(self, invoice_id) -> bool:
        await asyncio.sleep(0)
        oid = object_id_or_none(invoice_id)
        return any(doc.get("invoice_id") == oid for doc in self.docs.values())

    async def update_payment(self, payment_id, owner_id, updates: dict) -> Optional[Payment]:
        await asyncio.sleep(0)
        doc = self.docs.get(str(payment_id))
        if doc is None or doc["owner_id"] != object_id_or_none(owner_id):
            return None
        doc.update(updates)
        doc["updated_at"] = datetime.now(timezone.utc)
        return Payment(**doc)

    async def delete_payment(self, payment_id, owner_id) -> bool:
        await asyncio.sleep(0)
        doc = self.docs.get(str(payment_id))
        if doc is None or doc["owner_id"] != object_id_or_none(owner_id):
            return False
        del self.docs[str(payment_id)]
        return True
