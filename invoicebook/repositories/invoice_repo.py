"""
InvoiceRepository - invoice documents and their cached payment facts.

Every write bumps `version`. Reconciliation writes are conditional on the
version they read, so a pass that raced another writer matches nothing and
can be retried from scratch.
"""

from typing import List, Optional, Sequence
from datetime import datetime, timezone
from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError

from invoicebook.core.exceptions import ValidationError
from invoicebook.models.base import object_id_or_none
from invoicebook.models.invoice import Invoice, InvoiceStatus, PaymentSnapshot


class InvoiceRepository:
    """Invoice database operations."""

    def __init__(self, db: AsyncIOMotorDatabase):
        self.db = db
        self.collection = db["invoices"]

    async def create_invoice(self, invoice: Invoice) -> Invoice:
        """Insert a priced invoice."""
        try:
            await self.collection.insert_one(invoice.to_document())
        except DuplicateKeyError as exc:
            raise ValidationError(
                f"Invoice number '{invoice.invoice_number}' already exists", cause=exc
            )
        return invoice

    async def get_invoice(self, invoice_id, owner_id=None) -> Optional[Invoice]:
        """Get an invoice by id, optionally scoped to an owner."""
        oid = object_id_or_none(invoice_id)
        if oid is None:
            return None
        query = {"_id": oid}
        if owner_id is not None:
            query["owner_id"] = object_id_or_none(owner_id)
        doc = await self.collection.find_one(query)
        if doc:
            return Invoice(**doc)
        return None

    async def list_invoices(
        self,
        owner_id,
        customer_id=None,
        party_id=None,
    ) -> List[Invoice]:
        """List an owner's invoices, newest issue date first."""
        query = {"owner_id": object_id_or_none(owner_id)}
        if customer_id:
            query["customer_id"] = object_id_or_none(customer_id)
        if party_id:
            query["party_id"] = object_id_or_none(party_id)
        cursor = self.collection.find(query).sort("issue_date", -1)
        docs = await cursor.to_list(None)
        return [Invoice(**doc) for doc in docs]

    async def number_exists(self, owner_id, invoice_number: str, exclude_id=None) -> bool:
        query = {"owner_id": object_id_or_none(owner_id), "invoice_number": invoice_number}
        if exclude_id is not None:
            query["_id"] = {"$ne": object_id_or_none(exclude_id)}
        return await self.collection.find_one(query, {"_id": 1}) is not None

    async def update_invoice(
        self,
        invoice_id,
        owner_id,
        updates: dict,
        expected_version: Optional[int] = None,
    ) -> Optional[Invoice]:
        """
        Apply a partial update.

        Returns None if the invoice is missing or, when expected_version is
        given, if it no longer matches.
        """
        query = {"_id": object_id_or_none(invoice_id), "owner_id": object_id_or_none(owner_id)}
        if expected_version is not None:
            query["version"] = expected_version

        updates = dict(updates)
        updates["updated_at"] = datetime.now(timezone.utc)
        try:
            result = await self.collection.find_one_and_update(
                query,
                {"$set": updates, "$inc": {"version": 1}},
                return_document=ReturnDocument.AFTER
            )
        except DuplicateKeyError as exc:
            raise ValidationError(
                f"Invoice number '{updates.get('invoice_number')}' already exists", cause=exc
            )
        if result:
            return Invoice(**result)
        return None

    async def apply_reconciliation(
        self,
        invoice_id,
        expected_version: int,
        amount_received: float,
        payments: Sequence[PaymentSnapshot],
        status: InvoiceStatus,
    ) -> Optional[Invoice]:
        """
        Write the rebuilt payment cache in one conditional update.

        Returns None when the version moved on (or the invoice is gone); the
        caller treats that as a conflict.
        """
        result = await self.collection.find_one_and_update(
            {"_id": object_id_or_none(invoice_id), "version": expected_version},
            {
                "$set": {
                    "amount_received": amount_received,
                    "payments": [snapshot.model_dump() for snapshot in payments],
                    "status": InvoiceStatus(status).value,
                    "updated_at": datetime.now(timezone.utc)
                },
                "$inc": {"version": 1}
            },
            return_document=ReturnDocument.AFTER
        )
        if result:
            return Invoice(**result)
        return None

    async def delete_invoice(self, invoice_id, owner_id) -> bool:
        """Hard delete. Payments referencing the invoice are left in place."""
        oid = object_id_or_none(invoice_id)
        if oid is None:
            return False
        result = await self.collection.delete_one({"_id": oid, "owner_id": object_id_or_none(owner_id)})
        return result.deleted_count > 0
