"""
PaymentRepository - the payment ledger.

Payments are the source of truth for money received. Nothing here caches
across calls: every read goes back to the collection.
"""

from typing import List, Optional
from datetime import datetime, timezone
from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ReturnDocument

from invoicebook.models.base import object_id_or_none
from invoicebook.models.payment import Payment
from invoicebook.utils.pricing import round2


class PaymentRepository:
    """Payment database operations."""

    def __init__(self, db: AsyncIOMotorDatabase):
        self.db = db
        self.collection = db["payments"]

    async def create_payment(self, payment: Payment) -> Payment:
        await self.collection.insert_one(payment.to_document())
        return payment

    async def get_payment(self, payment_id, owner_id=None) -> Optional[Payment]:
        oid = object_id_or_none(payment_id)
        if oid is None:
            return None
        query = {"_id": oid}
        if owner_id is not None:
            query["owner_id"] = object_id_or_none(owner_id)
        doc = await self.collection.find_one(query)
        if doc:
            return Payment(**doc)
        return None

    async def list_payments(
        self,
        owner_id,
        invoice_id=None,
        customer_id=None,
        party_id=None,
    ) -> List[Payment]:
        """List an owner's payments, most recent first."""
        query = {"owner_id": object_id_or_none(owner_id)}
        if invoice_id:
            query["invoice_id"] = object_id_or_none(invoice_id)
        if customer_id:
            query["customer_id"] = object_id_or_none(customer_id)
        if party_id:
            query["party_id"] = object_id_or_none(party_id)
        cursor = self.collection.find(query).sort("payment_date", -1)
        docs = await cursor.to_list(None)
        return [Payment(**doc) for doc in docs]

    async def list_for_invoice(self, invoice_id) -> List[Payment]:
        """Every payment referencing an invoice, oldest first."""
        cursor = self.collection.find({"invoice_id": object_id_or_none(invoice_id)}).sort("payment_date", 1)
        docs = await cursor.to_list(None)
        return [Payment(**doc) for doc in docs]

    async def sum_for_invoice(self, invoice_id, exclude_payment_id=None) -> float:
        """Total received against an invoice, optionally leaving one payment out."""
        match = {"invoice_id": object_id_or_none(invoice_id)}
        if exclude_payment_id is not None:
            match["_id"] = {"$ne": object_id_or_none(exclude_payment_id)}

        result = await self.collection.aggregate([
            {"$match": match},
            {"$group": {"_id": None, "total": {"$sum": "$amount"}}}
        ]).to_list(None)

        return round2(result[0]["total"]) if result else 0.0

    async def has_payments(self, invoice_id) -> bool:
        doc = await self.collection.find_one({"invoice_id": object_id_or_none(invoice_id)}, {"_id": 1})
        return doc is not None

    async def update_payment(self, payment_id, owner_id, updates: dict) -> Optional[Payment]:
        """Apply a partial update. invoice_id is only touched if present in updates."""
        updates = dict(updates)
        updates["updated_at"] = datetime.now(timezone.utc)
        result = await self.collection.find_one_and_update(
            {"_id": object_id_or_none(payment_id), "owner_id": object_id_or_none(owner_id)},
            {"$set": updates},
            return_document=ReturnDocument.AFTER
        )
        if result:
            return Payment(**result)
        return None

    async def delete_payment(self, payment_id, owner_id) -> bool:
        oid = object_id_or_none(payment_id)
        if oid is None:
            return False
        result = await self.collection.delete_one({"_id": oid, "owner_id": object_id_or_none(owner_id)})
        return result.deleted_count > 0
