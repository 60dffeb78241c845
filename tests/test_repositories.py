"""Query-shape tests for the Mongo repositories."""
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest
from bson import ObjectId
from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError

from invoicebook.core.exceptions import ValidationError
from invoicebook.db.mongo import create_indexes
from invoicebook.models.invoice import Invoice, InvoiceStatus, PaymentSnapshot
from invoicebook.repositories.invoice_repo import InvoiceRepository
from invoicebook.repositories.payment_repo import PaymentRepository


def _invoice(**overrides) -> Invoice:
    data = {
        "owner_id": ObjectId(),
        "invoice_number": "INV-001",
        "customer_id": ObjectId(),
        "issue_date": datetime(2024, 6, 1, tzinfo=timezone.utc),
        "total_amount": 1000,
    }
    data.update(overrides)
    return Invoice(**data)


@pytest.mark.asyncio
class TestInvoiceRepository:
    async def test_create_invoice_inserts_document(self, mock_db):
        repo = InvoiceRepository(mock_db)
        invoice = _invoice()

        await repo.create_invoice(invoice)

        doc = mock_db["invoices"].insert_one.call_args[0][0]
        assert doc["_id"] == invoice.id
        assert isinstance(doc["owner_id"], ObjectId)
        assert doc["status"] == "Pending"

    async def test_duplicate_number_becomes_validation_error(self, mock_db):
        mock_db["invoices"].insert_one.side_effect = DuplicateKeyError("E11000 duplicate key")
        repo = InvoiceRepository(mock_db)

        with pytest.raises(ValidationError, match="already exists"):
            await repo.create_invoice(_invoice())

    async def test_get_invoice_with_malformed_id(self, mock_db):
        repo = InvoiceRepository(mock_db)

        assert await repo.get_invoice("nope") is None
        mock_db["invoices"].find_one.assert_not_called()

    async def test_get_invoice_scoped_to_owner(self, mock_db):
        invoice = _invoice()
        mock_db["invoices"].find_one.return_value = invoice.to_document()
        repo = InvoiceRepository(mock_db)

        found = await repo.get_invoice(str(invoice.id), str(invoice.owner_id))

        assert found.id == invoice.id
        query = mock_db["invoices"].find_one.call_args[0][0]
        assert query == {"_id": invoice.id, "owner_id": invoice.owner_id}

    async def test_list_invoices_newest_first(self, mock_db):
        invoice = _invoice()
        cursor = mock_db["invoices"].find.return_value
        cursor.sort.return_value.to_list = AsyncMock(return_value=[invoice.to_document()])
        repo = InvoiceRepository(mock_db)

        invoices = await repo.list_invoices(str(invoice.owner_id), customer_id=str(invoice.customer_id))

        assert [i.id for i in invoices] == [invoice.id]
        mock_db["invoices"].find.assert_called_once_with(
            {"owner_id": invoice.owner_id, "customer_id": invoice.customer_id}
        )
        cursor.sort.assert_called_once_with("issue_date", -1)

    async def test_update_invoice_checks_version(self, mock_db):
        invoice = _invoice()
        mock_db["invoices"].find_one_and_update.return_value = {
            **invoice.to_document(), "notes": "hi", "version": 3
        }
        repo = InvoiceRepository(mock_db)

        updated = await repo.update_invoice(invoice.id, invoice.owner_id, {"notes": "hi"}, expected_version=2)

        assert updated.version == 3
        query, update = mock_db["invoices"].find_one_and_update.call_args[0]
        assert query == {"_id": invoice.id, "owner_id": invoice.owner_id, "version": 2}
        assert update["$set"]["notes"] == "hi"
        assert "updated_at" in update["$set"]
        assert update["$inc"] == {"version": 1}

    async def test_apply_reconciliation_is_version_conditional(self, mock_db):
        invoice = _invoice()
        snapshot = PaymentSnapshot(
            payment_id=ObjectId(),
            amount=400,
            payment_date=datetime(2024, 6, 5, tzinfo=timezone.utc),
            payment_mode="Cash",
        )
        repo = InvoiceRepository(mock_db)

        result = await repo.apply_reconciliation(invoice.id, 4, 400.0, [snapshot], InvoiceStatus.PARTIAL)

        assert result is None
        call = mock_db["invoices"].find_one_and_update.call_args
        query, update = call[0]
        assert query == {"_id": invoice.id, "version": 4}
        assert update["$set"]["amount_received"] == 400.0
        assert update["$set"]["status"] == "Partial"
        assert update["$set"]["payments"][0]["payment_id"] == snapshot.payment_id
        assert update["$inc"] == {"version": 1}
        assert call[1]["return_document"] == ReturnDocument.AFTER

    async def test_delete_invoice(self, mock_db):
        repo = InvoiceRepository(mock_db)
        mock_db["invoices"].delete_one.return_value = MagicMock(deleted_count=0)

        assert await repo.delete_invoice(str(ObjectId()), str(ObjectId())) is False
        assert await repo.delete_invoice("bad-id", str(ObjectId())) is False
        mock_db["invoices"].delete_one.assert_called_once()


@pytest.mark.asyncio
class TestPaymentRepository:
    async def test_sum_for_invoice_excluding_payment(self, mock_db):
        invoice_id, payment_id = ObjectId(), ObjectId()
        mock_db["payments"].aggregate.return_value.to_list = AsyncMock(
            return_value=[{"_id": None, "total": 600.004}]
        )
        repo = PaymentRepository(mock_db)

        total = await repo.sum_for_invoice(str(invoice_id), exclude_payment_id=payment_id)

        assert total == 600.0
        pipeline = mock_db["payments"].aggregate.call_args[0][0]
        assert pipeline[0] == {"$match": {"invoice_id": invoice_id, "_id": {"$ne": payment_id}}}
        assert pipeline[1] == {"$group": {"_id": None, "total": {"$sum": "$amount"}}}

    async def test_sum_for_invoice_without_payments(self, mock_db):
        mock_db["payments"].aggregate.return_value.to_list = AsyncMock(return_value=[])
        repo = PaymentRepository(mock_db)

        assert await repo.sum_for_invoice(ObjectId()) == 0.0

    async def test_list_for_invoice_oldest_first(self, mock_db):
        invoice_id = ObjectId()
        cursor = mock_db["payments"].find.return_value
        cursor.sort.return_value.to_list = AsyncMock(return_value=[])
        repo = PaymentRepository(mock_db)

        assert await repo.list_for_invoice(invoice_id) == []
        mock_db["payments"].find.assert_called_once_with({"invoice_id": invoice_id})
        cursor.sort.assert_called_once_with("payment_date", 1)

    async def test_has_payments(self, mock_db):
        mock_db["payments"].find_one.return_value = {"_id": ObjectId()}
        repo = PaymentRepository(mock_db)

        assert await repo.has_payments(ObjectId()) is True


@pytest.mark.asyncio
async def test_create_indexes(mock_db):
    await create_indexes(mock_db)

    invoice_indexes = mock_db["invoices"].create_index.call_args_list
    assert invoice_indexes[0][0][0] == [("owner_id", 1), ("invoice_number", 1)]
    assert invoice_indexes[0][1] == {"unique": True}
    assert mock_db["payments"].create_index.await_count == 4
