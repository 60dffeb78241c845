from unittest.mock import AsyncMock, MagicMock

import pytest
from bson import ObjectId
from fastapi.testclient import TestClient

from invoicebook.api.deps import get_invoice_service, get_payment_service
from invoicebook.main import app
from invoicebook.services.invoice_service import InvoiceService
from invoicebook.services.payment_service import PaymentService
from invoicebook.services.reconciler import InvoiceLocks, PaymentReconciler
from tests.fakes import TODAY, InMemoryInvoiceRepository, InMemoryPaymentRepository


def _mock_collection() -> MagicMock:
    collection = MagicMock()
    collection.insert_one = AsyncMock()
    collection.find_one = AsyncMock(return_value=None)
    collection.find_one_and_update = AsyncMock(return_value=None)
    collection.delete_one = AsyncMock(return_value=MagicMock(deleted_count=1))
    collection.create_index = AsyncMock()
    return collection


@pytest.fixture
def mock_db():
    """Motor database double; each collection is a MagicMock with async CRUD methods."""
    collections = {name: _mock_collection() for name in ("invoices", "payments")}
    db = MagicMock()
    db.__getitem__.side_effect = collections.__getitem__
    return db


@pytest.fixture
def today():
    return TODAY


@pytest.fixture
def owner_id():
    return str(ObjectId())


@pytest.fixture
def customer_id():
    return str(ObjectId())


@pytest.fixture
def invoice_repo():
    return InMemoryInvoiceRepository()


@pytest.fixture
def payment_repo():
    return InMemoryPaymentRepository()


@pytest.fixture
def reconciler(invoice_repo, payment_repo):
    return PaymentReconciler(
        invoice_repo, payment_repo, locks=InvoiceLocks(), today=lambda: TODAY
    )


@pytest.fixture
def invoice_service(invoice_repo, payment_repo, reconciler):
    return InvoiceService(invoice_repo, payment_repo, reconciler)


@pytest.fixture
def payment_service(invoice_repo, payment_repo, reconciler):
    return PaymentService(payment_repo, invoice_repo, reconciler)


@pytest.fixture
def client(invoice_service, payment_service):
    """API client wired to the in-memory services. Startup (Mongo) is not run."""
    app.dependency_overrides[get_invoice_service] = lambda: invoice_service
    app.dependency_overrides[get_payment_service] = lambda: payment_service
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()
