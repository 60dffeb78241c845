"""Domain errors raised by the billing services."""


class InvoicebookError(Exception):
    """Base exception for service layer failures."""

    def __init__(self, message: str, *, cause: Exception | None = None):
        super().__init__(message)
        self.message = message
        self.cause = cause


class ValidationError(InvoicebookError):
    """A mutation was rejected before anything was written."""


class NotFoundError(InvoicebookError):
    """The targeted invoice or payment does not exist for this account."""


class ReconciliationConflict(InvoicebookError):
    """The invoice changed underneath a reconciliation pass."""

    def __init__(self, invoice_id: str, expected_version: int, *, cause: Exception | None = None):
        super().__init__(
            f"Invoice {invoice_id} changed during reconciliation "
            f"(expected version {expected_version})",
            cause=cause,
        )
        self.invoice_id = invoice_id
        self.expected_version = expected_version
