"""Invoice status derivation.

Status is never stored as primary data; it is recomputed from
(total, received, due date, today) wherever it is needed. There are no
transitions to police, only this decision function.
"""
from datetime import date, datetime, timezone
from typing import Optional, Union

from invoicebook.models.invoice import InvoiceStatus
from invoicebook.utils.pricing import round2

DateLike = Union[date, datetime]


def today_utc() -> date:
    return datetime.now(timezone.utc).date()


def _as_date(value: DateLike) -> date:
    if isinstance(value, datetime):
        return value.date()
    return value


def is_past_due(due_date: Optional[DateLike], today: DateLike) -> bool:
    """True when a due date is set and has passed."""
    if due_date is None:
        return False
    return _as_date(due_date) < _as_date(today)


def compute_status(
    total: float,
    received: float,
    due_date: Optional[DateLike],
    today: Optional[DateLike] = None,
) -> InvoiceStatus:
    """
    Map an invoice's money facts to its status.

    All comparisons use values rounded to 2 decimals so near-equal floats
    aren't misread as Partial. Overdue only applies while nothing has been
    received: a late, partially paid invoice is Partial.
    """
    if today is None:
        today = today_utc()

    total = round2(total)
    received = round2(received)

    if received >= total:
        return InvoiceStatus.PAID
    if received > 0:
        return InvoiceStatus.PARTIAL
    if is_past_due(due_date, today):
        return InvoiceStatus.OVERDUE
    return InvoiceStatus.PENDING
