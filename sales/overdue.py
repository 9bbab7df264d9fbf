"""Overdue scan.

`check_overdue` only reads the invoices it is given and returns the
transitions to make; `apply_overdue` writes them. Callers run the scan after
loading the collections rather than after every edit, which keeps each pass
linear in the number of invoices.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, time
from datetime import timezone as dt_timezone

from sales.domain import InvoiceStatus
from sales.invoicing import transition

logger = logging.getLogger(__name__)

EXEMPT_STATUSES = {InvoiceStatus.PAID, InvoiceStatus.OVERDUE}


@dataclass(frozen=True)
class OverdueTransition:
    invoice_id: str
    previous_status: str


def due_start(due_date):
    """Due dates begin at midnight UTC."""
    return datetime.combine(due_date, time.min, tzinfo=dt_timezone.utc)


def is_past_due(invoice, now):
    return invoice.due_date is not None and due_start(invoice.due_date) < now


def check_overdue(invoices, now):
    return [
        OverdueTransition(invoice_id=invoice.id, previous_status=str(invoice.status))
        for invoice in invoices
        if invoice.status not in EXEMPT_STATUSES and is_past_due(invoice, now)
    ]


def apply_overdue(state, transitions, now):
    updated = []
    for item in transitions:
        invoice = state.find_invoice(item.invoice_id)
        if invoice is None or invoice.status != item.previous_status:
            continue
        transition(invoice, InvoiceStatus.OVERDUE, now)
        updated.append(invoice)
    logger.info("overdue_scan_completed", extra={"count": len(updated)})
    return updated
