from collections import OrderedDict

from common.utils import money_context
from sales.domain import InvoiceStatus, ZERO


def summarize_invoices(invoices):
    """Single pass over the invoices: counts per status and receivable totals."""
    counts = OrderedDict((status.value, 0) for status in InvoiceStatus)
    total_amount = ZERO
    amount_collected = ZERO

    with money_context():
        for invoice in invoices:
            counts[str(invoice.status)] = counts.get(str(invoice.status), 0) + 1
            total_amount += invoice.total
            amount_collected += invoice.amount_paid
        amount_due = total_amount - amount_collected

    return {
        "total": len(invoices),
        "by_status": counts,
        "total_amount": total_amount,
        "amount_collected": amount_collected,
        "amount_due": amount_due,
    }
