import logging
from datetime import timedelta

from django.conf import settings
from django.utils import timezone

from common.exceptions import InvalidTransitionError, NotFoundError
from core.identifiers import INVOICE_PREFIX
from sales.domain import Invoice, InvoiceStatus, can_transition

logger = logging.getLogger(__name__)


def payment_term_days():
    return getattr(settings, "INVOICE_PAYMENT_TERM_DAYS", 30)


def initial_status(total):
    # Nothing is owed on a zero-total invoice, so it starts settled.
    return InvoiceStatus.PAID if total <= 0 else InvoiceStatus.DRAFT


def transition(invoice, target, now):
    """Move `invoice` to `target`, rejecting moves missing from the transition table."""
    target = InvoiceStatus(target)
    if not can_transition(invoice.status, target):
        raise InvalidTransitionError(
            f"Cannot move invoice from '{invoice.status}' to '{target}'.",
            errors={"status": str(invoice.status), "target": str(target)},
        )
    invoice.status = target
    invoice.updated_at = now
    return invoice


class InvoiceLedger:
    def __init__(self, state, clock=timezone.now):
        self.state = state
        self.clock = clock

    def list(self, status=None, search=None):
        invoices = list(self.state.invoices)
        if status:
            invoices = [invoice for invoice in invoices if invoice.status == status]
        if search:
            needle = search.strip().lower()
            invoices = [
                invoice
                for invoice in invoices
                if needle in self.state.search_text(invoice.invoice_number, invoice.customer_id)
            ]
        return invoices

    def get(self, invoice_id):
        invoice = self.state.find_invoice(invoice_id)
        if invoice is None:
            raise NotFoundError("Invoice was not found.", errors={"invoice_id": str(invoice_id)})
        return invoice

    def find_for_order(self, order_id):
        return next((invoice for invoice in self.state.invoices if invoice.order_id == str(order_id)), None)

    def generate_from_order(self, order_id):
        """Snapshot an order's pricing into a new invoice, or return the invoice it already has."""
        order = self.state.find_order(order_id)
        if order is None:
            raise NotFoundError("Order was not found.", errors={"order_id": str(order_id)})

        existing = self.find_for_order(order.id)
        if existing is not None:
            logger.info("invoice_generation_skipped", extra={"order_id": order.id, "invoice_id": existing.id})
            return existing

        now = self.clock()
        invoice = Invoice(
            id=self.state.sequences.new_id(),
            invoice_number=self.state.sequences.next_number(INVOICE_PREFIX),
            order_id=order.id,
            customer_id=order.customer_id,
            items=list(order.items),
            subtotal=order.subtotal,
            tax=order.tax,
            shipping=order.shipping_cost,
            discount=order.discount_amount,
            total=order.total,
            status=initial_status(order.total),
            due_date=(now + timedelta(days=payment_term_days())).date(),
            created_at=now,
        )
        self.state.invoices.append(invoice)
        logger.info(
            "invoice_generated",
            extra={"order_id": order.id, "invoice_id": invoice.id, "amount": invoice.total},
        )
        return invoice

    def send(self, invoice_id):
        invoice = self.get(invoice_id)
        if invoice.status != InvoiceStatus.DRAFT:
            raise InvalidTransitionError(
                "Only draft invoices can be sent.",
                errors={"status": str(invoice.status)},
            )
        now = self.clock()
        transition(invoice, InvoiceStatus.SENT, now)
        invoice.sent_at = now
        logger.info("invoice_sent", extra={"invoice_id": invoice.id})
        return invoice

    def update(self, invoice_id, changes):
        """Edit invoice metadata.

        Status is derived from payments and the due date, so the only status
        edit accepted here is sending a draft; anything else is rejected.
        """
        invoice = self.get(invoice_id)
        target = changes.get("status")
        if target is not None and target != invoice.status:
            if target != InvoiceStatus.SENT:
                raise InvalidTransitionError(
                    f"Invoice status cannot be set to '{target}' directly.",
                    errors={"status": str(invoice.status), "target": str(target)},
                )
            self.send(invoice.id)

        now = self.clock()
        if "due_date" in changes:
            invoice.due_date = changes["due_date"]
        if "template" in changes:
            invoice.template = changes["template"] or "standard"
        if "customer_id" in changes:
            invoice.customer_id = changes["customer_id"]
        invoice.updated_at = now
        logger.info("invoice_updated", extra={"invoice_id": invoice.id, "status": invoice.status})
        return invoice

    def delete(self, invoice_id):
        invoice = self.get(invoice_id)
        self.state.invoices = [existing for existing in self.state.invoices if existing.id != invoice.id]
        logger.info("invoice_deleted", extra={"invoice_id": invoice.id, "status": invoice.status})
        return invoice
