import logging

from django.conf import settings
from django.utils import timezone

from common.exceptions import NotFoundError
from core.store import DatabaseStore
from sales.invoicing import InvoiceLedger
from sales.orders import OrderStore
from sales.overdue import apply_overdue, check_overdue
from sales.payments import PaymentRecorder
from sales.recurring import RecurringTemplateManager
from sales.reports import summarize_invoices
from sales.state import INVOICES, ORDERS, SEQUENCES, ErpState

logger = logging.getLogger(__name__)


class BillingService:
    """Operations exposed to callers; each mutation is persisted before returning."""

    def __init__(self, state, clock=timezone.now):
        self.state = state
        self.clock = clock
        self.orders = OrderStore(state, clock)
        self.ledger = InvoiceLedger(state, clock)
        self.payments = PaymentRecorder(state, clock)
        self.recurring = RecurringTemplateManager(state, clock)

    @classmethod
    def from_store(cls, store=None, clock=timezone.now, scan_overdue=None):
        state = ErpState.load(store if store is not None else DatabaseStore())
        service = cls(state, clock)
        if scan_overdue is None:
            scan_overdue = getattr(settings, "INVOICE_SCAN_OVERDUE_ON_LOAD", False)
        if scan_overdue:
            service.check_overdue()
        return service

    # Orders

    def list_orders(self, search=None):
        return self.orders.list(search=search)

    def get_order(self, order_id):
        return self.orders.get(order_id)

    def create_order(self, data):
        order = self.orders.create(data)
        self.state.save(ORDERS, SEQUENCES)
        return order

    def update_order(self, order_id, changes):
        order = self.orders.update(order_id, changes)
        self.state.save(ORDERS)
        return order

    def delete_order(self, order_id):
        order = self.orders.delete(order_id)
        self.state.save(ORDERS)
        return order

    # Invoices

    def list_invoices(self, status=None, search=None):
        return self.ledger.list(status=status, search=search)

    def get_invoice(self, invoice_id):
        return self.ledger.get(invoice_id)

    def generate_invoice_from_order(self, order_id):
        count_before = len(self.state.invoices)
        invoice = self.ledger.generate_from_order(order_id)
        if len(self.state.invoices) != count_before:
            self.state.save(INVOICES, SEQUENCES)
        return invoice

    def send_invoice(self, invoice_id):
        invoice = self.ledger.send(invoice_id)
        self.state.save(INVOICES)
        return invoice

    def update_invoice(self, invoice_id, changes):
        invoice = self.ledger.update(invoice_id, changes)
        self.state.save(INVOICES)
        return invoice

    def delete_invoice(self, invoice_id):
        invoice = self.ledger.delete(invoice_id)
        self.state.save(INVOICES)
        return invoice

    def record_payment(self, invoice_id, amount, method=None, reference="", notes="", idempotency_key=None):
        invoice = self.payments.record_payment(
            invoice_id,
            amount,
            method=method,
            reference=reference,
            notes=notes,
            idempotency_key=idempotency_key,
        )
        self.state.save(INVOICES)
        return invoice

    def check_overdue(self):
        now = self.clock()
        transitions = check_overdue(self.state.invoices, now)
        updated = apply_overdue(self.state, transitions, now)
        if updated:
            self.state.save(INVOICES)
        return updated

    def create_recurring_template(self, invoice_id, name, frequency):
        source = self.state.find_invoice(invoice_id)
        if source is None:
            raise NotFoundError("Invoice was not found.", errors={"invoice_id": str(invoice_id)})
        template = self.recurring.create_recurring_template(source, name, frequency)
        self.state.save(INVOICES, SEQUENCES)
        return template

    def invoice_summary(self):
        return summarize_invoices(self.state.invoices)

    # Reference data

    def list_products(self):
        return list(self.state.products)

    def list_customers(self):
        return list(self.state.customers)
