import logging
from datetime import timedelta

from django.utils import timezone

from core.identifiers import INVOICE_PREFIX
from sales.domain import Invoice, RecurringFrequency
from sales.invoicing import initial_status, payment_term_days

logger = logging.getLogger(__name__)


class RecurrencePolicy:
    """Decides whether a recurring template is due for its next occurrence.

    No schedule ships with the ledger. Subclasses implement `is_due` from the
    template's `recurring_frequency` and `last_recurring_date`.
    """

    def is_due(self, template, now):
        raise NotImplementedError


class RecurringTemplateManager:
    def __init__(self, state, clock=timezone.now):
        self.state = state
        self.clock = clock

    def create_recurring_template(self, source, name, frequency):
        now = self.clock()
        template = Invoice(
            id=self.state.sequences.new_id(),
            invoice_number=self.state.sequences.next_number(INVOICE_PREFIX),
            order_id=None,
            customer_id=source.customer_id,
            items=list(source.items),
            subtotal=source.subtotal,
            tax=source.tax,
            shipping=source.shipping,
            discount=source.discount,
            total=source.total,
            status=initial_status(source.total),
            due_date=(now + timedelta(days=payment_term_days())).date(),
            is_recurring=True,
            recurring_frequency=RecurringFrequency(frequency),
            template=name,
            last_recurring_date=now,
            source_invoice_id=source.id,
            created_at=now,
        )
        self.state.invoices.append(template)
        logger.info(
            "recurring_template_created",
            extra={"invoice_id": template.id, "amount": template.total},
        )
        return template

    def templates(self):
        return [invoice for invoice in self.state.invoices if invoice.is_recurring]

    def due_templates(self, now, policy):
        return [template for template in self.templates() if policy.is_due(template, now)]
