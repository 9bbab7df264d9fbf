import logging

from django.utils import timezone

from common.exceptions import ExceedsBalanceError, InvalidAmountError, NotFoundError
from common.utils import money_context, to_money
from sales.domain import InvoiceStatus, Payment, PaymentMethod
from sales.invoicing import transition

logger = logging.getLogger(__name__)


def resolve_payment_status(total, amount_paid, current):
    if amount_paid >= total:
        return InvoiceStatus.PAID
    if amount_paid > 0:
        return InvoiceStatus.PARTIAL
    return current


class PaymentRecorder:
    def __init__(self, state, clock=timezone.now):
        self.state = state
        self.clock = clock

    def record_payment(
        self,
        invoice_id,
        amount,
        method=PaymentMethod.CREDIT_CARD,
        reference="",
        notes="",
        idempotency_key=None,
    ):
        invoice = self.state.find_invoice(invoice_id)
        if invoice is None:
            raise NotFoundError("Invoice was not found.", errors={"invoice_id": str(invoice_id)})

        if idempotency_key:
            duplicate = next(
                (payment for payment in invoice.payment_history if payment.idempotency_key == idempotency_key),
                None,
            )
            if duplicate is not None:
                logger.info("payment_replayed", extra={"invoice_id": invoice.id, "amount": duplicate.amount})
                return invoice

        amount = to_money(amount)
        if amount <= 0:
            raise InvalidAmountError(errors={"amount": str(amount)})

        remaining = invoice.balance_due
        if amount > remaining:
            raise ExceedsBalanceError(
                f"Payment amount ({amount}) cannot exceed remaining balance ({remaining}).",
                errors={"amount": str(amount), "balance_due": str(remaining)},
            )

        now = self.clock()
        method = PaymentMethod(method or PaymentMethod.CREDIT_CARD)
        payment = Payment(
            id=self.state.sequences.new_id(),
            amount=amount,
            method=method,
            date=now,
            reference=reference or "",
            notes=notes or "",
            idempotency_key=idempotency_key or None,
        )

        with money_context():
            amount_paid = invoice.amount_paid + amount
        target = resolve_payment_status(invoice.total, amount_paid, invoice.status)
        if target != invoice.status:
            transition(invoice, target, now)
        invoice.payment_history.append(payment)
        invoice.amount_paid = amount_paid
        invoice.updated_at = now
        invoice.last_payment_date = now
        invoice.last_payment_method = method

        logger.info(
            "payment_recorded",
            extra={"invoice_id": invoice.id, "amount": amount, "status": invoice.status},
        )
        return invoice
