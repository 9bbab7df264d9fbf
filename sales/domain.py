"""Order, invoice and payment records held in the ERP collections."""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal

from django.db import models
from django.utils.dateparse import parse_date, parse_datetime

from common.utils import money_context, parse_money, to_decimal, to_int, to_json_compatible, to_money

ZERO = Decimal("0.00")


class OrderStatus(models.TextChoices):
    DRAFT = "draft", "Draft"
    CONFIRMED = "confirmed", "Confirmed"
    SHIPPED = "shipped", "Shipped"
    INVOICED = "invoiced", "Invoiced"


class InvoiceStatus(models.TextChoices):
    DRAFT = "draft", "Draft"
    SENT = "sent", "Sent"
    # Legacy twin of SENT: an issued invoice awaiting payment.
    UNPAID = "unpaid", "Unpaid"
    PARTIAL = "partial", "Partially Paid"
    PAID = "paid", "Paid"
    OVERDUE = "overdue", "Overdue"


class PaymentMethod(models.TextChoices):
    CREDIT_CARD = "credit_card", "Credit Card"
    BANK_TRANSFER = "bank_transfer", "Bank Transfer"
    CHECK = "check", "Check"
    CASH = "cash", "Cash"
    OTHER = "other", "Other"


class RecurringFrequency(models.TextChoices):
    WEEKLY = "weekly", "Weekly"
    MONTHLY = "monthly", "Monthly"
    QUARTERLY = "quarterly", "Quarterly"
    ANNUAL = "annual", "Annual"


INVOICE_TRANSITIONS = {
    InvoiceStatus.DRAFT: {InvoiceStatus.SENT, InvoiceStatus.PARTIAL, InvoiceStatus.PAID, InvoiceStatus.OVERDUE},
    InvoiceStatus.SENT: {InvoiceStatus.PARTIAL, InvoiceStatus.PAID, InvoiceStatus.OVERDUE},
    InvoiceStatus.UNPAID: {InvoiceStatus.PARTIAL, InvoiceStatus.PAID, InvoiceStatus.OVERDUE},
    InvoiceStatus.PARTIAL: {InvoiceStatus.PARTIAL, InvoiceStatus.PAID, InvoiceStatus.OVERDUE},
    InvoiceStatus.OVERDUE: {InvoiceStatus.PARTIAL, InvoiceStatus.PAID},
    InvoiceStatus.PAID: set(),
}


def can_transition(current, target) -> bool:
    return InvoiceStatus(target) in INVOICE_TRANSITIONS[InvoiceStatus(current)]


def _datetime_or_none(value):
    if value in (None, ""):
        return None
    if isinstance(value, datetime):
        return value
    parsed = parse_datetime(str(value))
    if parsed is None:
        raise ValueError(f"Invalid datetime: {value!r}")
    return parsed


def _date_or_none(value):
    if value in (None, ""):
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    parsed = parse_date(str(value)[:10])
    if parsed is None:
        raise ValueError(f"Invalid date: {value!r}")
    return parsed


@dataclass(frozen=True)
class LineItem:
    product_id: str | None
    quantity: int = 0
    unit_price: Decimal = ZERO
    discount_percent: Decimal = Decimal("0")

    @classmethod
    def from_dict(cls, data):
        product_id = data.get("product_id")
        return cls(
            product_id=str(product_id) if product_id not in (None, "") else None,
            quantity=to_int(data.get("quantity")),
            unit_price=to_money(data.get("unit_price")),
            discount_percent=to_decimal(data.get("discount_percent")),
        )

    def to_dict(self):
        return to_json_compatible(
            {
                "product_id": self.product_id,
                "quantity": self.quantity,
                "unit_price": self.unit_price,
                "discount_percent": self.discount_percent,
            }
        )


@dataclass
class Order:
    id: str
    order_number: str
    customer_id: str | None
    items: list[LineItem] = field(default_factory=list)
    discount_amount: Decimal = ZERO
    tax_rate_percent: Decimal = Decimal("0")
    shipping_cost: Decimal = ZERO
    subtotal: Decimal = ZERO
    tax: Decimal = ZERO
    total: Decimal = ZERO
    status: str = OrderStatus.DRAFT
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @classmethod
    def from_dict(cls, data):
        return cls(
            id=str(data["id"]),
            order_number=str(data["order_number"]),
            customer_id=data.get("customer_id"),
            items=[LineItem.from_dict(item) for item in data.get("items") or []],
            discount_amount=parse_money(data.get("discount_amount")),
            tax_rate_percent=to_decimal(data.get("tax_rate_percent")),
            shipping_cost=parse_money(data.get("shipping_cost")),
            subtotal=parse_money(data.get("subtotal")),
            tax=parse_money(data.get("tax")),
            total=parse_money(data.get("total")),
            status=OrderStatus(data.get("status") or OrderStatus.DRAFT),
            created_at=_datetime_or_none(data.get("created_at")),
            updated_at=_datetime_or_none(data.get("updated_at")),
        )

    def to_dict(self):
        return to_json_compatible(
            {
                "id": self.id,
                "order_number": self.order_number,
                "customer_id": self.customer_id,
                "items": [item.to_dict() for item in self.items],
                "discount_amount": self.discount_amount,
                "tax_rate_percent": self.tax_rate_percent,
                "shipping_cost": self.shipping_cost,
                "subtotal": self.subtotal,
                "tax": self.tax,
                "total": self.total,
                "status": str(self.status),
                "created_at": self.created_at,
                "updated_at": self.updated_at,
            }
        )


@dataclass(frozen=True)
class Payment:
    id: str
    amount: Decimal
    method: str
    date: datetime
    reference: str = ""
    notes: str = ""
    idempotency_key: str | None = None

    @classmethod
    def from_dict(cls, data):
        return cls(
            id=str(data["id"]),
            amount=parse_money(data.get("amount")),
            method=PaymentMethod(data.get("method") or PaymentMethod.OTHER),
            date=_datetime_or_none(data["date"]),
            reference=data.get("reference") or "",
            notes=data.get("notes") or "",
            idempotency_key=data.get("idempotency_key"),
        )

    def to_dict(self):
        return to_json_compatible(
            {
                "id": self.id,
                "amount": self.amount,
                "method": str(self.method),
                "reference": self.reference,
                "notes": self.notes,
                "date": self.date,
                "idempotency_key": self.idempotency_key,
            }
        )


@dataclass
class Invoice:
    id: str
    invoice_number: str
    order_id: str | None
    customer_id: str | None
    items: list[LineItem] = field(default_factory=list)
    subtotal: Decimal = ZERO
    tax: Decimal = ZERO
    shipping: Decimal = ZERO
    discount: Decimal = ZERO
    total: Decimal = ZERO
    amount_paid: Decimal = ZERO
    status: str = InvoiceStatus.DRAFT
    due_date: date | None = None
    payment_history: list[Payment] = field(default_factory=list)
    is_recurring: bool = False
    recurring_frequency: str | None = None
    template: str = "standard"
    last_recurring_date: datetime | None = None
    source_invoice_id: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    sent_at: datetime | None = None
    last_payment_date: datetime | None = None
    last_payment_method: str | None = None

    @property
    def balance_due(self):
        with money_context():
            return max(self.total - self.amount_paid, ZERO)

    @classmethod
    def from_dict(cls, data):
        frequency = data.get("recurring_frequency")
        last_method = data.get("last_payment_method")
        return cls(
            id=str(data["id"]),
            invoice_number=str(data["invoice_number"]),
            order_id=str(data["order_id"]) if data.get("order_id") not in (None, "") else None,
            customer_id=data.get("customer_id"),
            items=[LineItem.from_dict(item) for item in data.get("items") or []],
            subtotal=parse_money(data.get("subtotal")),
            tax=parse_money(data.get("tax")),
            shipping=parse_money(data.get("shipping")),
            discount=parse_money(data.get("discount")),
            total=parse_money(data.get("total")),
            amount_paid=parse_money(data.get("amount_paid")),
            status=InvoiceStatus(data.get("status") or InvoiceStatus.DRAFT),
            due_date=_date_or_none(data.get("due_date")),
            payment_history=[Payment.from_dict(payment) for payment in data.get("payment_history") or []],
            is_recurring=bool(data.get("is_recurring", False)),
            recurring_frequency=RecurringFrequency(frequency) if frequency else None,
            template=data.get("template") or "standard",
            last_recurring_date=_datetime_or_none(data.get("last_recurring_date")),
            source_invoice_id=data.get("source_invoice_id"),
            created_at=_datetime_or_none(data.get("created_at")),
            updated_at=_datetime_or_none(data.get("updated_at")),
            sent_at=_datetime_or_none(data.get("sent_at")),
            last_payment_date=_datetime_or_none(data.get("last_payment_date")),
            last_payment_method=PaymentMethod(last_method) if last_method else None,
        )

    def to_dict(self):
        return to_json_compatible(
            {
                "id": self.id,
                "invoice_number": self.invoice_number,
                "order_id": self.order_id,
                "customer_id": self.customer_id,
                "items": [item.to_dict() for item in self.items],
                "subtotal": self.subtotal,
                "tax": self.tax,
                "shipping": self.shipping,
                "discount": self.discount,
                "total": self.total,
                "amount_paid": self.amount_paid,
                "balance_due": self.balance_due,
                "status": str(self.status),
                "due_date": self.due_date,
                "payment_history": [payment.to_dict() for payment in self.payment_history],
                "is_recurring": self.is_recurring,
                "recurring_frequency": str(self.recurring_frequency) if self.recurring_frequency else None,
                "template": self.template,
                "last_recurring_date": self.last_recurring_date,
                "source_invoice_id": self.source_invoice_id,
                "created_at": self.created_at,
                "updated_at": self.updated_at,
                "sent_at": self.sent_at,
                "last_payment_date": self.last_payment_date,
                "last_payment_method": str(self.last_payment_method) if self.last_payment_method else None,
            }
        )
