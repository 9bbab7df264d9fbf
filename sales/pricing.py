from dataclasses import dataclass
from decimal import Decimal

from common.exceptions import NegativeTotalError
from common.utils import money_context, quantize_money, to_decimal, to_int, to_money
from sales.domain import LineItem, ZERO

HUNDRED = Decimal("100")


@dataclass(frozen=True)
class OrderTotals:
    subtotal: Decimal
    tax: Decimal
    shipping: Decimal
    discount: Decimal
    total: Decimal
    tax_rate_percent: Decimal = ZERO


def _non_negative(amount):
    return amount if amount > 0 else ZERO


def _as_line_item(item):
    if isinstance(item, LineItem):
        return item
    return LineItem.from_dict(item or {})


def line_total(item):
    """unit_price x quantity less the line discount, never below zero."""
    item = _as_line_item(item)
    quantity = Decimal(to_int(item.quantity))
    unit_price = to_decimal(item.unit_price)
    discount_percent = to_decimal(item.discount_percent)

    with money_context():
        amount = unit_price * quantity * (1 - discount_percent / HUNDRED)
    return _non_negative(quantize_money(amount))


def order_totals(items, tax_rate_percent=0, shipping_cost=0, discount_amount=0):
    tax_rate = to_decimal(tax_rate_percent)
    tax_rate = tax_rate if tax_rate > 0 else Decimal("0")
    shipping = _non_negative(to_money(shipping_cost))
    discount = _non_negative(to_money(discount_amount))

    with money_context():
        subtotal = sum((line_total(item) for item in items or []), ZERO)
        tax = _non_negative(quantize_money(subtotal * tax_rate / HUNDRED))
        total = subtotal + tax + shipping - discount

    if total < 0:
        raise NegativeTotalError(
            "Total cannot be negative.",
            errors={"total": str(total), "discount_amount": str(discount)},
        )

    return OrderTotals(
        subtotal=subtotal,
        tax=tax,
        shipping=shipping,
        discount=discount,
        total=total,
        tax_rate_percent=tax_rate,
    )
