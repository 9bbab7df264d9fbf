import logging

from django.utils import timezone

from common.exceptions import NotFoundError
from core.identifiers import ORDER_PREFIX
from sales.domain import LineItem, Order, OrderStatus
from sales.pricing import order_totals

logger = logging.getLogger(__name__)

EDITABLE_ORDER_FIELDS = ("customer_id", "items", "discount_amount", "tax_rate_percent", "shipping_cost", "status")


class OrderStore:
    """CRUD over `state.orders`; every stored order is priced by the calculator."""

    def __init__(self, state, clock=timezone.now):
        self.state = state
        self.clock = clock

    def list(self, search=None):
        orders = list(self.state.orders)
        if search:
            needle = search.strip().lower()
            orders = [
                order for order in orders if needle in self.state.search_text(order.order_number, order.customer_id)
            ]
        return orders

    def get(self, order_id):
        order = self.state.find_order(order_id)
        if order is None:
            raise NotFoundError("Order was not found.", errors={"order_id": str(order_id)})
        return order

    def create(self, data):
        items = [LineItem.from_dict(item) for item in data.get("items") or []]
        totals = order_totals(
            items, data.get("tax_rate_percent"), data.get("shipping_cost"), data.get("discount_amount")
        )

        order = Order(
            id=self.state.sequences.new_id(),
            order_number=self.state.sequences.next_number(ORDER_PREFIX),
            customer_id=data.get("customer_id"),
            items=items,
            discount_amount=totals.discount,
            tax_rate_percent=totals.tax_rate_percent,
            shipping_cost=totals.shipping,
            subtotal=totals.subtotal,
            tax=totals.tax,
            total=totals.total,
            status=OrderStatus(data.get("status") or OrderStatus.DRAFT),
            created_at=self.clock(),
        )
        self.state.orders.append(order)
        logger.info("order_created", extra={"order_id": order.id, "amount": order.total})
        return order

    def update(self, order_id, changes):
        order = self.get(order_id)
        changes = {key: value for key, value in changes.items() if key in EDITABLE_ORDER_FIELDS}

        items = order.items
        if "items" in changes:
            items = [LineItem.from_dict(item) for item in changes["items"] or []]
        tax_rate_percent = changes.get("tax_rate_percent", order.tax_rate_percent)
        shipping_cost = changes.get("shipping_cost", order.shipping_cost)
        discount_amount = changes.get("discount_amount", order.discount_amount)

        # Price before touching the order so a rejected total leaves it unchanged.
        totals = order_totals(items, tax_rate_percent, shipping_cost, discount_amount)

        if "customer_id" in changes:
            order.customer_id = changes["customer_id"]
        if "status" in changes:
            order.status = OrderStatus(changes["status"])
        order.items = items
        order.tax_rate_percent = totals.tax_rate_percent
        order.shipping_cost = totals.shipping
        order.discount_amount = totals.discount
        order.subtotal = totals.subtotal
        order.tax = totals.tax
        order.total = totals.total
        order.updated_at = self.clock()

        logger.info("order_updated", extra={"order_id": order.id, "amount": order.total})
        return order

    def delete(self, order_id):
        order = self.get(order_id)
        # Invoices generated from the order are left in place.
        self.state.orders = [existing for existing in self.state.orders if existing.id != order.id]
        logger.info("order_deleted", extra={"order_id": order.id})
        return order
