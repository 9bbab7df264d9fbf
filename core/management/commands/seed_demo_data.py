from django.core.management.base import BaseCommand
from django.db import transaction

from core.store import DatabaseStore
from sales.services import BillingService
from sales.state import ErpState


class Command(BaseCommand):
    help = "Seed demo products, customers, an order and its invoice for local development."

    def add_arguments(self, parser):
        parser.add_argument("--reset", action="store_true", help="Drop existing orders and invoices first.")

    def handle(self, *args, **options):
        with transaction.atomic():
            store = DatabaseStore()
            state = ErpState.load(store)
            if options["reset"]:
                state.reseed()
            state.save()

            if state.orders:
                self.stdout.write(
                    self.style.WARNING("Orders already exist; skipping the demo order. Use --reset to start over.")
                )
                return
            if not state.products or not state.customers:
                self.stdout.write(
                    self.style.WARNING(
                        "No products or customers to build a demo order from. Use --reset to restore them."
                    )
                )
                return

            service = BillingService(state)
            product = state.products[0]
            customer = state.customers[0]
            order = service.create_order(
                {
                    "customer_id": customer["id"],
                    "items": [
                        {
                            "product_id": product["id"],
                            "quantity": 2,
                            "unit_price": product.get("unit_price", "0"),
                            "discount_percent": 10,
                        }
                    ],
                    "tax_rate_percent": 10,
                    "shipping_cost": 5,
                }
            )
            invoice = service.generate_invoice_from_order(order.id)

        self.stdout.write(self.style.SUCCESS(f"Order {order.order_number}: total {order.total}."))
        self.stdout.write(self.style.SUCCESS(f"Invoice {invoice.invoice_number}: due {invoice.due_date.isoformat()}."))
        self.stdout.write(self.style.SUCCESS("Demo data seeded."))
