from django.core.management.base import BaseCommand
from django.db import transaction

from core.store import DatabaseStore
from sales.services import BillingService


class Command(BaseCommand):
    help = "Mark unpaid invoices whose due date has passed as overdue."

    def add_arguments(self, parser):
        parser.add_argument("--prefix", dest="prefix", help="Optional store key prefix (default: ERP_STORE_KEY_PREFIX).")

    def handle(self, *args, **options):
        with transaction.atomic():
            service = BillingService.from_store(DatabaseStore(prefix=options.get("prefix")), scan_overdue=False)
            updated = service.check_overdue()

        for invoice in updated:
            self.stdout.write(f"{invoice.invoice_number}: overdue (due {invoice.due_date.isoformat()})")
        self.stdout.write(self.style.SUCCESS(f"Overdue scan complete. Invoices updated: {len(updated)}."))
