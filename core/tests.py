import json
import logging
from datetime import datetime
from datetime import timezone as dt_timezone
from io import StringIO

from django.core.management import call_command
from django.test import SimpleTestCase, TestCase, override_settings
from rest_framework.test import APIClient

from common.exceptions import CorruptPersistedStateError, ExceedsBalanceError, custom_exception_handler
from common.logging import JsonFormatter
from core.identifiers import INVOICE_PREFIX, ORDER_PREFIX, SequenceGenerator
from core.models import AuditLog, StoredCollection
from core.store import DatabaseStore, MemoryStore
from sales.services import BillingService
from sales.state import CUSTOMERS, INVOICES, ORDERS, PRODUCTS, SEED_CUSTOMERS, SEED_PRODUCTS, SEQUENCES, ErpState

PAST = datetime(2020, 1, 15, 9, 30, tzinfo=dt_timezone.utc)


class SequenceGeneratorTests(SimpleTestCase):
    def test_numbers_are_zero_padded_and_per_prefix(self):
        sequences = SequenceGenerator()

        self.assertEqual(sequences.next_number(ORDER_PREFIX), "ORD-000001")
        self.assertEqual(sequences.next_number(ORDER_PREFIX), "ORD-000002")
        self.assertEqual(sequences.next_number(INVOICE_PREFIX), "INV-000001")

    def test_observe_only_moves_forward(self):
        sequences = SequenceGenerator({"ORD": 10})

        sequences.observe("ORD-000004")
        sequences.observe("INV-000042")
        sequences.observe("legacy-number")
        sequences.observe(None)

        self.assertEqual(sequences.to_dict(), {"ORD": 10, "INV": 42})

    def test_ids_are_unique(self):
        sequences = SequenceGenerator()

        self.assertEqual(len({sequences.new_id() for _ in range(50)}), 50)


class MemoryStoreTests(SimpleTestCase):
    def test_get_set_and_missing_keys(self):
        store = MemoryStore(prefix="test_")

        self.assertIsNone(store.get(ORDERS))
        store.set(ORDERS, [{"id": "a"}])

        self.assertEqual(store.get(ORDERS), [{"id": "a"}])
        self.assertIn("test_orders", store.data)

    def test_invalid_json_raises_corrupt_state(self):
        store = MemoryStore({ORDERS: "not-json"})

        with self.assertRaises(CorruptPersistedStateError) as ctx:
            store.get(ORDERS)
        self.assertEqual(ctx.exception.errors, {"key": ORDERS})


class DatabaseStoreTests(TestCase):
    def test_values_are_stored_under_prefixed_keys(self):
        store = DatabaseStore()

        store.set(INVOICES, [{"id": "x", "total": "1.00"}])
        store.set(INVOICES, [{"id": "y", "total": "2.00"}])

        row = StoredCollection.objects.get(key="erp_invoices")
        self.assertEqual(json.loads(row.payload), [{"id": "y", "total": "2.00"}])
        self.assertEqual(store.get(INVOICES), [{"id": "y", "total": "2.00"}])

    @override_settings(ERP_STORE_KEY_PREFIX="tenant_a_")
    def test_prefix_follows_settings(self):
        DatabaseStore().set(ORDERS, [])

        self.assertTrue(StoredCollection.objects.filter(key="tenant_a_orders").exists())
        self.assertIsNone(DatabaseStore(prefix="tenant_b_").get(ORDERS))

    def test_corrupt_row_raises_and_delete_clears(self):
        store = DatabaseStore()
        store.write_raw(ORDERS, "{oops")

        with self.assertRaises(CorruptPersistedStateError):
            store.get(ORDERS)

        store.delete(ORDERS)
        self.assertIsNone(store.get(ORDERS))

    def test_state_survives_a_reload(self):
        service = BillingService.from_store(DatabaseStore(), scan_overdue=False)
        order = service.create_order({"items": [{"unit_price": "12.50", "quantity": 4}], "tax_rate_percent": 8})
        invoice = service.generate_invoice_from_order(order.id)

        reloaded = ErpState.load(DatabaseStore())

        self.assertEqual(reloaded.find_order(order.id), order)
        self.assertEqual(reloaded.find_invoice(invoice.id), invoice)
        self.assertEqual(DatabaseStore().get(SEQUENCES), {"ORD": 1, "INV": 1})


class ErrorEnvelopeTests(SimpleTestCase):
    def test_billing_errors_are_rendered_with_their_status(self):
        response = custom_exception_handler(ExceedsBalanceError(errors={"amount": "5.00"}), {})

        self.assertEqual(response.status_code, 422)
        self.assertEqual(
            response.data,
            {
                "code": "exceeds_balance",
                "message": ExceedsBalanceError.default_message,
                "errors": {"amount": "5.00"},
                "status": 422,
            },
        )

    def test_unhandled_exceptions_become_generic_server_errors(self):
        with self.assertLogs("common.exceptions", level="ERROR"):
            response = custom_exception_handler(RuntimeError("boom"), {})

        self.assertEqual(response.status_code, 500)
        self.assertEqual(response.data["code"], "internal_server_error")
        self.assertNotIn("boom", response.data["message"])


class JsonFormatterTests(SimpleTestCase):
    def test_structured_fields_are_included(self):
        record = logging.LogRecord("sales.payments", logging.INFO, __file__, 1, "payment_recorded", None, None)
        record.invoice_id = "inv-1"
        record.amount = "10.00"
        record.status = "partial"

        payload = json.loads(JsonFormatter().format(record))

        self.assertEqual(payload["message"], "payment_recorded")
        self.assertEqual(payload["level"], "INFO")
        self.assertEqual(payload["invoice_id"], "inv-1")
        self.assertEqual(payload["amount"], "10.00")
        self.assertEqual(payload["status"], "partial")
        self.assertNotIn("order_id", payload)


class RequestLogMiddlewareTests(TestCase):
    def setUp(self):
        self.client = APIClient()

    def test_malformed_request_id_is_replaced(self):
        response = self.client.get("/api/v1/orders/", HTTP_X_REQUEST_ID="bad id with spaces")

        self.assertNotEqual(response["X-Request-ID"], "bad id with spaces")
        self.assertEqual(len(response["X-Request-ID"]), 36)

    def test_error_responses_are_logged_with_their_code(self):
        with self.assertLogs("api.request", level="WARNING") as logs:
            self.client.get("/api/v1/invoices/missing/")

        record = logs.records[0]
        self.assertEqual(record.status_code, 404)
        self.assertEqual(record.error_code, "not_found")


class AuditLogTests(TestCase):
    def setUp(self):
        self.client = APIClient()

    def test_mutations_write_audit_entries(self):
        response = self.client.post(
            "/api/v1/orders/",
            {
                "customer_id": SEED_CUSTOMERS[0]["id"],
                "items": [{"product_id": SEED_PRODUCTS[0]["id"], "unit_price": "10", "quantity": 1}],
            },
            format="json",
            HTTP_X_REQUEST_ID="audit-req-1",
        )
        order_id = response.json()["id"]
        invoice = self.client.post(f"/api/v1/orders/{order_id}/invoice/", format="json").json()
        self.client.post(f"/api/v1/invoices/{invoice['id']}/payments/", {"amount": "4"}, format="json")

        created = AuditLog.objects.get(action="order.create")
        self.assertEqual(created.entity, "order")
        self.assertEqual(created.entity_id, order_id)
        self.assertEqual(created.request_id, "audit-req-1")
        self.assertEqual(created.after_snapshot["total"], "10.00")

        payment = AuditLog.objects.get(action="invoice.payment")
        self.assertEqual(payment.entity_id, invoice["id"])
        self.assertEqual(payment.before_snapshot, {"status": "draft", "amount_paid": "0.00"})
        self.assertEqual(payment.after_snapshot["status"], "partial")

    def test_failed_mutations_are_not_audited(self):
        self.client.post("/api/v1/orders/missing/invoice/", format="json")
        self.client.delete("/api/v1/invoices/missing/")

        self.assertFalse(AuditLog.objects.exists())


class ManagementCommandTests(TestCase):
    def test_check_overdue_marks_past_due_invoices(self):
        service = BillingService.from_store(DatabaseStore(), clock=lambda: PAST, scan_overdue=False)
        order = service.create_order({"items": [{"unit_price": "99", "quantity": 1}]})
        invoice = service.generate_invoice_from_order(order.id)
        service.send_invoice(invoice.id)

        out = StringIO()
        call_command("check_overdue", stdout=out)

        self.assertIn(f"{invoice.invoice_number}: overdue", out.getvalue())
        self.assertIn("Invoices updated: 1", out.getvalue())
        reloaded = BillingService.from_store(DatabaseStore(), scan_overdue=False)
        self.assertEqual(reloaded.get_invoice(invoice.id).status, "overdue")

        out = StringIO()
        call_command("check_overdue", stdout=out)
        self.assertIn("Invoices updated: 0", out.getvalue())

    def test_seed_demo_data_creates_order_and_invoice_once(self):
        out = StringIO()
        call_command("seed_demo_data", stdout=out)
        call_command("seed_demo_data", stdout=out)

        state = ErpState.load(DatabaseStore())
        self.assertEqual(len(state.orders), 1)
        self.assertEqual(len(state.invoices), 1)
        self.assertEqual(state.orders[0].total, state.invoices[0].total)
        self.assertIn("Demo data seeded.", out.getvalue())
        self.assertIn("skipping the demo order", out.getvalue())

    def test_seed_demo_data_with_empty_reference_data(self):
        store = DatabaseStore()
        store.set(PRODUCTS, [])
        store.set(CUSTOMERS, [])

        out = StringIO()
        call_command("seed_demo_data", stdout=out)

        self.assertIn("No products or customers", out.getvalue())
        self.assertEqual(ErpState.load(store).orders, [])

        call_command("seed_demo_data", "--reset", stdout=StringIO())
        self.assertEqual(len(ErpState.load(store).orders), 1)

    def test_seed_demo_data_reset_drops_existing_records(self):
        call_command("seed_demo_data", stdout=StringIO())
        call_command("seed_demo_data", "--reset", stdout=StringIO())

        state = ErpState.load(DatabaseStore())
        self.assertEqual(len(state.orders), 1)
        self.assertEqual(state.orders[0].order_number, "ORD-000001")
        self.assertEqual(state.invoices[0].invoice_number, "INV-000001")
