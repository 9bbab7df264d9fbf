import json
from datetime import datetime, timedelta
from datetime import timezone as dt_timezone
from decimal import Decimal

from django.test import SimpleTestCase, TestCase, override_settings
from rest_framework.test import APIClient

from common.exceptions import (
    ExceedsBalanceError,
    InvalidAmountError,
    InvalidTransitionError,
    NegativeTotalError,
    NotFoundError,
)
from common.utils import money_context
from core.models import AuditLog
from core.store import DatabaseStore, MemoryStore
from sales.domain import Invoice, InvoiceStatus, LineItem, Order, OrderStatus, RecurringFrequency
from sales.overdue import check_overdue
from sales.pricing import line_total, order_totals
from sales.recurring import RecurrencePolicy
from sales.reports import summarize_invoices
from sales.services import BillingService
from sales.state import INVOICES, ORDERS, SEED_CUSTOMERS, SEED_PRODUCTS, SEQUENCES, ErpState

NOW = datetime(2025, 3, 1, 12, 0, tzinfo=dt_timezone.utc)

EXAMPLE_ORDER = {
    "customer_id": SEED_CUSTOMERS[0]["id"],
    "items": [{"product_id": SEED_PRODUCTS[0]["id"], "unit_price": 100, "quantity": 2, "discount_percent": 10}],
    "tax_rate_percent": 10,
    "shipping_cost": 5,
    "discount_amount": 0,
}


class FixedClock:
    def __init__(self, now=NOW):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)


def build_service(store=None, clock=None):
    store = store if store is not None else MemoryStore()
    clock = clock or FixedClock()
    return BillingService.from_store(store, clock=clock, scan_overdue=False), store, clock


class PricingCalculatorTests(SimpleTestCase):
    def test_documented_example(self):
        totals = order_totals(EXAMPLE_ORDER["items"], 10, 5, 0)

        self.assertEqual(totals.subtotal, Decimal("180.00"))
        self.assertEqual(totals.tax, Decimal("18.00"))
        self.assertEqual(totals.total, Decimal("203.00"))

    def test_total_is_sum_of_components(self):
        cases = [
            ([{"unit_price": "19.99", "quantity": 3, "discount_percent": "12.5"}], "7.25", "4.10", "2.00"),
            ([{"unit_price": 0.1, "quantity": 3}, {"unit_price": 0.2, "quantity": 7}], 0, 0, 0),
            ([{"unit_price": "1234.56", "quantity": 11, "discount_percent": 33}], 21, "99.99", "500"),
            ([], 10, "12.00", "0"),
        ]
        for items, tax_rate, shipping, discount in cases:
            with self.subTest(items=items):
                totals = order_totals(items, tax_rate, shipping, discount)
                self.assertEqual(totals.subtotal, sum((line_total(item) for item in items), Decimal("0.00")))
                self.assertEqual(totals.total, totals.subtotal + totals.tax + totals.shipping - totals.discount)
                self.assertGreaterEqual(totals.total, 0)

    def test_invalid_inputs_are_treated_as_zero(self):
        self.assertEqual(line_total({"unit_price": "abc", "quantity": 2}), Decimal("0.00"))
        self.assertEqual(line_total({"unit_price": "10", "quantity": None}), Decimal("0.00"))

        totals = order_totals([{"unit_price": "10", "quantity": "2"}], "nan", None, "")
        self.assertEqual(totals.tax, Decimal("0.00"))
        self.assertEqual(totals.total, Decimal("20.00"))

    def test_fractional_quantity_is_truncated(self):
        self.assertEqual(line_total({"unit_price": "10.00", "quantity": "2.7"}), Decimal("20.00"))

    def test_line_total_is_clamped_at_zero(self):
        self.assertEqual(line_total({"unit_price": 50, "quantity": 1, "discount_percent": 150}), Decimal("0.00"))

    def test_negative_total_is_rejected(self):
        with self.assertRaises(NegativeTotalError):
            order_totals([{"unit_price": 10, "quantity": 1}], 0, 0, 20)

    def test_huge_inputs_are_capped_instead_of_failing(self):
        item = {"unit_price": 1e30, "quantity": 1e30, "discount_percent": -1e30}

        cap = Decimal("1e15")
        self.assertEqual(line_total(item), cap * cap * (1 + cap / 100))

        totals = order_totals([item, item], "1e30", "1e300", 0)
        self.assertEqual(totals.shipping, cap)
        self.assertEqual(totals.tax_rate_percent, cap)
        with money_context():
            self.assertEqual(totals.subtotal, line_total(item) * 2)
            self.assertEqual(totals.total, totals.subtotal + totals.tax + totals.shipping - totals.discount)

    def test_negative_tax_rate_is_clamped(self):
        totals = order_totals(EXAMPLE_ORDER["items"], -10, 0, 0)

        self.assertEqual(totals.tax_rate_percent, 0)
        self.assertEqual(totals.tax, Decimal("0.00"))


class OrderStoreTests(SimpleTestCase):
    def setUp(self):
        self.service, self.store, self.clock = build_service()

    def test_create_assigns_identity_status_and_totals(self):
        order = self.service.create_order(EXAMPLE_ORDER)

        self.assertTrue(order.id)
        self.assertEqual(order.order_number, "ORD-000001")
        self.assertEqual(order.status, OrderStatus.DRAFT)
        self.assertEqual(order.created_at, NOW)
        self.assertIsNone(order.updated_at)
        self.assertEqual(order.total, Decimal("203.00"))

    def test_order_numbers_are_unique(self):
        first = self.service.create_order(EXAMPLE_ORDER)
        second = self.service.create_order(EXAMPLE_ORDER)

        self.assertNotEqual(first.id, second.id)
        self.assertEqual(second.order_number, "ORD-000002")

    def test_update_merges_and_reprices(self):
        order = self.service.create_order(EXAMPLE_ORDER)
        self.clock.advance(hours=1)

        updated = self.service.update_order(order.id, {"shipping_cost": "15", "status": "confirmed"})

        self.assertEqual(updated.customer_id, EXAMPLE_ORDER["customer_id"])
        self.assertEqual(updated.shipping_cost, Decimal("15.00"))
        self.assertEqual(updated.total, Decimal("213.00"))
        self.assertEqual(updated.status, OrderStatus.CONFIRMED)
        self.assertEqual(updated.updated_at, NOW + timedelta(hours=1))

    def test_rejected_update_leaves_order_unchanged(self):
        order = self.service.create_order(EXAMPLE_ORDER)

        with self.assertRaises(NegativeTotalError):
            self.service.update_order(order.id, {"discount_amount": "1000"})

        self.assertEqual(self.service.get_order(order.id).total, Decimal("203.00"))
        self.assertEqual(self.service.get_order(order.id).discount_amount, Decimal("0.00"))

    def test_update_unknown_order_raises_not_found(self):
        with self.assertRaises(NotFoundError):
            self.service.update_order("missing", {"shipping_cost": 1})

    def test_delete_keeps_invoices_for_the_order(self):
        order = self.service.create_order(EXAMPLE_ORDER)
        invoice = self.service.generate_invoice_from_order(order.id)

        self.service.delete_order(order.id)

        self.assertEqual(self.service.list_orders(), [])
        self.assertEqual(self.service.get_invoice(invoice.id).order_id, order.id)

    def test_stored_tax_rate_matches_the_tax_charged(self):
        order = self.service.create_order(dict(EXAMPLE_ORDER, tax_rate_percent=-5))
        self.assertEqual(order.tax_rate_percent, 0)
        self.assertEqual(order.tax, Decimal("0.00"))

        updated = self.service.update_order(order.id, {"tax_rate_percent": "-12"})
        self.assertEqual(updated.tax_rate_percent, 0)

    def test_list_searches_order_number_and_customer_name(self):
        first = self.service.create_order(EXAMPLE_ORDER)
        second = self.service.create_order(EXAMPLE_ORDER)
        walk_in = self.service.create_order(dict(EXAMPLE_ORDER, customer_id="unknown"))

        self.assertEqual(self.service.list_orders(search="ord-000002"), [second])
        self.assertEqual(self.service.list_orders(search=" ACME "), [first, second])
        self.assertEqual(self.service.list_orders(search="ORD-00000"), [first, second, walk_in])
        self.assertEqual(self.service.list_orders(search="nobody"), [])

    def test_huge_order_survives_a_reload(self):
        item = {"product_id": "p", "unit_price": "1e30", "quantity": "1e30"}
        order = self.service.create_order({"items": [item, item, item], "tax_rate_percent": 50})

        reloaded = ErpState.load(self.store)

        self.assertEqual(reloaded.find_order(order.id), order)


class InvoiceLedgerTests(SimpleTestCase):
    def setUp(self):
        self.service, self.store, self.clock = build_service()
        self.order = self.service.create_order(EXAMPLE_ORDER)

    def test_generate_copies_order_snapshot(self):
        invoice = self.service.generate_invoice_from_order(self.order.id)

        self.assertEqual(invoice.order_id, self.order.id)
        self.assertEqual(invoice.invoice_number, "INV-000001")
        self.assertEqual(invoice.customer_id, self.order.customer_id)
        self.assertEqual(invoice.items, self.order.items)
        self.assertEqual(invoice.subtotal, Decimal("180.00"))
        self.assertEqual(invoice.tax, Decimal("18.00"))
        self.assertEqual(invoice.shipping, Decimal("5.00"))
        self.assertEqual(invoice.discount, Decimal("0.00"))
        self.assertEqual(invoice.total, Decimal("203.00"))
        self.assertEqual(invoice.amount_paid, Decimal("0.00"))
        self.assertEqual(invoice.status, InvoiceStatus.DRAFT)
        self.assertEqual(invoice.due_date, (NOW + timedelta(days=30)).date())
        self.assertEqual(invoice.payment_history, [])
        self.assertFalse(invoice.is_recurring)
        self.assertEqual(invoice.template, "standard")

    def test_generate_is_idempotent(self):
        first = self.service.generate_invoice_from_order(self.order.id)
        second = self.service.generate_invoice_from_order(self.order.id)

        self.assertIs(first, second)
        self.assertEqual(len(self.service.list_invoices()), 1)

    def test_later_order_edits_do_not_change_the_invoice(self):
        invoice = self.service.generate_invoice_from_order(self.order.id)
        self.service.update_order(self.order.id, {"shipping_cost": 50})

        self.assertEqual(self.service.get_invoice(invoice.id).total, Decimal("203.00"))

    def test_generate_for_unknown_order_raises_not_found(self):
        with self.assertRaises(NotFoundError):
            self.service.generate_invoice_from_order("missing")

    def test_send_moves_draft_to_sent_once(self):
        invoice = self.service.generate_invoice_from_order(self.order.id)

        self.service.send_invoice(invoice.id)

        self.assertEqual(invoice.status, InvoiceStatus.SENT)
        self.assertEqual(invoice.sent_at, NOW)
        with self.assertRaises(InvalidTransitionError):
            self.service.send_invoice(invoice.id)

    def test_direct_status_overwrite_is_rejected(self):
        invoice = self.service.generate_invoice_from_order(self.order.id)

        with self.assertRaises(InvalidTransitionError):
            self.service.update_invoice(invoice.id, {"status": "paid"})
        self.assertEqual(invoice.status, InvoiceStatus.DRAFT)

    def test_update_edits_metadata(self):
        invoice = self.service.generate_invoice_from_order(self.order.id)
        new_due = NOW.date() + timedelta(days=7)

        self.service.update_invoice(invoice.id, {"due_date": new_due, "template": "compact", "status": "sent"})

        self.assertEqual(invoice.due_date, new_due)
        self.assertEqual(invoice.template, "compact")
        self.assertEqual(invoice.status, InvoiceStatus.SENT)

    def test_paid_invoice_can_be_deleted(self):
        invoice = self.service.generate_invoice_from_order(self.order.id)
        self.service.record_payment(invoice.id, "203.00")

        self.service.delete_invoice(invoice.id)

        self.assertEqual(self.service.list_invoices(), [])

    def test_zero_total_invoice_starts_paid(self):
        order = self.service.create_order({"items": []})

        invoice = self.service.generate_invoice_from_order(order.id)

        self.assertEqual(invoice.total, Decimal("0.00"))
        self.assertEqual(invoice.status, InvoiceStatus.PAID)

    def test_list_filters_by_status_and_search(self):
        first = self.service.generate_invoice_from_order(self.order.id)
        other = self.service.generate_invoice_from_order(self.service.create_order(EXAMPLE_ORDER).id)
        self.service.send_invoice(other.id)

        self.assertEqual(self.service.list_invoices(status="draft"), [first])
        self.assertEqual(self.service.list_invoices(search="inv-000002"), [other])
        self.assertEqual(len(self.service.list_invoices(search="acme")), 2)


class PaymentRecorderTests(SimpleTestCase):
    def setUp(self):
        self.service, self.store, self.clock = build_service()
        order = self.service.create_order(EXAMPLE_ORDER)
        self.invoice = self.service.generate_invoice_from_order(order.id)
        self.service.send_invoice(self.invoice.id)

    def test_partial_then_full_payment_then_rejection(self):
        self.service.record_payment(self.invoice.id, 100)
        self.assertEqual(self.invoice.amount_paid, Decimal("100.00"))
        self.assertEqual(self.invoice.status, InvoiceStatus.PARTIAL)

        self.service.record_payment(self.invoice.id, 103)
        self.assertEqual(self.invoice.amount_paid, Decimal("203.00"))
        self.assertEqual(self.invoice.status, InvoiceStatus.PAID)

        with self.assertRaises(ExceedsBalanceError):
            self.service.record_payment(self.invoice.id, 1)
        self.assertEqual(self.invoice.amount_paid, Decimal("203.00"))
        self.assertEqual(len(self.invoice.payment_history), 2)

    def test_overpayment_is_rejected(self):
        with self.assertRaises(ExceedsBalanceError):
            self.service.record_payment(self.invoice.id, "203.01")
        self.assertEqual(self.invoice.amount_paid, Decimal("0.00"))
        self.assertEqual(self.invoice.status, InvoiceStatus.SENT)

    def test_non_positive_amounts_are_rejected(self):
        for amount in (0, -5, "abc", None, "0.001"):
            with self.subTest(amount=amount):
                with self.assertRaises(InvalidAmountError):
                    self.service.record_payment(self.invoice.id, amount)

    def test_unknown_invoice_raises_not_found(self):
        with self.assertRaises(NotFoundError):
            self.service.record_payment("missing", 10)

    def test_huge_amounts_exceed_the_balance(self):
        for amount in ("1e30", 1e30, "9" * 60, "1e999999"):
            with self.subTest(amount=amount):
                with self.assertRaises(ExceedsBalanceError):
                    self.service.record_payment(self.invoice.id, amount)
        self.assertEqual(self.invoice.amount_paid, Decimal("0.00"))

    def test_payment_record_is_appended_and_stamped(self):
        self.clock.advance(days=2)

        self.service.record_payment(self.invoice.id, "50.5", method="bank_transfer", reference="TRX-9", notes="first")

        payment = self.invoice.payment_history[0]
        self.assertEqual(payment.amount, Decimal("50.50"))
        self.assertEqual(payment.method, "bank_transfer")
        self.assertEqual(payment.reference, "TRX-9")
        self.assertEqual(payment.notes, "first")
        self.assertEqual(payment.date, NOW + timedelta(days=2))
        self.assertEqual(self.invoice.last_payment_date, NOW + timedelta(days=2))
        self.assertEqual(self.invoice.last_payment_method, "bank_transfer")

    def test_repeated_idempotency_key_is_applied_once(self):
        self.service.record_payment(self.invoice.id, 50, idempotency_key="pay-1")
        self.service.record_payment(self.invoice.id, 50, idempotency_key="pay-1")

        self.assertEqual(self.invoice.amount_paid, Decimal("50.00"))
        self.assertEqual(len(self.invoice.payment_history), 1)

    def test_paid_whenever_amount_paid_reaches_total(self):
        for amount in ("0.01", "99.99", "2.00", "101.00"):
            self.service.record_payment(self.invoice.id, amount)
            self.assertLessEqual(self.invoice.amount_paid, self.invoice.total)
        self.assertEqual(self.invoice.amount_paid, self.invoice.total)
        self.assertEqual(self.invoice.status, InvoiceStatus.PAID)

    def test_draft_invoice_accepts_full_payment(self):
        order = self.service.create_order(EXAMPLE_ORDER)
        draft = self.service.generate_invoice_from_order(order.id)

        self.service.record_payment(draft.id, "203.00")

        self.assertEqual(draft.status, InvoiceStatus.PAID)


class OverdueScannerTests(SimpleTestCase):
    def setUp(self):
        self.service, self.store, self.clock = build_service()
        order = self.service.create_order(EXAMPLE_ORDER)
        self.invoice = self.service.generate_invoice_from_order(order.id)
        self.service.send_invoice(self.invoice.id)
        self.service.update_invoice(self.invoice.id, {"due_date": NOW.date() - timedelta(days=1)})

    def test_past_due_invoice_becomes_overdue_once(self):
        updated = self.service.check_overdue()

        self.assertEqual(updated, [self.invoice])
        self.assertEqual(self.invoice.status, InvoiceStatus.OVERDUE)
        self.assertEqual(self.service.check_overdue(), [])
        self.assertEqual(self.invoice.status, InvoiceStatus.OVERDUE)

    def test_scan_is_pure(self):
        transitions = check_overdue(self.service.list_invoices(), NOW)

        self.assertEqual(len(transitions), 1)
        self.assertEqual(transitions[0].invoice_id, self.invoice.id)
        self.assertEqual(transitions[0].previous_status, "sent")
        self.assertEqual(self.invoice.status, InvoiceStatus.SENT)

    def test_paid_and_not_yet_due_invoices_are_left_alone(self):
        self.service.record_payment(self.invoice.id, "203.00")
        order = self.service.create_order(EXAMPLE_ORDER)
        due_tomorrow = self.service.generate_invoice_from_order(order.id)
        self.service.update_invoice(due_tomorrow.id, {"due_date": NOW.date() + timedelta(days=1)})

        self.assertEqual(self.service.check_overdue(), [])
        self.assertEqual(self.invoice.status, InvoiceStatus.PAID)
        self.assertEqual(due_tomorrow.status, InvoiceStatus.DRAFT)

    def test_invoice_is_overdue_once_its_due_date_begins(self):
        order = self.service.create_order(EXAMPLE_ORDER)
        due_today = self.service.generate_invoice_from_order(order.id)
        self.service.update_invoice(due_today.id, {"due_date": NOW.date()})

        midnight = datetime.combine(NOW.date(), datetime.min.time(), tzinfo=dt_timezone.utc)
        self.assertEqual(check_overdue([due_today], midnight), [])

        transitions = check_overdue([due_today], NOW)
        self.assertEqual([item.invoice_id for item in transitions], [due_today.id])

    def test_overdue_invoice_can_still_be_settled(self):
        self.service.check_overdue()

        self.service.record_payment(self.invoice.id, 3)
        self.assertEqual(self.invoice.status, InvoiceStatus.PARTIAL)

        self.service.record_payment(self.invoice.id, 200)
        self.assertEqual(self.invoice.status, InvoiceStatus.PAID)

    def test_invoices_turning_overdue_later_need_another_scan(self):
        order = self.service.create_order(EXAMPLE_ORDER)
        later = self.service.generate_invoice_from_order(order.id)
        self.service.check_overdue()

        self.clock.advance(days=31)
        self.assertEqual(later.status, InvoiceStatus.DRAFT)

        self.service.check_overdue()
        self.assertEqual(later.status, InvoiceStatus.OVERDUE)


class RecurringTemplateTests(SimpleTestCase):
    def setUp(self):
        self.service, self.store, self.clock = build_service()
        self.order = self.service.create_order(EXAMPLE_ORDER)
        self.source = self.service.generate_invoice_from_order(self.order.id)
        self.service.send_invoice(self.source.id)
        self.service.record_payment(self.source.id, 100)

    def test_template_copies_pricing_and_resets_payment_state(self):
        template = self.service.create_recurring_template(self.source.id, "Monthly retainer", "monthly")

        self.assertNotEqual(template.id, self.source.id)
        self.assertEqual(template.invoice_number, "INV-000002")
        self.assertTrue(template.is_recurring)
        self.assertEqual(template.recurring_frequency, RecurringFrequency.MONTHLY)
        self.assertEqual(template.template, "Monthly retainer")
        self.assertEqual(template.status, InvoiceStatus.DRAFT)
        self.assertEqual(template.amount_paid, Decimal("0.00"))
        self.assertEqual(template.payment_history, [])
        self.assertEqual(template.total, self.source.total)
        self.assertEqual(template.items, self.source.items)
        self.assertEqual(template.customer_id, self.source.customer_id)
        self.assertIsNone(template.order_id)
        self.assertEqual(template.source_invoice_id, self.source.id)
        self.assertEqual(template.last_recurring_date, NOW)

    def test_template_does_not_claim_the_source_order(self):
        self.service.create_recurring_template(self.source.id, "Quarterly", "quarterly")

        self.assertIs(self.service.generate_invoice_from_order(self.order.id), self.source)

    def test_unknown_source_raises_not_found(self):
        with self.assertRaises(NotFoundError):
            self.service.create_recurring_template("missing", "Weekly", "weekly")

    def test_firing_is_delegated_to_a_policy(self):
        template = self.service.create_recurring_template(self.source.id, "Weekly", "weekly")

        class AlwaysDue(RecurrencePolicy):
            def is_due(self, template, now):
                return True

        self.assertEqual(self.service.recurring.due_templates(NOW, AlwaysDue()), [template])
        with self.assertRaises(NotImplementedError):
            self.service.recurring.due_templates(NOW, RecurrencePolicy())


class ErpStateTests(SimpleTestCase):
    def test_missing_keys_fall_back_to_seed_defaults(self):
        state = ErpState.load(MemoryStore())

        self.assertEqual(state.products, SEED_PRODUCTS)
        self.assertEqual(state.customers, SEED_CUSTOMERS)
        self.assertEqual(state.orders, [])
        self.assertEqual(state.invoices, [])

    def test_round_trip_preserves_orders_and_invoices(self):
        service, store, clock = build_service()
        order = service.create_order(EXAMPLE_ORDER)
        invoice = service.generate_invoice_from_order(order.id)
        service.send_invoice(invoice.id)
        service.record_payment(invoice.id, "20.25", method="check", reference="CHK-1", idempotency_key="k-1")
        service.create_recurring_template(invoice.id, "Annual", "annual")
        service.update_order(order.id, {"status": "invoiced"})

        reloaded = ErpState.load(store)

        self.assertEqual(reloaded.orders, service.state.orders)
        self.assertEqual(reloaded.invoices, service.state.invoices)
        self.assertEqual(reloaded.dump(INVOICES), service.state.dump(INVOICES))
        self.assertEqual(reloaded.dump(ORDERS), service.state.dump(ORDERS))

    def test_round_trip_of_single_records(self):
        service, store, clock = build_service()
        order = service.create_order(EXAMPLE_ORDER)
        invoice = service.generate_invoice_from_order(order.id)

        self.assertEqual(Order.from_dict(json.loads(json.dumps(order.to_dict()))), order)
        self.assertEqual(Invoice.from_dict(json.loads(json.dumps(invoice.to_dict()))), invoice)
        self.assertEqual(LineItem.from_dict(order.items[0].to_dict()), order.items[0])

    def test_corrupt_json_is_replaced_by_seed_defaults(self):
        store = MemoryStore({"products": "[{not json", "orders": "{{{"})

        with self.assertLogs("sales.state", level="WARNING"):
            state = ErpState.load(store)

        self.assertEqual(state.products, SEED_PRODUCTS)
        self.assertEqual(state.orders, [])

    def test_malformed_records_are_replaced_by_seed_defaults(self):
        store = MemoryStore(
            {
                "invoices": json.dumps([{"invoice_number": "INV-000001"}]),
                "customers": json.dumps({"not": "a list"}),
            }
        )

        with self.assertLogs("sales.state", level="WARNING"):
            state = ErpState.load(store)

        self.assertEqual(state.invoices, [])
        self.assertEqual(state.customers, SEED_CUSTOMERS)

    def test_lost_sequences_continue_after_existing_numbers(self):
        service, store, clock = build_service()
        service.create_order(EXAMPLE_ORDER)
        service.create_order(EXAMPLE_ORDER)
        store.delete(SEQUENCES)

        reloaded, _, _ = build_service(store=store, clock=clock)
        order = reloaded.create_order(EXAMPLE_ORDER)

        self.assertEqual(order.order_number, "ORD-000003")

    def test_each_operation_is_persisted(self):
        service, store, clock = build_service()
        order = service.create_order(EXAMPLE_ORDER)
        self.assertEqual(len(store.get(ORDERS)), 1)

        invoice = service.generate_invoice_from_order(order.id)
        service.record_payment(invoice.id, 10)

        persisted = store.get(INVOICES)
        self.assertEqual(persisted[0]["amount_paid"], "10.00")
        self.assertEqual(persisted[0]["status"], "partial")

    @override_settings(INVOICE_SCAN_OVERDUE_ON_LOAD=True)
    def test_scan_runs_after_load_when_enabled(self):
        service, store, clock = build_service()
        order = service.create_order(EXAMPLE_ORDER)
        invoice = service.generate_invoice_from_order(order.id)
        clock.advance(days=45)

        reloaded = BillingService.from_store(store, clock=clock)

        self.assertEqual(reloaded.get_invoice(invoice.id).status, InvoiceStatus.OVERDUE)


class InvoiceSummaryTests(SimpleTestCase):
    def test_summary_counts_statuses_and_amounts(self):
        service, store, clock = build_service()
        first = service.generate_invoice_from_order(service.create_order(EXAMPLE_ORDER).id)
        second = service.generate_invoice_from_order(service.create_order(EXAMPLE_ORDER).id)
        service.record_payment(first.id, 203)
        service.record_payment(second.id, 3)

        summary = summarize_invoices(service.list_invoices())

        self.assertEqual(summary["total"], 2)
        self.assertEqual(summary["by_status"]["paid"], 1)
        self.assertEqual(summary["by_status"]["partial"], 1)
        self.assertEqual(summary["by_status"]["overdue"], 0)
        self.assertEqual(summary["total_amount"], Decimal("406.00"))
        self.assertEqual(summary["amount_collected"], Decimal("206.00"))
        self.assertEqual(summary["amount_due"], Decimal("200.00"))


class BillingApiTests(TestCase):
    def setUp(self):
        self.client = APIClient()

    def _create_order(self, payload=None):
        response = self.client.post("/api/v1/orders/", payload or EXAMPLE_ORDER, format="json")
        self.assertEqual(response.status_code, 201)
        return response.json()

    def _create_invoice(self):
        order = self._create_order()
        response = self.client.post(f"/api/v1/orders/{order['id']}/invoice/", format="json")
        self.assertEqual(response.status_code, 201)
        return response.json()

    def test_create_order_prices_it(self):
        order = self._create_order()

        self.assertEqual(order["order_number"], "ORD-000001")
        self.assertEqual(order["status"], "draft")
        self.assertEqual(order["subtotal"], "180.00")
        self.assertEqual(order["tax"], "18.00")
        self.assertEqual(order["total"], "203.00")
        self.assertTrue(AuditLog.objects.filter(action="order.create", entity_id=order["id"]).exists())

    def test_negative_total_uses_standard_envelope(self):
        payload = dict(EXAMPLE_ORDER, discount_amount=500)

        response = self.client.post("/api/v1/orders/", payload, format="json")

        self.assertEqual(response.status_code, 422)
        body = response.json()
        self.assertEqual(body["code"], "negative_total")
        self.assertEqual(body["status"], 422)
        self.assertIn("message", body)
        self.assertEqual(self.client.get("/api/v1/orders/").json()["count"], 0)

    def test_invalid_order_status_is_a_validation_error(self):
        payload = dict(EXAMPLE_ORDER, status="archived")

        response = self.client.post("/api/v1/orders/", payload, format="json")

        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["code"], "validation_error")
        self.assertIn("status", response.json()["errors"])

    def test_order_needs_customer_and_products(self):
        item = EXAMPLE_ORDER["items"][0]
        cases = [
            ("customer_id", {"items": [item]}),
            ("customer_id", dict(EXAMPLE_ORDER, customer_id="  ")),
            ("items", dict(EXAMPLE_ORDER, items=[])),
            ("items", {"customer_id": EXAMPLE_ORDER["customer_id"]}),
            ("items", dict(EXAMPLE_ORDER, items=[dict(item, product_id="")])),
            ("items", dict(EXAMPLE_ORDER, items=[{"unit_price": 10, "quantity": 1}])),
        ]
        for field, payload in cases:
            with self.subTest(field=field, payload=payload):
                response = self.client.post("/api/v1/orders/", payload, format="json")

                self.assertEqual(response.status_code, 400)
                self.assertEqual(response.json()["code"], "validation_error")
                self.assertIn(field, response.json()["errors"])
        self.assertEqual(self.client.get("/api/v1/orders/").json()["count"], 0)

    def test_patch_checks_only_the_fields_it_sends(self):
        order = self._create_order()
        url = f"/api/v1/orders/{order['id']}/"

        response = self.client.patch(url, {"items": []}, format="json")
        self.assertEqual(response.status_code, 400)
        self.assertIn("items", response.json()["errors"])

        response = self.client.patch(url, {"shipping_cost": 10}, format="json")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["total"], "208.00")

    def test_out_of_range_numbers_are_validation_errors(self):
        item = dict(EXAMPLE_ORDER["items"][0], quantity=1e30)

        response = self.client.post("/api/v1/orders/", dict(EXAMPLE_ORDER, items=[item]), format="json")
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["code"], "validation_error")
        self.assertIn("items", response.json()["errors"])

        response = self.client.post("/api/v1/orders/", dict(EXAMPLE_ORDER, shipping_cost="1e30"), format="json")
        self.assertEqual(response.status_code, 400)
        self.assertIn("shipping_cost", response.json()["errors"])

    def test_order_list_search(self):
        first = self._create_order()
        second = self._create_order()

        response = self.client.get("/api/v1/orders/", {"search": second["order_number"].lower()})
        self.assertEqual([row["id"] for row in response.json()["results"]], [second["id"]])

        response = self.client.get("/api/v1/orders/", {"search": "Acme"})
        self.assertEqual([row["id"] for row in response.json()["results"]], [first["id"], second["id"]])

        self.assertEqual(self.client.get("/api/v1/orders/", {"search": "nobody"}).json()["count"], 0)

    def test_patch_and_delete_order(self):
        order = self._create_order()

        response = self.client.patch(f"/api/v1/orders/{order['id']}/", {"tax_rate_percent": 0}, format="json")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["total"], "185.00")
        self.assertIsNotNone(response.json()["updated_at"])

        response = self.client.delete(f"/api/v1/orders/{order['id']}/")
        self.assertEqual(response.status_code, 204)
        self.assertEqual(self.client.get(f"/api/v1/orders/{order['id']}/").status_code, 404)

    def test_generate_invoice_is_idempotent(self):
        order = self._create_order()

        first = self.client.post(f"/api/v1/orders/{order['id']}/invoice/", format="json")
        second = self.client.post(f"/api/v1/orders/{order['id']}/invoice/", format="json")

        self.assertEqual(first.status_code, 201)
        self.assertEqual(second.status_code, 200)
        self.assertEqual(first.json()["id"], second.json()["id"])
        self.assertEqual(self.client.get("/api/v1/invoices/").json()["count"], 1)

    def test_unknown_order_returns_not_found_envelope(self):
        response = self.client.post("/api/v1/orders/does-not-exist/invoice/", format="json")

        self.assertEqual(response.status_code, 404)
        self.assertEqual(response.json()["code"], "not_found")
        self.assertEqual(response.json()["status"], 404)

    def test_payment_flow(self):
        invoice = self._create_invoice()
        url = f"/api/v1/invoices/{invoice['id']}/payments/"

        response = self.client.post(url, {"amount": "100", "method": "cash"}, format="json")
        self.assertEqual(response.status_code, 201)
        self.assertEqual(response.json()["status"], "partial")
        self.assertEqual(response.json()["amount_paid"], "100.00")
        self.assertEqual(response.json()["balance_due"], "103.00")

        response = self.client.post(url, {"amount": "103"}, format="json")
        self.assertEqual(response.json()["status"], "paid")
        self.assertEqual(response.json()["last_payment_method"], "credit_card")

        response = self.client.post(url, {"amount": "1"}, format="json")
        self.assertEqual(response.status_code, 422)
        self.assertEqual(response.json()["code"], "exceeds_balance")

        response = self.client.post(url, {"amount": "0"}, format="json")
        self.assertEqual(response.status_code, 422)
        self.assertEqual(response.json()["code"], "invalid_amount")

        response = self.client.post(url, {"amount": "1e30"}, format="json")
        self.assertEqual(response.status_code, 422)
        self.assertEqual(response.json()["code"], "exceeds_balance")

        stored = self.client.get(f"/api/v1/invoices/{invoice['id']}/").json()
        self.assertEqual(stored["amount_paid"], "203.00")
        self.assertEqual(len(stored["payment_history"]), 2)

    def test_send_twice_is_a_conflict(self):
        invoice = self._create_invoice()
        url = f"/api/v1/invoices/{invoice['id']}/send/"

        self.assertEqual(self.client.post(url, format="json").json()["status"], "sent")

        response = self.client.post(url, format="json")
        self.assertEqual(response.status_code, 409)
        self.assertEqual(response.json()["code"], "invalid_transition")

    def test_check_overdue_endpoint(self):
        invoice = self._create_invoice()
        self.client.post(f"/api/v1/invoices/{invoice['id']}/send/", format="json")
        yesterday = (datetime.now(dt_timezone.utc) - timedelta(days=1)).date().isoformat()
        self.client.patch(f"/api/v1/invoices/{invoice['id']}/", {"due_date": yesterday}, format="json")

        response = self.client.post("/api/v1/invoices/check-overdue/", format="json")
        self.assertEqual(response.json(), {"updated": 1, "invoice_ids": [invoice["id"]]})

        response = self.client.post("/api/v1/invoices/check-overdue/", format="json")
        self.assertEqual(response.json()["updated"], 0)
        self.assertEqual(self.client.get(f"/api/v1/invoices/{invoice['id']}/").json()["status"], "overdue")

    def test_recurring_template_endpoint(self):
        invoice = self._create_invoice()

        response = self.client.post(
            f"/api/v1/invoices/{invoice['id']}/recurring-template/",
            {"name": "Monthly support", "frequency": "monthly"},
            format="json",
        )

        self.assertEqual(response.status_code, 201)
        body = response.json()
        self.assertTrue(body["is_recurring"])
        self.assertEqual(body["recurring_frequency"], "monthly")
        self.assertEqual(body["template"], "Monthly support")
        self.assertIsNone(body["order_id"])

        response = self.client.post(
            f"/api/v1/invoices/{invoice['id']}/recurring-template/",
            {"name": "Bad", "frequency": "daily"},
            format="json",
        )
        self.assertEqual(response.status_code, 400)

    def test_invoice_list_filters_and_summary(self):
        first = self._create_invoice()
        self._create_invoice()
        self.client.post(f"/api/v1/invoices/{first['id']}/send/", format="json")

        response = self.client.get("/api/v1/invoices/", {"status": "sent"})
        self.assertEqual(response.status_code, 200)
        self.assertEqual([row["id"] for row in response.json()["results"]], [first["id"]])

        response = self.client.get("/api/v1/invoices/", {"status": "bogus"})
        self.assertEqual(response.status_code, 400)

        summary = self.client.get("/api/v1/invoices/summary/").json()
        self.assertEqual(summary["total"], 2)
        self.assertEqual(summary["by_status"]["sent"], 1)
        self.assertEqual(summary["amount_due"], "406.00")

    def test_seed_reference_data_is_listed(self):
        products = self.client.get("/api/v1/products/").json()
        customers = self.client.get("/api/v1/customers/").json()

        self.assertEqual([row["sku"] for row in products["results"]], ["WID-01", "MOT-02"])
        self.assertEqual(customers["results"][0]["name"], "Acme Corp")

    def test_corrupt_stored_invoices_do_not_break_the_api(self):
        DatabaseStore().write_raw(INVOICES, "[{broken")

        response = self.client.get("/api/v1/invoices/")

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["count"], 0)

    def test_responses_carry_request_id(self):
        response = self.client.get("/api/v1/orders/", HTTP_X_REQUEST_ID="req-123")

        self.assertEqual(response["X-Request-ID"], "req-123")
