from django.db import transaction
from rest_framework import status, viewsets
from rest_framework.decorators import action
from rest_framework.exceptions import ValidationError
from rest_framework.response import Response

from common.audit import create_audit_log_from_request
from common.pagination import as_payload
from core.store import DatabaseStore
from sales.domain import InvoiceStatus
from sales.serializers import (
    InvoiceSummarySerializer,
    InvoiceUpdateSerializer,
    OrderInputSerializer,
    PaymentCreateSerializer,
    RecurringTemplateSerializer,
)
from sales.services import BillingService


class BillingServiceMixin:
    audit_entity = None

    def get_service(self):
        return BillingService.from_store(DatabaseStore())

    def _audit(self, *, action, record, before_snapshot=None, after_snapshot=None, entity=None):
        create_audit_log_from_request(
            self.request,
            action=action,
            entity=entity or self.audit_entity,
            entity_id=record.id,
            before_snapshot=before_snapshot,
            after_snapshot=after_snapshot,
        )

    def _paginated(self, rows):
        if self.paginator is not None:
            response = self.paginator.paginate_records(rows, self.request, view=self)
            if response is not None:
                return response
        return Response([as_payload(row) for row in rows])


class OrderViewSet(BillingServiceMixin, viewsets.GenericViewSet):
    audit_entity = "order"

    def list(self, request):
        return self._paginated(self.get_service().list_orders(search=request.query_params.get("search")))

    def retrieve(self, request, pk=None):
        return Response(self.get_service().get_order(pk).to_dict())

    def create(self, request):
        serializer = OrderInputSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        with transaction.atomic():
            order = self.get_service().create_order(serializer.validated_data)
            payload = order.to_dict()
            self._audit(action="order.create", record=order, after_snapshot=payload)
        return Response(payload, status=status.HTTP_201_CREATED)

    def partial_update(self, request, pk=None):
        serializer = OrderInputSerializer(data=request.data, partial=True)
        serializer.is_valid(raise_exception=True)

        with transaction.atomic():
            service = self.get_service()
            before_snapshot = service.get_order(pk).to_dict()
            order = service.update_order(pk, serializer.validated_data)
            payload = order.to_dict()
            self._audit(action="order.update", record=order, before_snapshot=before_snapshot, after_snapshot=payload)
        return Response(payload)

    def destroy(self, request, pk=None):
        with transaction.atomic():
            order = self.get_service().delete_order(pk)
            self._audit(action="order.delete", record=order, before_snapshot=order.to_dict())
        return Response(status=status.HTTP_204_NO_CONTENT)

    @action(detail=True, methods=["post"], url_path="invoice")
    def generate_invoice(self, request, pk=None):
        with transaction.atomic():
            service = self.get_service()
            existing = service.ledger.find_for_order(pk)
            invoice = service.generate_invoice_from_order(pk)
            payload = invoice.to_dict()
            if existing is None:
                self._audit(action="invoice.generate", record=invoice, after_snapshot=payload, entity="invoice")
        return Response(payload, status=status.HTTP_200_OK if existing else status.HTTP_201_CREATED)


class InvoiceViewSet(BillingServiceMixin, viewsets.GenericViewSet):
    audit_entity = "invoice"

    def list(self, request):
        status_filter = request.query_params.get("status")
        if status_filter and status_filter not in InvoiceStatus.values:
            raise ValidationError({"status": f"Status must be one of: {', '.join(InvoiceStatus.values)}."})
        invoices = self.get_service().list_invoices(status=status_filter, search=request.query_params.get("search"))
        return self._paginated(invoices)

    def retrieve(self, request, pk=None):
        return Response(self.get_service().get_invoice(pk).to_dict())

    def partial_update(self, request, pk=None):
        serializer = InvoiceUpdateSerializer(data=request.data, partial=True)
        serializer.is_valid(raise_exception=True)

        with transaction.atomic():
            service = self.get_service()
            before_snapshot = service.get_invoice(pk).to_dict()
            invoice = service.update_invoice(pk, serializer.validated_data)
            payload = invoice.to_dict()
            self._audit(action="invoice.update", record=invoice, before_snapshot=before_snapshot, after_snapshot=payload)
        return Response(payload)

    def destroy(self, request, pk=None):
        with transaction.atomic():
            invoice = self.get_service().delete_invoice(pk)
            self._audit(action="invoice.delete", record=invoice, before_snapshot=invoice.to_dict())
        return Response(status=status.HTTP_204_NO_CONTENT)

    @action(detail=True, methods=["post"], url_path="send")
    def send(self, request, pk=None):
        with transaction.atomic():
            service = self.get_service()
            previous_status = str(service.get_invoice(pk).status)
            invoice = service.send_invoice(pk)
            payload = invoice.to_dict()
            self._audit(
                action="invoice.send",
                record=invoice,
                before_snapshot={"status": previous_status},
                after_snapshot=payload,
            )
        return Response(payload)

    @action(detail=True, methods=["post"], url_path="payments")
    def payments(self, request, pk=None):
        serializer = PaymentCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        with transaction.atomic():
            service = self.get_service()
            before = service.get_invoice(pk)
            before_snapshot = {"status": str(before.status), "amount_paid": str(before.amount_paid)}
            invoice = service.record_payment(
                pk,
                data["amount"],
                method=data["method"],
                reference=data.get("reference", ""),
                notes=data.get("notes", ""),
                idempotency_key=data.get("idempotency_key"),
            )
            payload = invoice.to_dict()
            self._audit(action="invoice.payment", record=invoice, before_snapshot=before_snapshot, after_snapshot=payload)
        return Response(payload, status=status.HTTP_201_CREATED)

    @action(detail=True, methods=["post"], url_path="recurring-template")
    def recurring_template(self, request, pk=None):
        serializer = RecurringTemplateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        with transaction.atomic():
            template = self.get_service().create_recurring_template(
                pk,
                serializer.validated_data["name"],
                serializer.validated_data["frequency"],
            )
            payload = template.to_dict()
            self._audit(action="invoice.recurring_template", record=template, after_snapshot=payload)
        return Response(payload, status=status.HTTP_201_CREATED)

    @action(detail=False, methods=["post"], url_path="check-overdue")
    def check_overdue(self, request):
        with transaction.atomic():
            updated = self.get_service().check_overdue()
            for invoice in updated:
                self._audit(action="invoice.overdue", record=invoice, after_snapshot={"status": str(invoice.status)})
        return Response({"updated": len(updated), "invoice_ids": [invoice.id for invoice in updated]})

    @action(detail=False, methods=["get"], url_path="summary", pagination_class=None)
    def summary(self, request):
        return Response(InvoiceSummarySerializer(self.get_service().invoice_summary()).data)


class ProductViewSet(BillingServiceMixin, viewsets.GenericViewSet):
    def list(self, request):
        return self._paginated(self.get_service().list_products())


class CustomerViewSet(BillingServiceMixin, viewsets.GenericViewSet):
    def list(self, request):
        return self._paginated(self.get_service().list_customers())
