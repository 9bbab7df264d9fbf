from rest_framework import serializers

from common.utils import MAX_AMOUNT, parse_decimal
from sales.domain import OrderStatus, PaymentMethod, RecurringFrequency


class BoundedNumberField(serializers.JSONField):
    """Loose numeric input that still rejects numbers beyond MAX_AMOUNT."""

    default_error_messages = {"out_of_range": f"Ensure this value is between -{MAX_AMOUNT:f} and {MAX_AMOUNT:f}."}

    def to_internal_value(self, data):
        value = super().to_internal_value(data)
        if abs(parse_decimal(value)) > MAX_AMOUNT:
            self.fail("out_of_range")
        return value


class LineItemInputSerializer(serializers.Serializer):
    # Numeric fields stay loose: the pricing layer coerces bad values to zero.
    product_id = serializers.CharField(required=False, allow_blank=True, allow_null=True)
    quantity = BoundedNumberField(required=False)
    unit_price = BoundedNumberField(required=False)
    discount_percent = BoundedNumberField(required=False)


class OrderInputSerializer(serializers.Serializer):
    customer_id = serializers.CharField(required=False, allow_blank=True, allow_null=True)
    items = LineItemInputSerializer(many=True, required=False)
    discount_amount = BoundedNumberField(required=False)
    tax_rate_percent = BoundedNumberField(required=False)
    shipping_cost = BoundedNumberField(required=False)
    status = serializers.ChoiceField(choices=OrderStatus.choices, required=False)

    def validate(self, attrs):
        # Partial updates only check the fields they send.
        errors = {}
        if (not self.partial or "customer_id" in attrs) and not (attrs.get("customer_id") or "").strip():
            errors["customer_id"] = ["Select a customer."]
        if not self.partial or "items" in attrs:
            items = attrs.get("items") or []
            if not items:
                errors["items"] = ["Add at least one item."]
            elif any(not (item.get("product_id") or "").strip() for item in items):
                errors["items"] = ["Every item needs a product."]
        if errors:
            raise serializers.ValidationError(errors)
        return attrs


class InvoiceUpdateSerializer(serializers.Serializer):
    customer_id = serializers.CharField(required=False, allow_blank=True, allow_null=True)
    due_date = serializers.DateField(required=False, allow_null=True)
    template = serializers.CharField(required=False, allow_blank=True, max_length=128)
    status = serializers.CharField(required=False)


class PaymentCreateSerializer(serializers.Serializer):
    amount = serializers.JSONField()
    method = serializers.ChoiceField(choices=PaymentMethod.choices, default=PaymentMethod.CREDIT_CARD)
    reference = serializers.CharField(required=False, allow_blank=True, default="", max_length=255)
    notes = serializers.CharField(required=False, allow_blank=True, default="")
    idempotency_key = serializers.CharField(required=False, allow_blank=True, allow_null=True, max_length=128)


class RecurringTemplateSerializer(serializers.Serializer):
    name = serializers.CharField(max_length=128)
    frequency = serializers.ChoiceField(choices=RecurringFrequency.choices, default=RecurringFrequency.MONTHLY)


class InvoiceSummarySerializer(serializers.Serializer):
    total = serializers.IntegerField()
    by_status = serializers.DictField(child=serializers.IntegerField())
    total_amount = serializers.DecimalField(max_digits=None, decimal_places=2)
    amount_collected = serializers.DecimalField(max_digits=None, decimal_places=2)
    amount_due = serializers.DecimalField(max_digits=None, decimal_places=2)
