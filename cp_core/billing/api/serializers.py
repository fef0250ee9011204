# cp_core/billing/api/serializers.py
from rest_framework import serializers

from cp_core.billing.models import ChargeableLineItem, LineItemPayment, PaymentMethod


class LineItemSerializer(serializers.ModelSerializer):
    department = serializers.CharField(read_only=True)
    balance_due = serializers.DecimalField(max_digits=12, decimal_places=2, read_only=True)

    class Meta:
        model = ChargeableLineItem
        fields = [
            "id",
            "encounter_id",
            "source_order_id",
            "item_type",
            "department",
            "description",
            "amount",
            "amount_paid",
            "balance_due",
            "payment_status",
            "settled_at",
            "settled_by_user_id",
            "created_at",
        ]
        read_only_fields = fields


class PaymentCreateSerializer(serializers.Serializer):
    amount = serializers.DecimalField(max_digits=12, decimal_places=2)
    method = serializers.ChoiceField(choices=PaymentMethod.choices, required=False, default=PaymentMethod.CASH)
    reference = serializers.CharField(required=False, allow_blank=True, default="")


class PaymentSerializer(serializers.ModelSerializer):
    line_item = LineItemSerializer(read_only=True)

    class Meta:
        model = LineItemPayment
        fields = [
            "id",
            "line_item",
            "amount",
            "method",
            "reference",
            "received_at",
            "recorded_by_user_id",
            "created_at",
        ]
        read_only_fields = fields


class WaiveSerializer(serializers.Serializer):
    reason = serializers.CharField(required=False, allow_blank=True, default="", max_length=255)
