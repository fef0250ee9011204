from rest_framework import serializers

from cp_core.queues.models import QueueProjectionRow


class QueueRowSerializer(serializers.ModelSerializer):
    class Meta:
        model = QueueProjectionRow
        fields = [
            "encounter_id",
            "dashboard",
            "patient_id",
            "patient_name",
            "patient_mrn",
            "patient_gender",
            "patient_age",
            "current_stage",
            "current_stage_entered_at",
            "routing_status",
            "vitals",
            "consultation_payment_status",
            "overall_payment_status",
            "has_unpaid_items",
            "refreshed_at",
        ]
        read_only_fields = fields


class PendingItemSerializer(serializers.Serializer):
    line_item_id = serializers.CharField()
    description = serializers.CharField()
    department = serializers.CharField()
    payment_status = serializers.CharField()


class AwaitingRoutingSerializer(serializers.Serializer):
    encounter_id = serializers.CharField()
    patient_summary = serializers.DictField()
    current_stage = serializers.CharField()
    pending_items = PendingItemSerializer(many=True)
    wait_minutes = serializers.DecimalField(max_digits=10, decimal_places=2, allow_null=True)
    suggested_next_stage = serializers.CharField()
