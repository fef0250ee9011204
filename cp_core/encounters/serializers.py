# cp_core/encounters/serializers.py
from decimal import Decimal

from rest_framework import serializers

from cp_core.encounters.models import (
    ConsultationPaymentType,
    Encounter,
    EncounterVitals,
    StageTransitionEvent,
)


class EncounterCreateSerializer(serializers.Serializer):
    patient_id = serializers.UUIDField()
    reason = serializers.CharField(max_length=255, required=False, allow_blank=True)
    consultation_fee = serializers.DecimalField(
        max_digits=12, decimal_places=2, required=False, min_value=Decimal("0.00")
    )
    consultation_payment_type = serializers.ChoiceField(
        choices=ConsultationPaymentType.choices, required=False
    )


class EncounterSerializer(serializers.ModelSerializer):
    patient = serializers.SerializerMethodField()

    class Meta:
        model = Encounter
        fields = [
            "id",
            "tenant_id",
            "facility_id",
            "patient_id",
            "patient",
            "current_stage",
            "current_stage_entered_at",
            "routing_status",
            "tracking_mode",
            "version",
            "consultation_fee",
            "fee_paid",
            "consultation_payment_type",
            "reason",
            "created_by_id",
            "created_at",
            "updated_at",
        ]
        read_only_fields = fields

    def get_patient(self, obj: Encounter) -> dict:
        return obj.patient.summary()


class AdvanceStageInputSerializer(serializers.Serializer):
    requested_stage = serializers.CharField(max_length=32)
    # acting identity; defaults to the caller
    actor_id = serializers.IntegerField(required=False, allow_null=True)
    context = serializers.DictField(required=False, default=dict)


class StageTransitionEventSerializer(serializers.ModelSerializer):
    class Meta:
        model = StageTransitionEvent
        fields = [
            "id",
            "sequence",
            "previous_stage",
            "new_stage",
            "actor_user_id",
            "trigger",
            "occurred_at",
            "context",
        ]
        read_only_fields = fields


class TimelineEntrySerializer(serializers.Serializer):
    position = serializers.IntegerField()
    stage = serializers.CharField()
    arrived_at = serializers.DateTimeField()
    completed_at = serializers.DateTimeField(allow_null=True)
    completed_by_user_id = serializers.IntegerField(allow_null=True)
    wait_minutes = serializers.DecimalField(max_digits=10, decimal_places=2, allow_null=True)
    is_open = serializers.BooleanField()


class VitalsInputSerializer(serializers.Serializer):
    temperature_c = serializers.FloatField(required=False, min_value=25, max_value=45)
    pulse_bpm = serializers.IntegerField(required=False, min_value=20, max_value=250)
    resp_rate = serializers.IntegerField(required=False, min_value=5, max_value=80)

    bp_systolic = serializers.IntegerField(required=False, min_value=50, max_value=300)
    bp_diastolic = serializers.IntegerField(required=False, min_value=30, max_value=200)

    spo2 = serializers.IntegerField(required=False, min_value=0, max_value=100)
    weight_kg = serializers.FloatField(required=False, min_value=0, max_value=500)
    height_cm = serializers.FloatField(required=False, min_value=0, max_value=300)

    note = serializers.CharField(required=False, allow_blank=True, max_length=500)

    def validate(self, attrs):
        # If BP is provided, require both systolic and diastolic
        if (attrs.get("bp_systolic") is None) ^ (attrs.get("bp_diastolic") is None):
            raise serializers.ValidationError("Provide both bp_systolic and bp_diastolic together.")
        if not attrs:
            raise serializers.ValidationError("At least one vitals field is required.")
        return attrs


class VitalsSerializer(serializers.ModelSerializer):
    class Meta:
        model = EncounterVitals
        fields = [*EncounterVitals.MEASUREMENT_FIELDS, "note", "recorded_by_user_id", "recorded_at"]
        read_only_fields = fields
