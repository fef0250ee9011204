# cp_core/encounters/models.py
from __future__ import annotations

import uuid
from decimal import Decimal

from django.conf import settings
from django.core.exceptions import ValidationError
from django.db import models
from django.db.models import Q

from cp_core.common.models import ImmutableModelMixin, ScopedModel
from cp_core.encounters.stages import TERMINAL_STAGES, RoutingStatus, Stage
from cp_core.patients.models import Patient


class TrackingMode(models.TextChoices):
    TIMELINE = "timeline", "Timeline tracked"
    # Encounters imported before the journey timeline existed: their stage is only
    # known from the denormalized field until the first transition upgrades them.
    LEGACY = "legacy", "Legacy (pre-timeline)"


class ConsultationPaymentType(models.TextChoices):
    CASH = "cash", "Cash"
    FREE = "free", "Free"
    INSURED = "insured", "Insured"
    CREDIT = "credit", "Credit"


class TransitionTrigger(models.TextChoices):
    REGISTRATION = "registration", "Registration"
    MANUAL = "manual", "Manual"
    AUTO_ADVANCE = "auto_advance", "Payment auto-advance"


# Only StageWritePath may change these once the row exists.
STAGE_WRITE_FIELDS = ("current_stage", "current_stage_entered_at", "routing_status", "tracking_mode", "version")


class Encounter(ScopedModel):
    """
    One episode of a patient's visit.

    current_stage / current_stage_entered_at / routing_status are denormalized
    from the stage ledger and the open journey-timeline entry; they are written
    by cp_core.encounters.services.transitions.StageWritePath only.
    """
    patient = models.ForeignKey(Patient, on_delete=models.PROTECT, related_name="encounters")

    current_stage = models.CharField(
        max_length=32, choices=Stage.choices, default=Stage.REGISTERED, db_index=True
    )
    current_stage_entered_at = models.DateTimeField(null=True, blank=True)
    routing_status = models.CharField(
        max_length=24, choices=RoutingStatus.choices, default=RoutingStatus.ROUTED, db_index=True
    )
    tracking_mode = models.CharField(max_length=16, choices=TrackingMode.choices, default=TrackingMode.TIMELINE)

    # optimistic concurrency token, bumped by every stage write
    version = models.PositiveIntegerField(default=0)

    consultation_fee = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal("0.00"))
    fee_paid = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal("0.00"))
    consultation_payment_type = models.CharField(
        max_length=16, choices=ConsultationPaymentType.choices, default=ConsultationPaymentType.CASH
    )

    reason = models.CharField(max_length=255, blank=True)

    created_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="created_encounters",
        null=True,
        blank=True,
    )

    class Meta:
        db_table = "encounters_encounter"
        indexes = [
            models.Index(fields=["tenant_id", "facility_id", "current_stage"]),
            models.Index(fields=["tenant_id", "facility_id", "routing_status"]),
            models.Index(fields=["tenant_id", "facility_id", "created_at"]),
        ]
        constraints = [
            # One active (non-terminal) encounter per patient per facility.
            models.UniqueConstraint(
                fields=["tenant_id", "facility_id", "patient"],
                condition=~Q(current_stage__in=sorted(TERMINAL_STAGES)),
                name="uq_active_encounter_per_patient_scope",
            ),
        ]

    def __str__(self) -> str:
        return f"Encounter({self.patient_id}, {self.current_stage})"

    # -----------------------------------------------------------------
    # single-writer guard for stage fields
    # -----------------------------------------------------------------
    @classmethod
    def from_db(cls, db, field_names, values):
        instance = super().from_db(db, field_names, values)
        if set(STAGE_WRITE_FIELDS) <= set(field_names):
            instance._remember_stage_state()
        return instance

    def refresh_from_db(self, *args, **kwargs):
        super().refresh_from_db(*args, **kwargs)
        self._remember_stage_state()

    def _remember_stage_state(self) -> None:
        self._loaded_stage_state = {f: getattr(self, f) for f in STAGE_WRITE_FIELDS}

    def _changed_stage_fields(self, update_fields=None) -> list[str]:
        loaded = getattr(self, "_loaded_stage_state", None)
        if loaded is None:
            return []
        candidates = STAGE_WRITE_FIELDS if update_fields is None else [f for f in STAGE_WRITE_FIELDS if f in update_fields]
        return [f for f in candidates if getattr(self, f) != loaded[f]]

    def save(self, *args, **kwargs):
        if not self._state.adding:
            changed = self._changed_stage_fields(kwargs.get("update_fields"))
            if changed:
                raise ValidationError(
                    f"Encounter stage fields ({', '.join(changed)}) can only be changed by a stage transition."
                )
        super().save(*args, **kwargs)
        self._remember_stage_state()

    @property
    def is_terminal(self) -> bool:
        return self.current_stage in TERMINAL_STAGES


class EncounterStageVisit(ScopedModel):
    """
    Journey timeline entry: one stay of the encounter at one stage.
    At most one entry per encounter is open (completed_at is null).
    """
    encounter = models.ForeignKey(Encounter, on_delete=models.PROTECT, related_name="stage_visits")
    position = models.PositiveIntegerField()
    stage = models.CharField(max_length=32, choices=Stage.choices)

    arrived_at = models.DateTimeField()
    completed_at = models.DateTimeField(null=True, blank=True)
    completed_by_user_id = models.BigIntegerField(null=True, blank=True)
    wait_minutes = models.DecimalField(max_digits=10, decimal_places=2, null=True, blank=True)

    class Meta:
        db_table = "encounters_stage_visit"
        ordering = ["encounter", "position"]
        constraints = [
            models.UniqueConstraint(fields=["encounter", "position"], name="uq_stage_visit_position"),
            models.UniqueConstraint(
                fields=["encounter"],
                condition=Q(completed_at__isnull=True),
                name="uq_single_open_stage_visit",
            ),
        ]
        indexes = [
            models.Index(fields=["tenant_id", "facility_id", "stage", "arrived_at"]),
        ]

    def __str__(self) -> str:
        return f"{self.stage} #{self.position}"

    @property
    def is_open(self) -> bool:
        return self.completed_at is None


class StageTransitionEvent(ImmutableModelMixin, models.Model):
    """
    Append-only stage history ledger. The source of truth for the
    encounter's stage; current_stage is a projection of the latest row.
    """
    immutable_label = "StageTransitionEvent"

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)

    tenant_id = models.UUIDField(db_index=True)
    facility_id = models.UUIDField(db_index=True)
    encounter = models.ForeignKey(Encounter, on_delete=models.PROTECT, related_name="stage_events")

    sequence = models.PositiveIntegerField()
    previous_stage = models.CharField(max_length=32, choices=Stage.choices, null=True, blank=True)
    new_stage = models.CharField(max_length=32, choices=Stage.choices)

    # null when the system applied the transition (auto-advance)
    actor_user_id = models.BigIntegerField(null=True, blank=True)
    trigger = models.CharField(max_length=16, choices=TransitionTrigger.choices)

    occurred_at = models.DateTimeField(db_index=True)
    context = models.JSONField(default=dict, blank=True)

    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = "encounters_stage_transition_event"
        ordering = ["encounter", "sequence"]
        constraints = [
            models.UniqueConstraint(fields=["encounter", "sequence"], name="uq_stage_event_sequence"),
        ]
        indexes = [
            models.Index(fields=["tenant_id", "facility_id", "occurred_at"]),
        ]

    def __str__(self) -> str:
        return f"{self.previous_stage} -> {self.new_stage} (#{self.sequence})"


class EncounterVitals(ScopedModel):
    """
    Latest vitals for an encounter (one row, overwritten on re-capture).
    """
    encounter = models.OneToOneField(Encounter, on_delete=models.CASCADE, related_name="vitals")

    temperature_c = models.FloatField(null=True, blank=True)
    pulse_bpm = models.PositiveSmallIntegerField(null=True, blank=True)
    resp_rate = models.PositiveSmallIntegerField(null=True, blank=True)
    bp_systolic = models.PositiveSmallIntegerField(null=True, blank=True)
    bp_diastolic = models.PositiveSmallIntegerField(null=True, blank=True)
    spo2 = models.PositiveSmallIntegerField(null=True, blank=True)
    weight_kg = models.FloatField(null=True, blank=True)
    height_cm = models.FloatField(null=True, blank=True)
    note = models.CharField(max_length=500, blank=True)

    recorded_by_user_id = models.BigIntegerField(null=True, blank=True)
    recorded_at = models.DateTimeField()

    MEASUREMENT_FIELDS = (
        "temperature_c",
        "pulse_bpm",
        "resp_rate",
        "bp_systolic",
        "bp_diastolic",
        "spo2",
        "weight_kg",
        "height_cm",
    )

    class Meta:
        db_table = "encounters_vitals"

    def snapshot(self) -> dict:
        data = {f: getattr(self, f) for f in self.MEASUREMENT_FIELDS if getattr(self, f) is not None}
        if self.note:
            data["note"] = self.note
        data["recorded_at"] = self.recorded_at.isoformat() if self.recorded_at else None
        return data
