# cp_core/queues/models.py
from __future__ import annotations

from django.db import models

from cp_core.common.models import ScopedModel
from cp_core.encounters.models import Encounter


class Dashboard(models.TextChoices):
    NURSE = "nurse", "Nurse"
    DOCTOR = "doctor", "Doctor"
    CASHIER = "cashier", "Cashier"


class QueueProjectionRow(ScopedModel):
    """
    Denormalized dashboard row: one per (dashboard, encounter) the encounter
    currently belongs to. Derived data only; safe to delete and rebuild.
    """
    dashboard = models.CharField(max_length=16, choices=Dashboard.choices)
    encounter = models.ForeignKey(Encounter, on_delete=models.CASCADE, related_name="queue_rows")

    patient_id = models.UUIDField()
    patient_name = models.CharField(max_length=255)
    patient_mrn = models.CharField(max_length=64, blank=True)
    patient_gender = models.CharField(max_length=32, blank=True)
    patient_age = models.PositiveSmallIntegerField(null=True, blank=True)

    current_stage = models.CharField(max_length=32)
    current_stage_entered_at = models.DateTimeField(null=True, blank=True)
    routing_status = models.CharField(max_length=24)

    vitals = models.JSONField(default=dict, blank=True)

    consultation_payment_status = models.CharField(max_length=16)
    overall_payment_status = models.CharField(max_length=16)
    has_unpaid_items = models.BooleanField(default=False)

    refreshed_at = models.DateTimeField()

    class Meta:
        db_table = "queues_projection_row"
        constraints = [
            models.UniqueConstraint(fields=["dashboard", "encounter"], name="uq_queue_row_dashboard_encounter"),
        ]
        indexes = [
            models.Index(fields=["tenant_id", "facility_id", "dashboard", "current_stage_entered_at"]),
        ]

    def __str__(self) -> str:
        return f"{self.dashboard}:{self.encounter_id} ({self.current_stage})"
