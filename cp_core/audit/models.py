# cp_core/audit/models.py
from django.conf import settings
from django.db import models

from cp_core.common.models import ImmutableModelMixin, ScopedModel


class AuditEvent(ImmutableModelMixin, ScopedModel):
    """
    Immutable audit record: who did what to which entity.
    Stage history proper lives in the encounter ledger; this table also covers
    payments, waivers and routing acknowledgements.
    """
    immutable_label = "AuditEvent"

    event_code = models.CharField(max_length=128, db_index=True)  # e.g. "encounter.stage_advanced"
    entity_type = models.CharField(max_length=128, db_index=True)  # e.g. "Encounter"
    entity_id = models.UUIDField(db_index=True)

    actor_user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="audit_events",
        null=True,
        blank=True,
    )

    occurred_at = models.DateTimeField(auto_now_add=True, db_index=True)
    metadata = models.JSONField(default=dict)

    class Meta:
        db_table = "audit_audit_event"
        indexes = [
            models.Index(fields=["tenant_id", "facility_id", "occurred_at"]),
            models.Index(fields=["entity_type", "entity_id"]),
        ]
