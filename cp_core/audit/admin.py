# cp_core/audit/admin.py
from django.contrib import admin

from cp_core.audit.models import AuditEvent


@admin.register(AuditEvent)
class AuditEventAdmin(admin.ModelAdmin):
    list_display = (
        "event_code",
        "entity_type",
        "entity_id",
        "tenant_id",
        "facility_id",
        "actor_user",
        "occurred_at",
    )
    list_filter = ("event_code", "entity_type", "tenant_id", "facility_id")
    search_fields = ("event_code", "entity_id")
    readonly_fields = ("occurred_at",)
    ordering = ("-occurred_at",)

    # audit rows are append-only
    def has_change_permission(self, request, obj=None):
        return False

    def has_delete_permission(self, request, obj=None):
        return False
