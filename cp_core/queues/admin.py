# cp_core/queues/admin.py
from __future__ import annotations

from django.contrib import admin

from cp_core.queues.models import QueueProjectionRow


@admin.register(QueueProjectionRow)
class QueueProjectionRowAdmin(admin.ModelAdmin):
    list_display = ("dashboard", "encounter_id", "patient_name", "current_stage", "routing_status", "refreshed_at")
    list_filter = ("dashboard", "current_stage", "routing_status", "has_unpaid_items")
    search_fields = ("encounter__id", "patient_name", "patient_mrn")
