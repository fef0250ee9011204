# cp_core/encounters/admin.py
from __future__ import annotations

from django.contrib import admin

from cp_core.encounters.models import Encounter, EncounterStageVisit, StageTransitionEvent


class EncounterStageVisitInline(admin.TabularInline):
    model = EncounterStageVisit
    extra = 0
    can_delete = False
    fields = ("position", "stage", "arrived_at", "completed_at", "completed_by_user_id", "wait_minutes")
    readonly_fields = fields


@admin.register(Encounter)
class EncounterAdmin(admin.ModelAdmin):
    list_display = (
        "id",
        "tenant_id",
        "facility_id",
        "patient",
        "current_stage",
        "routing_status",
        "tracking_mode",
        "current_stage_entered_at",
        "created_at",
    )
    list_filter = ("current_stage", "routing_status", "tracking_mode")
    search_fields = ("id", "patient__id", "patient__mrn", "patient__full_name")
    # stage fields move only through stage transitions
    readonly_fields = (
        "current_stage",
        "current_stage_entered_at",
        "routing_status",
        "tracking_mode",
        "version",
        "created_at",
        "updated_at",
    )
    inlines = [EncounterStageVisitInline]


@admin.register(StageTransitionEvent)
class StageTransitionEventAdmin(admin.ModelAdmin):
    list_display = (
        "id",
        "encounter_id",
        "sequence",
        "previous_stage",
        "new_stage",
        "trigger",
        "actor_user_id",
        "occurred_at",
    )
    list_filter = ("trigger", "new_stage")
    search_fields = ("encounter__id",)

    def has_add_permission(self, request):
        # ledger rows are written by code only
        return False

    def has_change_permission(self, request, obj=None):
        return False

    def has_delete_permission(self, request, obj=None):
        return False
