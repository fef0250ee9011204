# cp_core/encounters/selectors.py
from __future__ import annotations

from uuid import UUID

from django.core.exceptions import ValidationError as DjangoValidationError
from django.db.models import QuerySet

from cp_core.common.scope import AccessContext
from cp_core.encounters.exceptions import InvalidTransition, NotFound
from cp_core.encounters.models import (
    Encounter,
    EncounterStageVisit,
    StageTransitionEvent,
    TrackingMode,
)
from cp_core.encounters.stages import TERMINAL_STAGES

# where resolve_current_stage found the stage
SOURCE_TIMELINE = "timeline"
SOURCE_TERMINAL = "terminal"
SOURCE_LEGACY = "legacy"


def get_encounter_in_scope(ctx: AccessContext, encounter_id, *, for_update: bool = False) -> Encounter:
    """
    The one scoped lookup for encounters. Anything outside the caller's
    tenant/facility is indistinguishable from a missing row.
    """
    qs = Encounter.objects.filter(tenant_id=ctx.tenant_id, facility_id=ctx.facility_id)
    # select_related under FOR UPDATE would lock the patient row too
    qs = qs.select_for_update() if for_update else qs.select_related("patient")
    try:
        return qs.get(id=encounter_id)
    except (Encounter.DoesNotExist, ValueError, DjangoValidationError):
        raise NotFound("Encounter not found", encounter_id=str(encounter_id))


def open_visit_for(encounter: Encounter) -> EncounterStageVisit | None:
    return EncounterStageVisit.objects.filter(encounter=encounter, completed_at__isnull=True).first()


def has_other_active_encounter(encounter: Encounter) -> bool:
    return (
        Encounter.objects.filter(
            tenant_id=encounter.tenant_id,
            facility_id=encounter.facility_id,
            patient_id=encounter.patient_id,
        )
        .exclude(pk=encounter.pk)
        .exclude(current_stage__in=TERMINAL_STAGES)
        .exists()
    )


def resolve_current_stage(encounter: Encounter) -> tuple[str, str]:
    """
    Current stage and where it came from.

    Timeline encounters read the open visit. A terminal encounter has no
    open visit, so its stored stage is authoritative. The denormalized field
    is only trusted on its own for legacy (pre-timeline) encounters.
    """
    visit = open_visit_for(encounter)
    if visit is not None:
        return visit.stage, SOURCE_TIMELINE

    if encounter.current_stage in TERMINAL_STAGES:
        return encounter.current_stage, SOURCE_TERMINAL

    if encounter.tracking_mode == TrackingMode.LEGACY:
        return encounter.current_stage, SOURCE_LEGACY

    raise InvalidTransition(
        "Encounter has no open journey timeline entry",
        encounter_id=str(encounter.id),
        stored_stage=encounter.current_stage,
    )


class EncounterSelectors:
    """
    Read-only queries for encounters.
    No .save(), no state mutation here.
    """

    @staticmethod
    def list_encounters(
        *,
        tenant_id: UUID,
        facility_id: UUID,
        patient_id: UUID | None = None,
        current_stage: str | None = None,
        routing_status: str | None = None,
    ) -> QuerySet[Encounter]:
        qs = Encounter.objects.filter(tenant_id=tenant_id, facility_id=facility_id).select_related("patient")

        if patient_id:
            qs = qs.filter(patient_id=patient_id)

        if current_stage:
            qs = qs.filter(current_stage=current_stage)

        if routing_status:
            qs = qs.filter(routing_status=routing_status)

        return qs.order_by("-created_at")

    @staticmethod
    def stage_history(*, tenant_id: UUID, facility_id: UUID, encounter_id: UUID) -> QuerySet[StageTransitionEvent]:
        return StageTransitionEvent.objects.filter(
            tenant_id=tenant_id,
            facility_id=facility_id,
            encounter_id=encounter_id,
        ).order_by("sequence")

    @staticmethod
    def timeline_items(*, tenant_id: UUID, facility_id: UUID, encounter_id: UUID) -> list[dict]:
        visits = EncounterStageVisit.objects.filter(
            tenant_id=tenant_id,
            facility_id=facility_id,
            encounter_id=encounter_id,
        ).order_by("position")

        items: list[dict] = []
        for v in visits:
            items.append(
                {
                    "position": v.position,
                    "stage": v.stage,
                    "arrived_at": v.arrived_at,
                    "completed_at": v.completed_at,
                    "completed_by_user_id": v.completed_by_user_id,
                    "wait_minutes": v.wait_minutes,
                    "is_open": v.is_open,
                }
            )
        return items
