# cp_core/encounters/services/registration.py
from __future__ import annotations

import logging
from decimal import Decimal
from uuid import UUID

from django.db import IntegrityError, transaction
from django.utils import timezone

from cp_core.audit.services import AuditService
from cp_core.common.events import publish
from cp_core.common.scope import AccessContext
from cp_core.encounters.exceptions import InvalidTransition, NotFound
from cp_core.encounters.ledger import StageHistoryLedger
from cp_core.encounters.models import (
    ConsultationPaymentType,
    Encounter,
    EncounterVitals,
    TransitionTrigger,
)
from cp_core.encounters.selectors import get_encounter_in_scope
from cp_core.encounters.services.transitions import STAGE_CHANGED, StageWritePath
from cp_core.encounters.stages import RoutingStatus, Stage
from cp_core.patients.models import Patient

logger = logging.getLogger(__name__)

VITALS_RECORDED = "encounter.vitals_recorded"


class EncounterService:
    @staticmethod
    @transaction.atomic
    def register(
        *,
        ctx: AccessContext,
        patient_id: UUID,
        reason: str = "",
        consultation_fee: Decimal = Decimal("0.00"),
        consultation_payment_type: str = ConsultationPaymentType.CASH,
    ) -> Encounter:
        """
        Open a new encounter at `registered`, with its first timeline entry
        and its first ledger event.
        """
        patient = Patient.objects.filter(
            id=patient_id,
            tenant_id=ctx.tenant_id,
            facility_id=ctx.facility_id,
        ).first()
        if patient is None:
            raise NotFound("Patient not found", patient_id=str(patient_id))

        now = timezone.now()
        try:
            with transaction.atomic():
                enc = Encounter.objects.create(
                    tenant_id=ctx.tenant_id,
                    facility_id=ctx.facility_id,
                    patient=patient,
                    current_stage=Stage.REGISTERED,
                    current_stage_entered_at=now,
                    routing_status=RoutingStatus.ROUTED,
                    reason=reason or "",
                    consultation_fee=consultation_fee,
                    consultation_payment_type=consultation_payment_type,
                    created_by_id=ctx.caller_user_id,
                )
        except IntegrityError:
            raise InvalidTransition(
                "Active encounter already exists for this patient in this facility.",
                patient_id=str(patient_id),
            )

        StageWritePath.open_initial_stage(encounter=enc, stage=Stage.REGISTERED, at=now)
        StageHistoryLedger.append(
            encounter=enc,
            previous_stage=None,
            new_stage=Stage.REGISTERED,
            actor_user_id=ctx.caller_user_id,
            trigger=TransitionTrigger.REGISTRATION,
            occurred_at=now,
        )

        AuditService.log(
            event_code="encounter.registered",
            entity_type="Encounter",
            entity_id=enc.id,
            tenant_id=ctx.tenant_id,
            facility_id=ctx.facility_id,
            actor_user_id=ctx.caller_user_id,
            metadata={"patient_id": str(patient_id)},
        )

        logger.info("Encounter registered", extra={"encounter_id": str(enc.id)})

        publish(
            STAGE_CHANGED,
            {
                "tenant_id": str(ctx.tenant_id),
                "facility_id": str(ctx.facility_id),
                "encounter_id": str(enc.id),
                "previous_stage": None,
                "new_stage": Stage.REGISTERED.value,
                "trigger": TransitionTrigger.REGISTRATION.value,
                "routing_status": RoutingStatus.ROUTED.value,
                "actor_user_id": ctx.caller_user_id,
            },
        )
        return enc

    @staticmethod
    @transaction.atomic
    def record_vitals(*, ctx: AccessContext, encounter_id: UUID, vitals: dict) -> EncounterVitals:
        """
        Upsert the encounter's vitals. Recording vitals does not move the
        stage; staff advance to vitals_taken explicitly.
        """
        encounter = get_encounter_in_scope(ctx, encounter_id)
        if encounter.is_terminal:
            raise InvalidTransition(
                f'Cannot record vitals for an encounter in terminal stage "{encounter.current_stage}"',
                current_stage=encounter.current_stage,
            )

        defaults = {k: vitals.get(k) for k in EncounterVitals.MEASUREMENT_FIELDS}
        defaults.update(
            note=vitals.get("note") or "",
            recorded_by_user_id=ctx.caller_user_id,
            recorded_at=timezone.now(),
        )

        row, created = EncounterVitals.objects.update_or_create(
            tenant_id=ctx.tenant_id,
            facility_id=ctx.facility_id,
            encounter=encounter,
            defaults=defaults,
        )

        logger.info("Vitals recorded", extra={"encounter_id": str(encounter.id), "vitals_created": created})

        publish(
            VITALS_RECORDED,
            {
                "tenant_id": str(ctx.tenant_id),
                "facility_id": str(ctx.facility_id),
                "encounter_id": str(encounter.id),
                "actor_user_id": ctx.caller_user_id,
            },
        )
        return row
