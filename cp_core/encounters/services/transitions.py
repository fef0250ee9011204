# cp_core/encounters/services/transitions.py
"""
Manual stage transitions and the single write path for stage fields.

`StageWritePath` is the only code allowed to change an encounter's stage,
routing status or tracking mode. Manual transitions (EncounterTransitionService)
and payment auto-advance (services.auto_advance) both go through it, so the
timeline, the ledger, the denormalized fields, the audit row and the queue
projections always move together.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Any
from uuid import UUID

from django.conf import settings
from django.db import IntegrityError, transaction
from django.db.models import Max
from django.utils import timezone

from cp_core.audit.services import AuditService
from cp_core.common.events import publish
from cp_core.common.scope import AccessContext
from cp_core.encounters.exceptions import (
    ConcurrentModification,
    Forbidden,
    InvalidTransition,
    Unauthenticated,
    WorkflowError,
)
from cp_core.encounters.ledger import StageHistoryLedger
from cp_core.encounters.models import (
    Encounter,
    EncounterStageVisit,
    StageTransitionEvent,
    TrackingMode,
    TransitionTrigger,
)
from cp_core.encounters.selectors import (
    SOURCE_LEGACY,
    get_encounter_in_scope,
    has_other_active_encounter,
    open_visit_for,
    resolve_current_stage,
)
from cp_core.encounters.stages import (
    TERMINAL_STAGES,
    RoutingStatus,
    allowed_next,
    missing_context_for,
    parse_stage,
    required_capability,
)
from cp_core.iam.services import rbac

logger = logging.getLogger(__name__)

STAGE_CHANGED = "encounter.stage_changed"
ROUTING_ACKNOWLEDGED = "encounter.routing_acknowledged"

ACTIVE_ENCOUNTER_CONSTRAINT = "uq_active_encounter_per_patient_scope"


def _wait_minutes(arrived_at, completed_at) -> Decimal:
    seconds = max((completed_at - arrived_at).total_seconds(), 0)
    return (Decimal(str(seconds)) / Decimal("60")).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


def _next_position(encounter: Encounter) -> int:
    last = EncounterStageVisit.objects.filter(encounter=encounter).aggregate(m=Max("position"))["m"]
    return (last or 0) + 1


def _scope_payload(encounter: Encounter) -> dict:
    return {
        "tenant_id": str(encounter.tenant_id),
        "facility_id": str(encounter.facility_id),
        "encounter_id": str(encounter.id),
    }


class StageWritePath:
    """
    Callers must hold the encounter row lock (get_encounter_in_scope(..., for_update=True))
    and be inside a transaction.
    """

    @staticmethod
    def open_initial_stage(*, encounter: Encounter, stage: str, at=None) -> EncounterStageVisit:
        return EncounterStageVisit.objects.create(
            tenant_id=encounter.tenant_id,
            facility_id=encounter.facility_id,
            encounter=encounter,
            position=1,
            stage=stage,
            arrived_at=at or encounter.current_stage_entered_at or timezone.now(),
        )

    @staticmethod
    def _move_timeline(
        *,
        encounter: Encounter,
        previous_stage: str,
        new_stage: str,
        actor_user_id: int | None,
        source: str,
        now,
    ) -> None:
        visit = open_visit_for(encounter)
        if visit is not None:
            visit.completed_at = now
            visit.completed_by_user_id = actor_user_id
            visit.wait_minutes = _wait_minutes(visit.arrived_at, now)
            visit.save(update_fields=["completed_at", "completed_by_user_id", "wait_minutes", "updated_at"])
        elif source == SOURCE_LEGACY:
            # Backfill the stay the legacy encounter was in, so the timeline starts somewhere.
            arrived = encounter.current_stage_entered_at or encounter.created_at
            EncounterStageVisit.objects.create(
                tenant_id=encounter.tenant_id,
                facility_id=encounter.facility_id,
                encounter=encounter,
                position=_next_position(encounter),
                stage=previous_stage,
                arrived_at=arrived,
                completed_at=now,
                completed_by_user_id=actor_user_id,
                wait_minutes=_wait_minutes(arrived, now),
            )

        terminal = new_stage in TERMINAL_STAGES
        EncounterStageVisit.objects.create(
            tenant_id=encounter.tenant_id,
            facility_id=encounter.facility_id,
            encounter=encounter,
            position=_next_position(encounter),
            stage=new_stage,
            arrived_at=now,
            # terminal stays are closed on arrival
            completed_at=now if terminal else None,
            completed_by_user_id=actor_user_id if terminal else None,
            wait_minutes=Decimal("0.00") if terminal else None,
        )

    @staticmethod
    def apply(
        *,
        encounter: Encounter,
        previous_stage: str,
        new_stage: str,
        actor_user_id: int | None,
        trigger: str,
        routing_status: str,
        source: str,
        context: dict[str, Any] | None = None,
    ) -> StageTransitionEvent:
        now = timezone.now()
        expected_version = encounter.version

        try:
            with transaction.atomic():
                StageWritePath._move_timeline(
                    encounter=encounter,
                    previous_stage=previous_stage,
                    new_stage=new_stage,
                    actor_user_id=actor_user_id,
                    source=source,
                    now=now,
                )

                updated = Encounter.objects.filter(pk=encounter.pk, version=expected_version).update(
                    current_stage=new_stage,
                    current_stage_entered_at=now,
                    routing_status=routing_status,
                    tracking_mode=TrackingMode.TIMELINE,
                    version=expected_version + 1,
                    updated_at=now,
                )
                if updated != 1:
                    raise ConcurrentModification(
                        "Encounter was modified by another request",
                        encounter_id=str(encounter.id),
                    )

                event = StageHistoryLedger.append(
                    encounter=encounter,
                    previous_stage=previous_stage,
                    new_stage=new_stage,
                    actor_user_id=actor_user_id,
                    trigger=trigger,
                    context=context,
                    occurred_at=now,
                )
        except IntegrityError as exc:
            if ACTIVE_ENCOUNTER_CONSTRAINT in str(exc):
                raise InvalidTransition(
                    "Patient already has an active encounter in this facility",
                    encounter_id=str(encounter.id),
                    patient_id=str(encounter.patient_id),
                )
            raise ConcurrentModification(
                "Encounter timeline or ledger was written concurrently",
                encounter_id=str(encounter.id),
            )

        encounter.current_stage = new_stage
        encounter.current_stage_entered_at = now
        encounter.routing_status = routing_status
        encounter.tracking_mode = TrackingMode.TIMELINE
        encounter.version = expected_version + 1
        encounter.updated_at = now
        encounter._remember_stage_state()

        AuditService.log(
            event_code="encounter.stage_changed",
            entity_type="Encounter",
            entity_id=encounter.id,
            tenant_id=encounter.tenant_id,
            facility_id=encounter.facility_id,
            actor_user_id=actor_user_id,
            metadata={
                "previous_stage": previous_stage,
                "new_stage": new_stage,
                "trigger": trigger,
                "routing_status": routing_status,
                "sequence": event.sequence,
            },
        )

        publish(
            STAGE_CHANGED,
            {
                **_scope_payload(encounter),
                "previous_stage": previous_stage,
                "new_stage": new_stage,
                "trigger": trigger,
                "routing_status": routing_status,
                "actor_user_id": actor_user_id,
            },
        )
        return event

    @staticmethod
    def acknowledge_routing(*, encounter: Encounter, actor_user_id: int | None) -> None:
        now = timezone.now()
        expected_version = encounter.version

        updated = Encounter.objects.filter(pk=encounter.pk, version=expected_version).update(
            routing_status=RoutingStatus.ROUTED,
            version=expected_version + 1,
            updated_at=now,
        )
        if updated != 1:
            raise ConcurrentModification("Encounter was modified by another request", encounter_id=str(encounter.id))

        encounter.routing_status = RoutingStatus.ROUTED.value
        encounter.version = expected_version + 1
        encounter.updated_at = now
        encounter._remember_stage_state()

        AuditService.log(
            event_code="encounter.routing_acknowledged",
            entity_type="Encounter",
            entity_id=encounter.id,
            tenant_id=encounter.tenant_id,
            facility_id=encounter.facility_id,
            actor_user_id=actor_user_id,
            metadata={"stage": encounter.current_stage},
        )

        publish(ROUTING_ACKNOWLEDGED, {**_scope_payload(encounter), "actor_user_id": actor_user_id})


@dataclass(frozen=True)
class TransitionOutcome:
    success: bool
    new_stage: str | None = None
    previous_stage: str | None = None
    routing_status: str | None = None
    error: WorkflowError | None = None

    def as_dict(self) -> dict:
        if not self.success:
            return {"success": False, "error": self.error.as_dict()}
        return {
            "success": True,
            "new_stage": self.new_stage,
            "previous_stage": self.previous_stage,
            "routing_status": self.routing_status,
        }


def _acknowledgement_capabilities(encounter: Encounter, current: str) -> frozenset[str]:
    caps = set(required_capability(current))
    last = StageHistoryLedger.latest(encounter_id=encounter.id)
    if last is not None and last.trigger == TransitionTrigger.AUTO_ADVANCE and last.previous_stage:
        caps |= required_capability(last.previous_stage)
    return frozenset(caps)


class EncounterTransitionService:
    @staticmethod
    def advance_stage(
        *,
        ctx: AccessContext,
        encounter_id: UUID,
        requested_stage: str,
        actor_user_id: int | None = None,
        context: dict[str, Any] | None = None,
    ) -> TransitionOutcome:
        """
        Validate and apply a manual stage change.

        Never raises workflow errors: failures come back as a structured
        TransitionOutcome so the caller can render them.
        """
        try:
            return EncounterTransitionService._advance(
                ctx=ctx,
                encounter_id=encounter_id,
                requested_stage=requested_stage,
                actor_user_id=actor_user_id,
                context=context or {},
            )
        except WorkflowError as exc:
            log = logger.warning if isinstance(exc, (Unauthenticated, ConcurrentModification)) else logger.info
            log(
                "Stage transition rejected",
                extra={
                    "encounter_id": str(encounter_id),
                    "requested_stage": str(requested_stage),
                    "error_code": exc.code,
                    "error_message": exc.message,
                },
            )
            return TransitionOutcome(success=False, error=exc)

    @staticmethod
    def _resolve_actor(ctx: AccessContext, actor_user_id: int | None) -> int:
        caller = ctx.caller_user_id
        if rbac.resolve_active_user(caller) is None:
            raise Unauthenticated("Caller identity could not be resolved to an active user")

        if actor_user_id is None or actor_user_id == caller:
            return caller

        # acting on someone else's behalf is reserved for super-operators
        if not rbac.is_super_operator(user_id=caller, tenant_id=ctx.tenant_id, facility_id=ctx.facility_id):
            raise Forbidden("Only a super-operator may act on behalf of another user", actor_id=actor_user_id)
        if rbac.resolve_active_user(actor_user_id) is None:
            raise Unauthenticated("Acting identity could not be resolved to an active user", actor_id=actor_user_id)
        return actor_user_id

    @staticmethod
    @transaction.atomic
    def _advance(
        *,
        ctx: AccessContext,
        encounter_id: UUID,
        requested_stage: str,
        actor_user_id: int | None,
        context: dict[str, Any],
    ) -> TransitionOutcome:
        actor = EncounterTransitionService._resolve_actor(ctx, actor_user_id)
        requested = parse_stage(requested_stage)

        # state is read after the row lock is held
        encounter = get_encounter_in_scope(ctx, encounter_id, for_update=True)
        super_operator = rbac.is_super_operator(user_id=actor, tenant_id=ctx.tenant_id, facility_id=ctx.facility_id)
        current, source = resolve_current_stage(encounter)

        if current in TERMINAL_STAGES:
            # checked before any catalog lookup: terminal stages have no rules to consult
            bypass = super_operator and getattr(settings, "ENCOUNTER_SUPER_OPERATOR_BYPASSES_TERMINAL", True)
            if not bypass:
                raise InvalidTransition(
                    f'Encounter is in terminal stage "{current}" and cannot be advanced',
                    current_stage=current,
                    requested_stage=requested,
                )

            if requested not in TERMINAL_STAGES and has_other_active_encounter(encounter):
                raise InvalidTransition(
                    "Cannot reopen encounter: patient already has an active encounter in this facility",
                    current_stage=current,
                    requested_stage=requested,
                    patient_id=str(encounter.patient_id),
                )

        if requested == current:
            if encounter.routing_status != RoutingStatus.AWAITING_ROUTING:
                raise InvalidTransition(
                    f'Encounter is already in stage "{current}"',
                    current_stage=current,
                    requested_stage=requested,
                )
            if not super_operator:
                caps = rbac.capabilities_for(user_id=actor, tenant_id=ctx.tenant_id, facility_id=ctx.facility_id)
                if not caps & _acknowledgement_capabilities(encounter, current):
                    role = rbac.role_label_for(user_id=actor, tenant_id=ctx.tenant_id, facility_id=ctx.facility_id)
                    raise Forbidden(
                        f'Role "{role}" is not authorized to acknowledge routing to stage "{current}"',
                        role=role,
                        current_stage=current,
                    )

            StageWritePath.acknowledge_routing(encounter=encounter, actor_user_id=actor)
            logger.info(
                "Routing acknowledged",
                extra={"encounter_id": str(encounter.id), "stage": current, "actor_user_id": actor},
            )
            return TransitionOutcome(
                success=True,
                new_stage=current,
                previous_stage=current,
                routing_status=encounter.routing_status,
            )

        if not super_operator:
            caps = rbac.capabilities_for(user_id=actor, tenant_id=ctx.tenant_id, facility_id=ctx.facility_id)
            if not caps & required_capability(current):
                role = rbac.role_label_for(user_id=actor, tenant_id=ctx.tenant_id, facility_id=ctx.facility_id)
                raise Forbidden(
                    f'Role "{role}" is not authorized to advance from stage "{current}"',
                    role=role,
                    current_stage=current,
                    requested_stage=requested,
                )

            if requested not in allowed_next(current):
                raise InvalidTransition(
                    f'Invalid transition from "{current}" to "{requested}"',
                    current_stage=current,
                    requested_stage=requested,
                    allowed=sorted(allowed_next(current)),
                )

        missing = missing_context_for(requested, context)
        if missing:
            raise InvalidTransition(
                f'Moving to "{requested}" requires context: {", ".join(missing)}',
                requested_stage=requested,
                missing=missing,
            )

        StageWritePath.apply(
            encounter=encounter,
            previous_stage=current,
            new_stage=requested,
            actor_user_id=actor,
            trigger=TransitionTrigger.MANUAL,
            routing_status=RoutingStatus.ROUTED,
            source=source,
            context=context,
        )

        logger.info(
            "Stage transition applied",
            extra={
                "encounter_id": str(encounter.id),
                "previous_stage": current,
                "new_stage": requested,
                "actor_user_id": actor,
            },
        )
        return TransitionOutcome(
            success=True,
            new_stage=requested,
            previous_stage=current,
            routing_status=encounter.routing_status,
        )
