# cp_core/encounters/services/auto_advance.py
"""
Payment-gated auto-advance.

When a line item settles, an encounter waiting at a paying stage moves on by
itself once nothing is left to pay. The move is system-driven: no capability
check, no actor, and it is flagged `awaiting_routing` so staff confirm it.

A failure here must never undo or fail the payment that triggered it.
"""
from __future__ import annotations

import logging
from uuid import UUID

from django.conf import settings
from django.db import transaction

from cp_core.billing.selectors import LineItemSelector
from cp_core.common.events import subscribe
from cp_core.common.scope import AccessContext
from cp_core.encounters.exceptions import ConcurrentModification, NotFound
from cp_core.encounters.models import TransitionTrigger
from cp_core.encounters.routing import resolve_for_encounter
from cp_core.encounters.selectors import get_encounter_in_scope, resolve_current_stage
from cp_core.encounters.services.transitions import StageWritePath
from cp_core.encounters.stages import PAYING_STAGES, RoutingStatus

logger = logging.getLogger(__name__)


class AutoAdvanceService:
    @staticmethod
    @transaction.atomic
    def run(
        *,
        tenant_id: UUID,
        facility_id: UUID,
        encounter_id: UUID,
        line_item_id: UUID | None = None,
    ) -> str | None:
        """
        Returns the stage the encounter was advanced to, or None when nothing happened.
        """
        ctx = AccessContext(tenant_id=tenant_id, facility_id=facility_id)
        encounter = get_encounter_in_scope(ctx, encounter_id, for_update=True)
        current, source = resolve_current_stage(encounter)

        if current not in PAYING_STAGES:
            return None

        if not LineItemSelector.is_fully_settled(
            tenant_id=tenant_id,
            facility_id=facility_id,
            encounter_id=encounter.id,
        ):
            logger.debug(
                "Encounter still has outstanding line items",
                extra={"encounter_id": str(encounter.id), "stage": current},
            )
            return None

        next_stage = resolve_for_encounter(encounter, current)
        StageWritePath.apply(
            encounter=encounter,
            previous_stage=current,
            new_stage=next_stage,
            actor_user_id=None,
            trigger=TransitionTrigger.AUTO_ADVANCE,
            routing_status=RoutingStatus.AWAITING_ROUTING,
            source=source,
            context={"line_item_id": str(line_item_id)} if line_item_id else {},
        )

        logger.info(
            "Encounter auto-advanced after settlement",
            extra={"encounter_id": str(encounter.id), "previous_stage": current, "new_stage": next_stage},
        )
        return next_stage


@subscribe("billing.line_item.settled")
def advance_after_settlement(payload: dict) -> None:
    """
    Settlement hook. Each attempt runs in its own savepoint so a failed
    attempt rolls back only its own writes; the payment stays.
    """
    attempts = max(int(getattr(settings, "ENCOUNTER_AUTO_ADVANCE_MAX_ATTEMPTS", 3)), 1)
    encounter_id = payload.get("encounter_id")

    for attempt in range(1, attempts + 1):
        try:
            with transaction.atomic():
                AutoAdvanceService.run(
                    tenant_id=payload["tenant_id"],
                    facility_id=payload["facility_id"],
                    encounter_id=encounter_id,
                    line_item_id=payload.get("line_item_id"),
                )
            return
        except ConcurrentModification:
            logger.warning(
                "Auto-advance lost a concurrent update, retrying",
                extra={"encounter_id": encounter_id, "attempt": attempt, "max_attempts": attempts},
            )
        except NotFound:
            logger.warning("Auto-advance skipped: encounter not found", extra={"encounter_id": encounter_id})
            return
        except Exception:
            logger.exception("Auto-advance failed", extra={"encounter_id": encounter_id, "attempt": attempt})
            return

    logger.error(
        "Auto-advance gave up after repeated concurrent updates",
        extra={"encounter_id": encounter_id, "max_attempts": attempts},
    )
