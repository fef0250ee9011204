# cp_core/queues/selectors.py
from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal
from uuid import UUID

from django.db.models import QuerySet
from django.utils import timezone

from cp_core.billing.models import SETTLED_STATUSES
from cp_core.billing.selectors import LineItemSelector
from cp_core.encounters.exceptions import InvalidTransition
from cp_core.encounters.ledger import StageHistoryLedger
from cp_core.encounters.models import Encounter, TransitionTrigger
from cp_core.encounters.routing import resolve_for_encounter
from cp_core.encounters.stages import RoutingStatus
from cp_core.queues.models import Dashboard, QueueProjectionRow


def get_queue(dashboard: str, tenant_id: UUID, facility_id: UUID) -> QuerySet[QueueProjectionRow]:
    """Rows for one dashboard, longest-waiting first."""
    if dashboard not in Dashboard.values:
        raise ValueError(f"Unknown dashboard '{dashboard}'")
    return QueueProjectionRow.objects.filter(
        tenant_id=tenant_id,
        facility_id=facility_id,
        dashboard=dashboard,
    ).order_by("current_stage_entered_at", "created_at")


def _minutes_since(moment, now) -> Decimal | None:
    if moment is None:
        return None
    seconds = max((now - moment).total_seconds(), 0)
    return (Decimal(str(seconds)) / Decimal("60")).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


def _suggested_next_stage(encounter: Encounter) -> str:
    # re-run the routing decision the system made; it is idempotent
    last = StageHistoryLedger.latest(encounter_id=encounter.id)
    if last is None or last.trigger != TransitionTrigger.AUTO_ADVANCE or not last.previous_stage:
        return encounter.current_stage
    try:
        return resolve_for_encounter(encounter, last.previous_stage)
    except InvalidTransition:
        return encounter.current_stage


def get_encounters_awaiting_routing(tenant_id: UUID, facility_id: UUID) -> list[dict]:
    """
    Encounters the system advanced after payment that staff have not yet
    acknowledged, most recent first.
    """
    now = timezone.now()
    encounters = (
        Encounter.objects.filter(
            tenant_id=tenant_id,
            facility_id=facility_id,
            routing_status=RoutingStatus.AWAITING_ROUTING,
        )
        .select_related("patient")
        .order_by("-current_stage_entered_at")
    )

    results: list[dict] = []
    for enc in encounters:
        settled = LineItemSelector.for_encounter(
            tenant_id=tenant_id, facility_id=facility_id, encounter_id=enc.id
        ).filter(payment_status__in=SETTLED_STATUSES)

        results.append(
            {
                "encounter_id": str(enc.id),
                "patient_summary": enc.patient.summary(today=now.date()),
                "current_stage": enc.current_stage,
                "pending_items": [
                    {
                        "line_item_id": str(item.id),
                        "description": item.description,
                        "department": item.department,
                        "payment_status": item.payment_status,
                    }
                    for item in settled
                ],
                "wait_minutes": _minutes_since(enc.current_stage_entered_at, now),
                "suggested_next_stage": _suggested_next_stage(enc),
            }
        )
    return results
