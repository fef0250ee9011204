# cp_core/queues/subscribers.py
from uuid import UUID

from cp_core.common.events import subscribe
from cp_core.encounters.models import Encounter
from cp_core.encounters.stages import TERMINAL_STAGES
from cp_core.queues.services import QueueProjectionService


def _refresh_from_payload(payload: dict) -> None:
    QueueProjectionService.safe_refresh(
        tenant_id=UUID(payload["tenant_id"]),
        facility_id=UUID(payload["facility_id"]),
        encounter_id=UUID(payload["encounter_id"]),
    )


@subscribe("encounter.stage_changed")
def on_stage_changed(payload: dict) -> None:
    _refresh_from_payload(payload)


@subscribe("encounter.routing_acknowledged")
def on_routing_acknowledged(payload: dict) -> None:
    _refresh_from_payload(payload)


@subscribe("encounter.vitals_recorded")
def on_vitals_recorded(payload: dict) -> None:
    _refresh_from_payload(payload)


@subscribe("billing.line_item.changed")
def on_line_item_changed(payload: dict) -> None:
    _refresh_from_payload(payload)


@subscribe("order.placed")
def on_order_placed(payload: dict) -> None:
    _refresh_from_payload(payload)


def on_patient_saved(sender, instance, created, **kwargs) -> None:
    """post_save receiver: demographics are copied into queue rows."""
    if created:
        return
    active = Encounter.objects.filter(
        tenant_id=instance.tenant_id,
        facility_id=instance.facility_id,
        patient_id=instance.id,
    ).exclude(current_stage__in=TERMINAL_STAGES)
    for encounter_id in active.values_list("id", flat=True):
        QueueProjectionService.safe_refresh(
            tenant_id=instance.tenant_id,
            facility_id=instance.facility_id,
            encounter_id=encounter_id,
        )
