# cp_core/encounters/routing.py
"""
Routing decision: where a patient goes once a paying stage is fully settled.

`resolve_next_stage` is a pure function of (source stage, which order types
exist); `resolve_for_encounter` does the order lookups. Both are idempotent:
the same inputs always produce the same stage and nothing is written.
"""
from __future__ import annotations

from dataclasses import dataclass

from cp_core.encounters.exceptions import InvalidTransition
from cp_core.encounters.models import Encounter
from cp_core.encounters.stages import Stage, parse_stage
from cp_core.orders.models import OrderType
from cp_core.orders.selectors import OrderSelector


@dataclass(frozen=True)
class OrderPresence:
    lab: bool = False
    imaging: bool = False
    medication: bool = False


def resolve_next_stage(source_stage: str, orders: OrderPresence) -> str:
    source = parse_stage(source_stage)

    if source == Stage.PAYING_CONSULTATION:
        return Stage.AT_TRIAGE.value

    if source == Stage.PAYING_PHARMACY:
        return Stage.AT_PHARMACY.value

    if source == Stage.PAYING_DIAGNOSIS:
        if orders.lab:
            return Stage.AT_LAB.value
        if orders.imaging:
            return Stage.AT_IMAGING.value
        if orders.medication:
            return Stage.AT_PHARMACY.value
        # Nothing to route to: send the patient back to the doctor.
        # TODO: confirm with clinical ops whether an order-less diagnosis payment should be flagged instead.
        return Stage.WITH_DOCTOR.value

    raise InvalidTransition(f'No routing decision exists for stage "{source}"', stage=source)


def order_presence_for(encounter: Encounter) -> OrderPresence:
    def _has(order_type: str) -> bool:
        return OrderSelector.has_active_order(
            tenant_id=encounter.tenant_id,
            facility_id=encounter.facility_id,
            encounter_id=encounter.id,
            order_type=order_type,
        )

    return OrderPresence(
        lab=_has(OrderType.LAB),
        imaging=_has(OrderType.IMAGING),
        medication=_has(OrderType.MEDICATION),
    )


def resolve_for_encounter(encounter: Encounter, source_stage: str) -> str:
    return resolve_next_stage(source_stage, order_presence_for(encounter))
