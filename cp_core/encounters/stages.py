# cp_core/encounters/stages.py
"""
Stage catalog: the static definition of the care pathway.

Pure lookups only. Unknown stage names are rejected here so that no other
layer ever sees an unvalidated stage string.
"""
from __future__ import annotations

from dataclasses import dataclass

from django.db import models

from cp_core.encounters.exceptions import InvalidTransition
from cp_core.iam.roles import Capability


class Stage(models.TextChoices):
    REGISTERED = "registered", "Registered"
    PAYING_CONSULTATION = "paying_consultation", "Paying consultation"
    AT_TRIAGE = "at_triage", "At triage"
    VITALS_TAKEN = "vitals_taken", "Vitals taken"
    WITH_DOCTOR = "with_doctor", "With doctor"
    PAYING_DIAGNOSIS = "paying_diagnosis", "Paying diagnosis"
    AT_LAB = "at_lab", "At lab"
    AT_IMAGING = "at_imaging", "At imaging"
    PAYING_PHARMACY = "paying_pharmacy", "Paying pharmacy"
    AT_PHARMACY = "at_pharmacy", "At pharmacy"
    ADMITTED = "admitted", "Admitted"
    DISCHARGED = "discharged", "Discharged"
    CANCELLED = "cancelled", "Cancelled"


class RoutingStatus(models.TextChoices):
    ROUTED = "routed", "Routed"
    AWAITING_ROUTING = "awaiting_routing", "Awaiting routing"


@dataclass(frozen=True)
class StageRule:
    stage: str
    next_stages: frozenset[str]
    required_capabilities: frozenset[str]


def _rule(stage: str, next_stages: tuple[str, ...], capabilities: tuple[str, ...]) -> StageRule:
    # plain str values, so catalog output is safe for JSON and DB writes
    return StageRule(
        stage=str(stage),
        next_stages=frozenset(str(s) for s in next_stages),
        required_capabilities=frozenset(capabilities),
    )


STAGE_CATALOG: dict[str, StageRule] = {
    r.stage: r
    for r in (
        _rule(
            Stage.REGISTERED,
            (Stage.PAYING_CONSULTATION, Stage.AT_TRIAGE, Stage.VITALS_TAKEN, Stage.CANCELLED),
            (Capability.RECEPTION,),
        ),
        _rule(
            Stage.PAYING_CONSULTATION,
            (Stage.AT_TRIAGE, Stage.VITALS_TAKEN, Stage.CANCELLED),
            (Capability.RECEPTION, Capability.CASHIER),
        ),
        _rule(Stage.AT_TRIAGE, (Stage.VITALS_TAKEN, Stage.CANCELLED), (Capability.TRIAGE,)),
        _rule(Stage.VITALS_TAKEN, (Stage.WITH_DOCTOR, Stage.CANCELLED), (Capability.TRIAGE,)),
        _rule(
            Stage.WITH_DOCTOR,
            (
                Stage.PAYING_DIAGNOSIS,
                Stage.AT_LAB,
                Stage.AT_IMAGING,
                Stage.PAYING_PHARMACY,
                Stage.AT_PHARMACY,
                Stage.ADMITTED,
                Stage.DISCHARGED,
                Stage.CANCELLED,
            ),
            (Capability.CONSULTATION,),
        ),
        _rule(
            Stage.PAYING_DIAGNOSIS,
            (Stage.AT_LAB, Stage.AT_IMAGING, Stage.AT_PHARMACY, Stage.WITH_DOCTOR, Stage.CANCELLED),
            (Capability.CASHIER,),
        ),
        _rule(Stage.AT_LAB, (Stage.AT_IMAGING, Stage.WITH_DOCTOR, Stage.CANCELLED), (Capability.LAB,)),
        _rule(Stage.AT_IMAGING, (Stage.AT_LAB, Stage.WITH_DOCTOR, Stage.CANCELLED), (Capability.IMAGING,)),
        _rule(Stage.PAYING_PHARMACY, (Stage.AT_PHARMACY, Stage.CANCELLED), (Capability.CASHIER,)),
        _rule(Stage.AT_PHARMACY, (Stage.WITH_DOCTOR, Stage.DISCHARGED), (Capability.PHARMACY,)),
        _rule(Stage.ADMITTED, (Stage.DISCHARGED,), (Capability.INPATIENT_CARE, Capability.CONSULTATION)),
        _rule(Stage.DISCHARGED, (), ()),
        _rule(Stage.CANCELLED, (), ()),
    )
}

TERMINAL_STAGES = frozenset({Stage.DISCHARGED.value, Stage.CANCELLED.value})
PAYING_STAGES = frozenset(
    {Stage.PAYING_CONSULTATION.value, Stage.PAYING_DIAGNOSIS.value, Stage.PAYING_PHARMACY.value}
)

# Transitions that need extra context keys to be meaningful.
REQUIRED_TRANSITION_CONTEXT: dict[str, tuple[str, ...]] = {
    Stage.ADMITTED.value: ("ward", "bed"),
}


def parse_stage(value) -> str:
    """Return the canonical stage value or raise InvalidTransition for unknown names."""
    raw = str(value or "").strip().lower()
    if raw not in STAGE_CATALOG:
        raise InvalidTransition(f'Unknown stage "{value}"', stage=str(value))
    return raw


def allowed_next(stage: str) -> frozenset[str]:
    return STAGE_CATALOG[parse_stage(stage)].next_stages


def required_capability(stage: str) -> frozenset[str]:
    return STAGE_CATALOG[parse_stage(stage)].required_capabilities


def is_terminal(stage: str) -> bool:
    return parse_stage(stage) in TERMINAL_STAGES


def is_paying(stage: str) -> bool:
    return parse_stage(stage) in PAYING_STAGES


def missing_context_for(stage: str, context: dict | None) -> list[str]:
    context = context or {}
    return [key for key in REQUIRED_TRANSITION_CONTEXT.get(stage, ()) if not context.get(key)]
