# cp_core/encounters/ledger.py
from __future__ import annotations

from typing import Any
from uuid import UUID

from django.db.models import QuerySet
from django.utils import timezone

from cp_core.encounters.models import Encounter, StageTransitionEvent


class StageHistoryLedger:
    """
    Append-only, per-encounter ordered log of stage transitions.

    Rows are never updated or deleted (the model refuses both). Sequence numbers
    are dense per encounter and guarded by a unique constraint, so two writers
    that raced past the row lock cannot both append the same position.
    """

    @staticmethod
    def append(
        *,
        encounter: Encounter,
        previous_stage: str | None,
        new_stage: str,
        actor_user_id: int | None,
        trigger: str,
        context: dict[str, Any] | None = None,
        occurred_at=None,
    ) -> StageTransitionEvent:
        last = StageHistoryLedger.latest(encounter_id=encounter.id)
        return StageTransitionEvent.objects.create(
            tenant_id=encounter.tenant_id,
            facility_id=encounter.facility_id,
            encounter=encounter,
            sequence=(last.sequence + 1) if last else 1,
            previous_stage=previous_stage,
            new_stage=new_stage,
            actor_user_id=actor_user_id,
            trigger=trigger,
            occurred_at=occurred_at or timezone.now(),
            context=context or {},
        )

    @staticmethod
    def latest(*, encounter_id: UUID) -> StageTransitionEvent | None:
        return StageTransitionEvent.objects.filter(encounter_id=encounter_id).order_by("-sequence").first()

    @staticmethod
    def all(*, encounter_id: UUID) -> QuerySet[StageTransitionEvent]:
        """Oldest first."""
        return StageTransitionEvent.objects.filter(encounter_id=encounter_id).order_by("sequence")

    @staticmethod
    def replay(*, encounter_id: UUID) -> list[str]:
        """
        Rebuild the sequence of current_stage values from the ledger alone.
        The last element is the stage the encounter must currently be in.
        """
        stages: list[str] = []
        for event in StageHistoryLedger.all(encounter_id=encounter_id):
            if not stages and event.previous_stage:
                # legacy encounter: history starts at its first tracked transition
                stages.append(event.previous_stage)
            elif stages and event.previous_stage != stages[-1]:
                raise ValueError(
                    f"Ledger gap at sequence {event.sequence}: expected previous stage "
                    f"{stages[-1]!r}, found {event.previous_stage!r}"
                )
            stages.append(event.new_stage)
        return stages
