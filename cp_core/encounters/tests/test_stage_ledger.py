import pytest
from django.core.exceptions import ValidationError
from django.utils import timezone

from cp_core.encounters.ledger import StageHistoryLedger
from cp_core.encounters.models import StageTransitionEvent, TransitionTrigger
from cp_core.tests.helpers import advance_through

pytestmark = pytest.mark.django_db


def test_registration_writes_first_event(encounter, receptionist):
    events = list(StageHistoryLedger.all(encounter_id=encounter.id))
    assert len(events) == 1

    first = events[0]
    assert first.sequence == 1
    assert first.previous_stage is None
    assert first.new_stage == "registered"
    assert first.trigger == TransitionTrigger.REGISTRATION
    assert first.actor_user_id == receptionist.id


def test_sequences_are_dense_and_replay_matches_current_stage(ctx_for, encounter, receptionist, nurse):
    advance_through(
        ctx_for,
        encounter,
        [(receptionist, "at_triage"), (nurse, "vitals_taken"), (nurse, "with_doctor")],
    )

    events = list(StageHistoryLedger.all(encounter_id=encounter.id))
    assert [e.sequence for e in events] == [1, 2, 3, 4]
    assert StageHistoryLedger.replay(encounter_id=encounter.id) == [
        "registered",
        "at_triage",
        "vitals_taken",
        "with_doctor",
    ]
    assert StageHistoryLedger.latest(encounter_id=encounter.id).new_stage == encounter.current_stage


def test_replay_detects_gaps(encounter):
    StageTransitionEvent.objects.create(
        tenant_id=encounter.tenant_id,
        facility_id=encounter.facility_id,
        encounter=encounter,
        sequence=2,
        previous_stage="with_doctor",
        new_stage="at_lab",
        trigger=TransitionTrigger.MANUAL,
        occurred_at=timezone.now(),
    )

    with pytest.raises(ValueError, match="Ledger gap at sequence 2"):
        StageHistoryLedger.replay(encounter_id=encounter.id)


def test_ledger_rows_cannot_be_updated_or_deleted(encounter):
    event = StageHistoryLedger.latest(encounter_id=encounter.id)

    event.new_stage = "at_lab"
    with pytest.raises(ValidationError):
        event.save()

    with pytest.raises(ValidationError):
        event.delete()
