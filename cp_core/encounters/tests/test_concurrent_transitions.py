import threading

import pytest
from django.db import connection

from cp_core.encounters.exceptions import InvalidTransition
from cp_core.encounters.models import EncounterStageVisit, StageTransitionEvent
from cp_core.encounters.services import EncounterTransitionService
from cp_core.tests.helpers import advance_through

pytestmark = pytest.mark.django_db


def _at_doctor(ctx_for, encounter, receptionist, nurse):
    return advance_through(
        ctx_for,
        encounter,
        [(receptionist, "at_triage"), (nurse, "vitals_taken"), (nurse, "with_doctor")],
    )


def _assert_single_lab_stay(encounter):
    assert StageTransitionEvent.objects.filter(encounter=encounter, new_stage="at_lab").count() == 1
    assert EncounterStageVisit.objects.filter(encounter=encounter, completed_at__isnull=True).count() == 1
    assert EncounterStageVisit.objects.filter(encounter=encounter, stage="at_lab").count() == 1


def test_second_request_is_revalidated_after_first_commits(
    ctx_for, encounter, receptionist, nurse, doctor, make_staff
):
    _at_doctor(ctx_for, encounter, receptionist, nurse)
    second_doctor = make_staff("doctor")

    first = EncounterTransitionService.advance_stage(
        ctx=ctx_for(doctor), encounter_id=encounter.id, requested_stage="at_lab"
    )
    # the second request was issued against with_doctor but is evaluated against the committed state
    second = EncounterTransitionService.advance_stage(
        ctx=ctx_for(second_doctor), encounter_id=encounter.id, requested_stage="at_lab"
    )

    assert first.success, first.as_dict()
    assert not second.success
    assert isinstance(second.error, InvalidTransition)
    assert second.error.details["current_stage"] == "at_lab"

    encounter.refresh_from_db()
    assert encounter.current_stage == "at_lab"
    _assert_single_lab_stay(encounter)


# SQLite serializes writers on the whole database; row locks need PostgreSQL.
@pytest.mark.django_db(transaction=True)
@pytest.mark.skipif(connection.vendor != "postgresql", reason="requires PostgreSQL row locking")
def test_two_concurrent_advances_write_one_event(ctx_for, encounter, receptionist, nurse, doctor, make_staff):
    _at_doctor(ctx_for, encounter, receptionist, nurse)
    second_doctor = make_staff("doctor")

    barrier = threading.Barrier(2)
    outcomes = []

    def _worker(user):
        try:
            barrier.wait(timeout=5)
            outcomes.append(
                EncounterTransitionService.advance_stage(
                    ctx=ctx_for(user),
                    encounter_id=encounter.id,
                    requested_stage="at_lab",
                )
            )
        finally:
            connection.close()

    threads = [threading.Thread(target=_worker, args=(u,)) for u in (doctor, second_doctor)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=10)

    assert len(outcomes) == 2
    assert sum(1 for o in outcomes if o.success) == 1
    _assert_single_lab_stay(encounter)
