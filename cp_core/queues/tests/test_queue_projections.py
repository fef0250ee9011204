from datetime import timedelta
from decimal import Decimal

import pytest
from django.core.management import call_command
from django.utils import timezone

from cp_core.billing.models import LineItemType
from cp_core.billing.services import LineItemService, PaymentService
from cp_core.encounters.services import EncounterService
from cp_core.patients.models import Patient
from cp_core.queues.models import QueueProjectionRow
from cp_core.queues.selectors import get_encounters_awaiting_routing, get_queue
from cp_core.queues.services import QueueProjectionService, dashboards_for
from cp_core.tests.helpers import advance_through

pytestmark = pytest.mark.django_db


def _boards(encounter):
    return set(
        QueueProjectionRow.objects.filter(encounter=encounter).values_list("dashboard", flat=True)
    )


def test_dashboards_for_stage():
    assert dashboards_for("registered", "routed") == []
    assert set(dashboards_for("vitals_taken", "routed")) == {"nurse", "doctor"}
    assert dashboards_for("paying_pharmacy", "routed") == ["cashier"]
    assert set(dashboards_for("at_triage", "awaiting_routing")) == {"nurse", "cashier"}


def test_rows_follow_stage_changes(ctx_for, encounter, receptionist, nurse, doctor):
    assert _boards(encounter) == set()

    advance_through(ctx_for, encounter, [(receptionist, "at_triage")])
    assert _boards(encounter) == {"nurse"}

    advance_through(ctx_for, encounter, [(nurse, "vitals_taken")])
    assert _boards(encounter) == {"nurse", "doctor"}

    advance_through(ctx_for, encounter, [(nurse, "with_doctor")])
    assert _boards(encounter) == {"doctor"}

    advance_through(ctx_for, encounter, [(doctor, "discharged")])
    assert _boards(encounter) == set()


def test_row_carries_patient_vitals_and_payments(ctx_for, tenant, facility, encounter, patient, receptionist, nurse):
    advance_through(ctx_for, encounter, [(receptionist, "at_triage")])
    EncounterService.record_vitals(ctx=ctx_for(nurse), encounter_id=encounter.id, vitals={"spo2": 96})

    row = QueueProjectionRow.objects.get(encounter=encounter, dashboard="nurse")
    assert row.patient_name == patient.full_name
    assert row.patient_mrn == patient.mrn
    assert row.current_stage == "at_triage"
    assert row.vitals["spo2"] == 96
    assert row.consultation_payment_status == "unpaid"
    assert row.overall_payment_status == "none"
    assert row.has_unpaid_items is False


def test_patient_rename_refreshes_rows(ctx_for, encounter, patient, receptionist):
    advance_through(ctx_for, encounter, [(receptionist, "at_triage")])

    patient.full_name = "Renamed Patient"
    patient.save()

    row = QueueProjectionRow.objects.get(encounter=encounter, dashboard="nurse")
    assert row.patient_name == "Renamed Patient"


def test_get_queue_orders_by_longest_wait(ctx_for, tenant, facility, encounter, receptionist):
    second_patient = Patient.objects.create(
        tenant_id=tenant.id, facility_id=facility.id, full_name="Second Patient", mrn="MRN-TEST-002"
    )
    second = EncounterService.register(ctx=ctx_for(receptionist), patient_id=second_patient.id)

    advance_through(ctx_for, second, [(receptionist, "at_triage")])
    advance_through(ctx_for, encounter, [(receptionist, "at_triage")])

    queue = list(get_queue("nurse", tenant.id, facility.id))
    assert [r.encounter_id for r in queue] == [second.id, encounter.id]


def test_get_queue_rejects_unknown_dashboard(tenant, facility):
    with pytest.raises(ValueError):
        get_queue("pharmacy", tenant.id, facility.id)


def test_encounters_awaiting_routing(ctx_for, tenant, facility, encounter, receptionist):
    advance_through(ctx_for, encounter, [(receptionist, "paying_consultation")])
    item = LineItemService.add_charge(
        tenant_id=tenant.id,
        facility_id=facility.id,
        encounter_id=encounter.id,
        item_type=LineItemType.CONSULTATION,
        description="Consultation",
        amount=Decimal("500.00"),
    )
    PaymentService.record_payment(
        tenant_id=tenant.id, facility_id=facility.id, line_item_id=item.id, amount=Decimal("500.00")
    )

    assert _boards(encounter) == {"nurse", "cashier"}

    rows = get_encounters_awaiting_routing(tenant.id, facility.id)
    assert len(rows) == 1
    row = rows[0]
    assert row["encounter_id"] == str(encounter.id)
    assert row["current_stage"] == "at_triage"
    assert row["suggested_next_stage"] == "at_triage"
    assert row["pending_items"][0]["line_item_id"] == str(item.id)
    assert row["patient_summary"]["mrn"] == "MRN-TEST-001"


def test_refresh_failure_does_not_break_the_transition(monkeypatch, ctx_for, encounter, receptionist):
    def _boom(**kwargs):
        raise RuntimeError("projection store unavailable")

    monkeypatch.setattr(QueueProjectionService, "refresh_encounter", staticmethod(_boom))

    advance_through(ctx_for, encounter, [(receptionist, "at_triage")])

    assert encounter.current_stage == "at_triage"


def test_rebuild_command_recreates_rows(ctx_for, tenant, facility, encounter, receptionist):
    advance_through(ctx_for, encounter, [(receptionist, "at_triage")])
    QueueProjectionRow.objects.all().delete()

    call_command("rebuild_queue_projections", "--facility-id", str(facility.id))

    assert _boards(encounter) == {"nurse"}


def test_rebuild_drops_stale_rows(tenant, facility, encounter):
    QueueProjectionRow.objects.create(
        tenant_id=tenant.id,
        facility_id=facility.id,
        dashboard="doctor",
        encounter=encounter,
        patient_id=encounter.patient_id,
        patient_name="stale",
        current_stage="with_doctor",
        current_stage_entered_at=timezone.now() - timedelta(hours=1),
        routing_status="routed",
        refreshed_at=timezone.now(),
    )

    created = QueueProjectionService.rebuild_facility(tenant_id=tenant.id, facility_id=facility.id)

    assert created == 0
    assert not QueueProjectionRow.objects.filter(encounter=encounter).exists()
