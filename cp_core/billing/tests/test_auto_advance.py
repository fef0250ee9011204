from decimal import Decimal

import pytest

from cp_core.billing.models import LineItemPaymentStatus, LineItemType
from cp_core.billing.services import LineItemService, PaymentService
from cp_core.encounters.exceptions import ConcurrentModification
from cp_core.encounters.ledger import StageHistoryLedger
from cp_core.encounters.models import StageTransitionEvent, TransitionTrigger
from cp_core.encounters.services import EncounterTransitionService
from cp_core.encounters.services.auto_advance import AutoAdvanceService
from cp_core.orders.models import OrderType
from cp_core.orders.services import OrderService
from cp_core.tests.helpers import advance_through

pytestmark = pytest.mark.django_db


def _pay_in_full(tenant, facility, item, user=None):
    item.refresh_from_db()
    return PaymentService.record_payment(
        tenant_id=tenant.id,
        facility_id=facility.id,
        line_item_id=item.id,
        amount=item.balance_due,
        recorded_by_user_id=getattr(user, "id", None),
    )


def _order(tenant, facility, encounter, doctor, order_type, code, amount):
    order = OrderService.place(
        tenant_id=tenant.id,
        facility_id=facility.id,
        encounter_id=encounter.id,
        order_type=order_type,
        service_code=code,
        ordered_by_user_id=doctor.id,
        charge_amount=Decimal(amount),
    )
    return order.line_item


@pytest.fixture
def at_paying_consultation(ctx_for, tenant, facility, encounter, receptionist):
    advance_through(ctx_for, encounter, [(receptionist, "paying_consultation")])
    item = LineItemService.add_charge(
        tenant_id=tenant.id,
        facility_id=facility.id,
        encounter_id=encounter.id,
        item_type=LineItemType.CONSULTATION,
        description="Consultation",
        amount=Decimal("500.00"),
    )
    return encounter, item


def test_settling_consultation_auto_advances_to_triage(ctx_for, tenant, facility, cashier, at_paying_consultation):
    encounter, item = at_paying_consultation

    _pay_in_full(tenant, facility, item, cashier)

    encounter.refresh_from_db()
    assert encounter.current_stage == "at_triage"
    assert encounter.routing_status == "awaiting_routing"

    event = StageHistoryLedger.latest(encounter_id=encounter.id)
    assert event.trigger == TransitionTrigger.AUTO_ADVANCE
    assert event.actor_user_id is None
    assert event.previous_stage == "paying_consultation"
    assert event.context == {"line_item_id": str(item.id)}

    # the cashier acknowledges: stage stays, routing is cleared, no new ledger row
    outcome = EncounterTransitionService.advance_stage(
        ctx=ctx_for(cashier), encounter_id=encounter.id, requested_stage="at_triage"
    )
    assert outcome.success, outcome.as_dict()
    assert outcome.new_stage == "at_triage"
    assert outcome.routing_status == "routed"

    encounter.refresh_from_db()
    assert encounter.current_stage == "at_triage"
    assert encounter.routing_status == "routed"
    assert StageTransitionEvent.objects.filter(encounter=encounter).count() == 3


def test_partial_payment_does_not_advance(tenant, facility, at_paying_consultation):
    encounter, item = at_paying_consultation

    PaymentService.record_payment(
        tenant_id=tenant.id, facility_id=facility.id, line_item_id=item.id, amount=Decimal("100.00")
    )

    encounter.refresh_from_db()
    assert encounter.current_stage == "paying_consultation"


def test_waiver_counts_as_settlement(tenant, facility, cashier, at_paying_consultation):
    encounter, item = at_paying_consultation

    LineItemService.waive(tenant_id=tenant.id, facility_id=facility.id, line_item_id=item.id, actor_user_id=cashier.id)

    encounter.refresh_from_db()
    assert encounter.current_stage == "at_triage"


def test_unrelated_role_cannot_acknowledge_routing(ctx_for, tenant, facility, make_staff, at_paying_consultation):
    encounter, item = at_paying_consultation
    _pay_in_full(tenant, facility, item)

    outcome = EncounterTransitionService.advance_stage(
        ctx=ctx_for(make_staff("pharmacist")), encounter_id=encounter.id, requested_stage="at_triage"
    )
    assert not outcome.success
    assert outcome.error.code == "forbidden"
    assert "acknowledge routing" in outcome.error.message


def test_diagnosis_waits_for_every_item_then_prefers_lab(ctx_for, tenant, facility, receptionist, nurse, doctor, encounter):
    advance_through(
        ctx_for,
        encounter,
        [(receptionist, "at_triage"), (nurse, "vitals_taken"), (nurse, "with_doctor")],
    )
    lab_item = _order(tenant, facility, encounter, doctor, OrderType.LAB, "cbc", "80.00")
    imaging_item = _order(tenant, facility, encounter, doctor, OrderType.IMAGING, "chest-xray", "150.00")
    advance_through(ctx_for, encounter, [(doctor, "paying_diagnosis")])

    _pay_in_full(tenant, facility, imaging_item)
    encounter.refresh_from_db()
    assert encounter.current_stage == "paying_diagnosis"

    _pay_in_full(tenant, facility, lab_item)
    encounter.refresh_from_db()
    assert encounter.current_stage == "at_lab"
    assert encounter.routing_status == "awaiting_routing"


def test_cancelled_order_charge_no_longer_blocks_auto_advance(
    ctx_for, tenant, facility, receptionist, nurse, doctor, encounter
):
    advance_through(
        ctx_for,
        encounter,
        [(receptionist, "at_triage"), (nurse, "vitals_taken"), (nurse, "with_doctor")],
    )
    lab_item = _order(tenant, facility, encounter, doctor, OrderType.LAB, "cbc", "80.00")
    imaging_item = _order(tenant, facility, encounter, doctor, OrderType.IMAGING, "chest-xray", "150.00")
    advance_through(ctx_for, encounter, [(doctor, "paying_diagnosis")])

    OrderService.cancel(
        tenant_id=tenant.id, facility_id=facility.id, order_id=lab_item.source_order_id, actor_user_id=doctor.id
    )

    lab_item.refresh_from_db()
    assert lab_item.payment_status == LineItemPaymentStatus.WAIVED
    encounter.refresh_from_db()
    assert encounter.current_stage == "paying_diagnosis"

    _pay_in_full(tenant, facility, imaging_item)

    encounter.refresh_from_db()
    assert encounter.current_stage == "at_imaging"
    assert encounter.routing_status == "awaiting_routing"


def test_settlement_outside_paying_stage_does_nothing(ctx_for, tenant, facility, receptionist, nurse, doctor, encounter):
    advance_through(
        ctx_for,
        encounter,
        [(receptionist, "at_triage"), (nurse, "vitals_taken"), (nurse, "with_doctor")],
    )
    item = _order(tenant, facility, encounter, doctor, OrderType.LAB, "cbc", "80.00")

    _pay_in_full(tenant, facility, item)

    encounter.refresh_from_db()
    assert encounter.current_stage == "with_doctor"
    assert encounter.routing_status == "routed"


def test_auto_advance_failure_keeps_the_payment(monkeypatch, tenant, facility, at_paying_consultation):
    encounter, item = at_paying_consultation

    def _boom(**kwargs):
        raise RuntimeError("routing backend down")

    monkeypatch.setattr(AutoAdvanceService, "run", staticmethod(_boom))

    pay = _pay_in_full(tenant, facility, item)

    item.refresh_from_db()
    assert pay.pk is not None
    assert item.payment_status == LineItemPaymentStatus.PAID

    encounter.refresh_from_db()
    assert encounter.current_stage == "paying_consultation"


def test_auto_advance_retries_after_concurrent_update(monkeypatch, tenant, facility, at_paying_consultation):
    encounter, item = at_paying_consultation
    original = AutoAdvanceService.run
    calls = []

    def _flaky(**kwargs):
        calls.append(kwargs)
        if len(calls) == 1:
            raise ConcurrentModification("lost the race")
        return original(**kwargs)

    monkeypatch.setattr(AutoAdvanceService, "run", staticmethod(_flaky))

    _pay_in_full(tenant, facility, item)

    assert len(calls) == 2
    encounter.refresh_from_db()
    assert encounter.current_stage == "at_triage"


def test_auto_advance_run_is_a_no_op_when_nothing_to_do(tenant, facility, encounter):
    assert (
        AutoAdvanceService.run(tenant_id=tenant.id, facility_id=facility.id, encounter_id=encounter.id) is None
    )
