from decimal import Decimal

import pytest

from cp_core.encounters.exceptions import InvalidTransition
from cp_core.encounters.routing import (
    OrderPresence,
    order_presence_for,
    resolve_for_encounter,
    resolve_next_stage,
)
from cp_core.orders.models import OrderType
from cp_core.orders.services import OrderService


def test_consultation_payment_goes_to_triage():
    assert resolve_next_stage("paying_consultation", OrderPresence()) == "at_triage"


def test_pharmacy_payment_goes_to_pharmacy():
    assert resolve_next_stage("paying_pharmacy", OrderPresence(medication=True)) == "at_pharmacy"


@pytest.mark.parametrize(
    "orders,expected",
    [
        (OrderPresence(lab=True, imaging=True, medication=True), "at_lab"),
        (OrderPresence(imaging=True, medication=True), "at_imaging"),
        (OrderPresence(medication=True), "at_pharmacy"),
        (OrderPresence(), "with_doctor"),
    ],
)
def test_diagnosis_payment_priority(orders, expected):
    assert resolve_next_stage("paying_diagnosis", orders) == expected


def test_non_paying_stage_has_no_routing():
    with pytest.raises(InvalidTransition):
        resolve_next_stage("with_doctor", OrderPresence(lab=True))


@pytest.mark.django_db
def test_order_presence_reads_active_orders(tenant, facility, encounter):
    OrderService.place(
        tenant_id=tenant.id,
        facility_id=facility.id,
        encounter_id=encounter.id,
        order_type=OrderType.IMAGING,
        service_code="chest-xray",
    )
    OrderService.place(
        tenant_id=tenant.id,
        facility_id=facility.id,
        encounter_id=encounter.id,
        order_type=OrderType.PROCEDURE,
        service_code="dressing",
    )

    assert order_presence_for(encounter) == OrderPresence(imaging=True)


@pytest.mark.django_db
def test_resolve_for_encounter_is_idempotent(tenant, facility, encounter):
    for order_type, code in ((OrderType.IMAGING, "chest-xray"), (OrderType.LAB, "cbc")):
        OrderService.place(
            tenant_id=tenant.id,
            facility_id=facility.id,
            encounter_id=encounter.id,
            order_type=order_type,
            service_code=code,
            charge_amount=Decimal("100.00"),
        )

    first = resolve_for_encounter(encounter, "paying_diagnosis")
    second = resolve_for_encounter(encounter, "paying_diagnosis")
    assert first == second == "at_lab"


@pytest.mark.django_db
def test_cancelled_orders_do_not_route(tenant, facility, encounter):
    order = OrderService.place(
        tenant_id=tenant.id,
        facility_id=facility.id,
        encounter_id=encounter.id,
        order_type=OrderType.LAB,
        service_code="cbc",
    )
    OrderService.cancel(tenant_id=tenant.id, facility_id=facility.id, order_id=order.id)

    assert resolve_for_encounter(encounter, "paying_diagnosis") == "with_doctor"
