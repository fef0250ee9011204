# cp_core/billing/selectors.py
from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from uuid import UUID

from django.db.models import QuerySet

from cp_core.billing.models import (
    SETTLED_STATUSES,
    ChargeableLineItem,
    LineItemPaymentStatus,
    LineItemType,
)
from cp_core.encounters.models import ConsultationPaymentType, Encounter

WAIVED_CONSULTATION_TYPES = frozenset(
    {ConsultationPaymentType.FREE, ConsultationPaymentType.INSURED, ConsultationPaymentType.CREDIT}
)


@dataclass(frozen=True)
class PaymentClassification:
    consultation_payment_status: str  # waived | paid | unpaid
    overall_payment_status: str  # partial | unpaid | paid | none
    has_unpaid_items: bool


class LineItemSelector:
    """
    Read-only billing queries used by the workflow engine and queue projections.
    """

    @staticmethod
    def for_encounter(*, tenant_id: UUID, facility_id: UUID, encounter_id: UUID) -> QuerySet[ChargeableLineItem]:
        return ChargeableLineItem.objects.filter(
            tenant_id=tenant_id,
            facility_id=facility_id,
            encounter_id=encounter_id,
        ).order_by("created_at")

    @staticmethod
    def is_fully_settled(*, tenant_id: UUID, facility_id: UUID, encounter_id: UUID) -> bool:
        """
        Full rescan: an encounter is settled when none of its line items is
        outside paid/waived. Never trusts a cached counter.
        """
        return not (
            LineItemSelector.for_encounter(tenant_id=tenant_id, facility_id=facility_id, encounter_id=encounter_id)
            .exclude(payment_status__in=SETTLED_STATUSES)
            .exists()
        )

    @staticmethod
    def outstanding_total(*, tenant_id: UUID, facility_id: UUID, encounter_id: UUID) -> Decimal:
        items = LineItemSelector.for_encounter(tenant_id=tenant_id, facility_id=facility_id, encounter_id=encounter_id)
        return sum((i.balance_due for i in items), Decimal("0.00"))


def classify_payments(encounter: Encounter, items: list[ChargeableLineItem] | None = None) -> PaymentClassification:
    """
    3-axis payment rollup used by dashboards.
    """
    if items is None:
        items = list(
            LineItemSelector.for_encounter(
                tenant_id=encounter.tenant_id,
                facility_id=encounter.facility_id,
                encounter_id=encounter.id,
            )
        )

    if encounter.consultation_payment_type in WAIVED_CONSULTATION_TYPES:
        consultation = "waived"
    elif encounter.fee_paid > 0 or any(
        i.item_type == LineItemType.CONSULTATION and i.is_settled for i in items
    ):
        consultation = "paid"
    else:
        consultation = "unpaid"

    unpaid = [i for i in items if not i.is_settled]
    if any(i.payment_status == LineItemPaymentStatus.PARTIAL for i in unpaid):
        overall = "partial"
    elif unpaid:
        overall = "unpaid"
    elif items:
        overall = "paid"
    else:
        overall = "none"

    return PaymentClassification(
        consultation_payment_status=consultation,
        overall_payment_status=overall,
        has_unpaid_items=bool(unpaid),
    )
