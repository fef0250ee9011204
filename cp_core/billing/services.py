# cp_core/billing/services.py
from __future__ import annotations

import logging
from decimal import Decimal
from uuid import UUID

from django.db import transaction
from django.db.models import F
from django.utils import timezone
from rest_framework.exceptions import ValidationError

from cp_core.audit.services import AuditService
from cp_core.billing.models import (
    ChargeableLineItem,
    LineItemPayment,
    LineItemPaymentStatus,
    LineItemType,
    PaymentMethod,
)
from cp_core.common.events import publish
from cp_core.encounters.models import Encounter

logger = logging.getLogger(__name__)

LINE_ITEM_CHANGED = "billing.line_item.changed"
LINE_ITEM_SETTLED = "billing.line_item.settled"


def _money(value) -> Decimal:
    return Decimal(str(value)).quantize(Decimal("0.01"))


def _line_item_payload(item: ChargeableLineItem) -> dict:
    return {
        "tenant_id": str(item.tenant_id),
        "facility_id": str(item.facility_id),
        "encounter_id": str(item.encounter_id),
        "line_item_id": str(item.id),
        "payment_status": item.payment_status,
    }


def _lock_line_item(*, tenant_id: UUID, facility_id: UUID, line_item_id: UUID) -> ChargeableLineItem:
    try:
        return ChargeableLineItem.objects.select_for_update().get(
            id=line_item_id, tenant_id=tenant_id, facility_id=facility_id
        )
    except ChargeableLineItem.DoesNotExist:
        raise ValidationError({"line_item": "Line item not found in this facility."})


def _mark_settled(item: ChargeableLineItem, *, status: str, actor_user_id: int | None) -> None:
    item.payment_status = status
    item.settled_at = timezone.now()
    item.settled_by_user_id = actor_user_id


def _after_change(item: ChargeableLineItem, *, settled: bool) -> None:
    payload = _line_item_payload(item)
    publish(LINE_ITEM_CHANGED, payload)
    if settled:
        # Subscribers (auto-advance) isolate their own failures in a savepoint.
        publish(LINE_ITEM_SETTLED, payload)


class LineItemService:
    @staticmethod
    @transaction.atomic
    def add_charge(
        *,
        tenant_id: UUID,
        facility_id: UUID,
        encounter_id: UUID,
        item_type: str,
        description: str,
        amount: Decimal,
        source_order=None,
    ) -> ChargeableLineItem:
        if item_type not in LineItemType.values:
            raise ValidationError({"item_type": f"Unknown line item type '{item_type}'."})

        amount = _money(amount)
        if amount < 0:
            raise ValidationError({"amount": "Amount must be >= 0."})

        encounter = Encounter.objects.filter(id=encounter_id, tenant_id=tenant_id, facility_id=facility_id).first()
        if encounter is None:
            raise ValidationError({"encounter": "Encounter not found in this facility."})

        item = ChargeableLineItem.objects.create(
            tenant_id=tenant_id,
            facility_id=facility_id,
            encounter=encounter,
            source_order=source_order,
            item_type=item_type,
            description=description,
            amount=amount,
        )

        logger.info(
            "Line item added",
            extra={"encounter_id": str(encounter.id), "line_item_id": str(item.id), "item_type": item_type},
        )
        _after_change(item, settled=False)
        return item

    @staticmethod
    @transaction.atomic
    def waive(
        *,
        tenant_id: UUID,
        facility_id: UUID,
        line_item_id: UUID,
        actor_user_id: int | None = None,
        reason: str = "",
    ) -> ChargeableLineItem:
        item = _lock_line_item(tenant_id=tenant_id, facility_id=facility_id, line_item_id=line_item_id)

        if item.is_settled:
            raise ValidationError({"line_item": f"Line item is already {item.payment_status}."})

        _mark_settled(item, status=LineItemPaymentStatus.WAIVED, actor_user_id=actor_user_id)
        item.save(update_fields=["payment_status", "settled_at", "settled_by_user_id", "updated_at"])

        AuditService.log(
            event_code="billing.line_item.waived",
            entity_type="ChargeableLineItem",
            entity_id=item.id,
            tenant_id=tenant_id,
            facility_id=facility_id,
            actor_user_id=actor_user_id,
            metadata={"encounter_id": str(item.encounter_id), "reason": reason or ""},
        )

        logger.info("Line item waived", extra={"encounter_id": str(item.encounter_id), "line_item_id": str(item.id)})
        _after_change(item, settled=True)
        return item


class PaymentService:
    @staticmethod
    @transaction.atomic
    def record_payment(
        *,
        tenant_id: UUID,
        facility_id: UUID,
        line_item_id: UUID,
        amount: Decimal,
        method: str = PaymentMethod.CASH,
        reference: str = "",
        recorded_by_user_id: int | None = None,
    ) -> LineItemPayment:
        """
        Record a (possibly partial) payment against one line item.

        The payment commits even if the follow-up auto-advance fails; see
        cp_core.encounters.services.auto_advance.
        """
        item = _lock_line_item(tenant_id=tenant_id, facility_id=facility_id, line_item_id=line_item_id)

        if item.is_settled:
            raise ValidationError({"line_item": f"Cannot record payment for a {item.payment_status} line item."})

        amount = _money(amount)
        if amount <= 0:
            raise ValidationError({"amount": "Payment amount must be > 0."})
        if amount > item.balance_due:
            raise ValidationError({"amount": f"Payment exceeds balance due ({item.balance_due})."})

        pay = LineItemPayment.objects.create(
            tenant_id=tenant_id,
            facility_id=facility_id,
            line_item=item,
            amount=amount,
            method=method,
            reference=reference or "",
            recorded_by_user_id=recorded_by_user_id,
        )

        item.amount_paid = (item.amount_paid or Decimal("0.00")) + pay.amount
        settled = item.amount_paid >= item.amount
        if settled:
            _mark_settled(item, status=LineItemPaymentStatus.PAID, actor_user_id=recorded_by_user_id)
        else:
            item.payment_status = LineItemPaymentStatus.PARTIAL

        item.save(update_fields=["amount_paid", "payment_status", "settled_at", "settled_by_user_id", "updated_at"])

        if item.item_type == LineItemType.CONSULTATION:
            # column update only: stage fields and version belong to the stage write path
            Encounter.objects.filter(pk=item.encounter_id).update(fee_paid=F("fee_paid") + pay.amount)

        AuditService.log(
            event_code="billing.payment.recorded",
            entity_type="ChargeableLineItem",
            entity_id=item.id,
            tenant_id=tenant_id,
            facility_id=facility_id,
            actor_user_id=recorded_by_user_id,
            metadata={
                "encounter_id": str(item.encounter_id),
                "payment_id": str(pay.id),
                "amount": str(pay.amount),
                "method": method,
                "payment_status": item.payment_status,
            },
        )

        logger.info(
            "Payment recorded",
            extra={
                "encounter_id": str(item.encounter_id),
                "line_item_id": str(item.id),
                "payment_status": item.payment_status,
            },
        )
        _after_change(item, settled=settled)
        return pay
