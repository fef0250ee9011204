# cp_core/orders/services.py
from __future__ import annotations

import logging
from decimal import Decimal
from uuid import UUID

from django.db import transaction
from rest_framework.exceptions import ValidationError

from cp_core.billing.models import ChargeableLineItem, LineItemType
from cp_core.billing.services import LineItemService
from cp_core.common.events import publish
from cp_core.encounters.models import Encounter
from cp_core.orders.models import Order, OrderPriority, OrderStatus, OrderType

logger = logging.getLogger(__name__)

ORDER_LINE_ITEM_TYPES = {
    OrderType.LAB: LineItemType.LAB,
    OrderType.IMAGING: LineItemType.IMAGING,
    OrderType.MEDICATION: LineItemType.MEDICATION,
    OrderType.PROCEDURE: LineItemType.SERVICE,
}


class OrderService:
    """
    Write-model operations for Orders.
    - Creates the Order and, when priced, its chargeable line item atomically
    """

    @staticmethod
    @transaction.atomic
    def place(
        *,
        tenant_id: UUID,
        facility_id: UUID,
        encounter_id: UUID,
        order_type: str,
        service_code: str,
        priority: str | None = None,
        ordered_by_user_id: int | None = None,
        charge_amount: Decimal | None = None,
        description: str = "",
    ) -> Order:
        if order_type not in OrderType.values:
            raise ValidationError({"order_type": f"Unknown order type '{order_type}'."})

        encounter = Encounter.objects.filter(id=encounter_id, tenant_id=tenant_id, facility_id=facility_id).first()
        if encounter is None:
            raise ValidationError({"encounter": "Encounter not found in this facility."})
        if encounter.is_terminal:
            raise ValidationError({"encounter": f"Cannot order for a {encounter.current_stage} encounter."})

        order = Order.objects.create(
            tenant_id=tenant_id,
            facility_id=facility_id,
            encounter=encounter,
            order_type=order_type,
            service_code=service_code,
            priority=priority or OrderPriority.ROUTINE,
            ordered_by_user_id=ordered_by_user_id,
        )

        if charge_amount is not None:
            LineItemService.add_charge(
                tenant_id=tenant_id,
                facility_id=facility_id,
                encounter_id=encounter.id,
                item_type=ORDER_LINE_ITEM_TYPES[order_type],
                description=description or service_code,
                amount=charge_amount,
                source_order=order,
            )

        logger.info(
            "Order placed",
            extra={"encounter_id": str(encounter.id), "order_id": str(order.id), "order_type": order_type},
        )
        publish(
            "order.placed",
            {
                "tenant_id": str(tenant_id),
                "facility_id": str(facility_id),
                "encounter_id": str(encounter.id),
                "order_id": str(order.id),
                "order_type": order_type,
            },
        )
        return order

    @staticmethod
    @transaction.atomic
    def cancel(*, tenant_id: UUID, facility_id: UUID, order_id: UUID, actor_user_id: int | None = None) -> Order:
        """
        Cancel an order and waive whatever is still owed on its charge, so a
        paying stage is not left waiting on an item nobody will pay.
        """
        order = Order.objects.select_for_update().get(id=order_id, tenant_id=tenant_id, facility_id=facility_id)
        if order.status == OrderStatus.CANCELLED:
            return order

        # status is saved first: the settlement below re-runs routing, which skips cancelled orders
        order.status = OrderStatus.CANCELLED
        order.save(update_fields=["status", "updated_at"])

        item = ChargeableLineItem.objects.filter(source_order=order).first()
        if item is not None and not item.is_settled:
            LineItemService.waive(
                tenant_id=tenant_id,
                facility_id=facility_id,
                line_item_id=item.id,
                actor_user_id=actor_user_id,
                reason="order cancelled",
            )

        logger.info(
            "Order cancelled",
            extra={"encounter_id": str(order.encounter_id), "order_id": str(order.id), "order_type": order.order_type},
        )
        return order
