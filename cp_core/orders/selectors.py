# cp_core/orders/selectors.py
from __future__ import annotations

from uuid import UUID

from django.db.models import QuerySet

from cp_core.orders.models import Order, OrderStatus


class OrderSelector:
    """
    Read-only order queries.
    """

    @staticmethod
    def active_orders(*, tenant_id: UUID, facility_id: UUID, encounter_id: UUID) -> QuerySet[Order]:
        return (
            Order.objects.filter(tenant_id=tenant_id, facility_id=facility_id, encounter_id=encounter_id)
            .exclude(status=OrderStatus.CANCELLED)
            .order_by("created_at")
        )

    @staticmethod
    def has_active_order(*, tenant_id: UUID, facility_id: UUID, encounter_id: UUID, order_type: str) -> bool:
        return (
            OrderSelector.active_orders(tenant_id=tenant_id, facility_id=facility_id, encounter_id=encounter_id)
            .filter(order_type=order_type)
            .exists()
        )
