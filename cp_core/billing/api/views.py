from __future__ import annotations

from decimal import Decimal
from uuid import UUID

from drf_spectacular.utils import extend_schema
from rest_framework import status, viewsets
from rest_framework.decorators import action
from rest_framework.response import Response

from cp_core.billing.api.serializers import (
    LineItemSerializer,
    PaymentCreateSerializer,
    PaymentSerializer,
    WaiveSerializer,
)
from cp_core.billing.models import ChargeableLineItem
from cp_core.billing.services import LineItemService, PaymentService
from cp_core.common.permissions import BillingPermission
from cp_core.common.scope import require_scope


class LineItemViewSet(viewsets.GenericViewSet):
    """
    Cashier actions on a single line item. Settling an item may move the
    encounter on by itself (payment auto-advance).
    """
    permission_classes = [BillingPermission]
    serializer_class = LineItemSerializer
    queryset = ChargeableLineItem.objects.none()
    lookup_value_regex = r"[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{12}"

    @extend_schema(tags=["Billing"], request=PaymentCreateSerializer, responses={201: PaymentSerializer})
    @action(detail=True, methods=["post"], url_path="payments")
    def payments(self, request, pk=None):
        scope = require_scope(request)

        ser = PaymentCreateSerializer(data=request.data)
        ser.is_valid(raise_exception=True)

        pay = PaymentService.record_payment(
            tenant_id=scope.tenant_id,
            facility_id=scope.facility_id,
            line_item_id=UUID(str(pk)),
            amount=Decimal(str(ser.validated_data["amount"])),
            method=ser.validated_data["method"],
            reference=ser.validated_data.get("reference", ""),
            recorded_by_user_id=getattr(request.user, "id", None),
        )
        return Response(PaymentSerializer(pay).data, status=status.HTTP_201_CREATED)

    @extend_schema(tags=["Billing"], request=WaiveSerializer, responses={200: LineItemSerializer})
    @action(detail=True, methods=["post"], url_path="waive")
    def waive(self, request, pk=None):
        scope = require_scope(request)

        ser = WaiveSerializer(data=request.data or {})
        ser.is_valid(raise_exception=True)

        item = LineItemService.waive(
            tenant_id=scope.tenant_id,
            facility_id=scope.facility_id,
            line_item_id=UUID(str(pk)),
            actor_user_id=getattr(request.user, "id", None),
            reason=ser.validated_data.get("reason", ""),
        )
        return Response(LineItemSerializer(item).data, status=status.HTTP_200_OK)
