from __future__ import annotations

from drf_spectacular.utils import extend_schema
from rest_framework import status
from rest_framework.exceptions import NotFound, ValidationError
from rest_framework.response import Response
from rest_framework.views import APIView

from cp_core.common.api.pagination import QueuePagination, paginate
from cp_core.common.permissions import QueuePermission, RoutingPermission
from cp_core.common.scope import require_scope
from cp_core.queues.api.serializers import AwaitingRoutingSerializer, QueueRowSerializer
from cp_core.queues.filters import QueueRowFilter
from cp_core.queues.models import Dashboard
from cp_core.queues.selectors import get_encounters_awaiting_routing, get_queue


class QueueView(APIView):
    """
    /queues/<dashboard>/  (nurse | doctor | cashier)
    """
    permission_classes = [QueuePermission]

    @extend_schema(tags=["Queues"], responses={200: QueueRowSerializer(many=True)})
    def get(self, request, dashboard: str):
        scope = require_scope(request)
        if dashboard not in Dashboard.values:
            raise NotFound(f"Unknown dashboard '{dashboard}'.")

        qs = get_queue(dashboard, scope.tenant_id, scope.facility_id)
        fs = QueueRowFilter(request.query_params, queryset=qs)
        if not fs.is_valid():
            raise ValidationError(fs.errors)

        return paginate(request, fs.qs, QueueRowSerializer, paginator=QueuePagination())


class AwaitingRoutingView(APIView):
    """
    /routing/awaiting/  encounters auto-advanced after payment, not yet acknowledged
    """
    permission_classes = [RoutingPermission]

    @extend_schema(tags=["Queues"], responses={200: AwaitingRoutingSerializer(many=True)})
    def get(self, request):
        scope = require_scope(request)
        rows = get_encounters_awaiting_routing(scope.tenant_id, scope.facility_id)
        return Response(AwaitingRoutingSerializer(rows, many=True).data, status=status.HTTP_200_OK)
