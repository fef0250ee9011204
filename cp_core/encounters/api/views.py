# cp_core/encounters/api/views.py
from __future__ import annotations

from uuid import UUID

from drf_spectacular.types import OpenApiTypes
from drf_spectacular.utils import OpenApiParameter, extend_schema
from rest_framework import status, viewsets
from rest_framework.decorators import action
from rest_framework.exceptions import ValidationError as DRFValidationError
from rest_framework.response import Response

from cp_core.common.api.exceptions import DomainAPIException
from cp_core.common.api.pagination import paginate
from cp_core.common.permissions import EncounterPermission
from cp_core.common.scope import AccessContext
from cp_core.encounters.models import Encounter
from cp_core.encounters.selectors import EncounterSelectors, get_encounter_in_scope
from cp_core.encounters.serializers import (
    AdvanceStageInputSerializer,
    EncounterCreateSerializer,
    EncounterSerializer,
    StageTransitionEventSerializer,
    TimelineEntrySerializer,
    VitalsInputSerializer,
    VitalsSerializer,
)
from cp_core.encounters.services import EncounterService, EncounterTransitionService


def _uuid_or_none(value: str | None, field_name: str) -> UUID | None:
    if not value:
        return None
    try:
        return UUID(str(value))
    except ValueError:
        raise DRFValidationError({field_name: "Invalid UUID"})


class EncounterViewSet(viewsets.ViewSet):
    permission_classes = [EncounterPermission]
    serializer_class = EncounterSerializer
    queryset = Encounter.objects.none()
    lookup_value_regex = r"[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{12}"

    @extend_schema(
        tags=["Encounters"],
        parameters=[
            OpenApiParameter("patient", OpenApiTypes.UUID, OpenApiParameter.QUERY, required=False),
            OpenApiParameter("current_stage", OpenApiTypes.STR, OpenApiParameter.QUERY, required=False),
            OpenApiParameter("routing_status", OpenApiTypes.STR, OpenApiParameter.QUERY, required=False),
        ],
        responses={200: EncounterSerializer(many=True)},
    )
    def list(self, request):
        ctx = AccessContext.from_request(request)
        qs = EncounterSelectors.list_encounters(
            tenant_id=ctx.tenant_id,
            facility_id=ctx.facility_id,
            patient_id=_uuid_or_none(request.query_params.get("patient"), "patient"),
            current_stage=request.query_params.get("current_stage"),
            routing_status=request.query_params.get("routing_status"),
        )
        return paginate(request, qs, EncounterSerializer)

    @extend_schema(tags=["Encounters"], responses={200: EncounterSerializer})
    def retrieve(self, request, pk=None):
        enc = get_encounter_in_scope(AccessContext.from_request(request), pk)
        return Response(EncounterSerializer(enc).data, status=status.HTTP_200_OK)

    @extend_schema(tags=["Encounters"], request=EncounterCreateSerializer, responses={201: EncounterSerializer})
    def create(self, request):
        ctx = AccessContext.from_request(request)

        ser = EncounterCreateSerializer(data=request.data or {})
        ser.is_valid(raise_exception=True)
        data = ser.validated_data

        enc = EncounterService.register(
            ctx=ctx,
            patient_id=data["patient_id"],
            reason=data.get("reason", "") or "",
            **{k: data[k] for k in ("consultation_fee", "consultation_payment_type") if k in data},
        )
        return Response(EncounterSerializer(enc).data, status=status.HTTP_201_CREATED)

    @extend_schema(tags=["Encounters"], request=AdvanceStageInputSerializer)
    @action(detail=True, methods=["post"], url_path="advance-stage")
    def advance_stage(self, request, pk=None):
        ctx = AccessContext.from_request(request)

        ser = AdvanceStageInputSerializer(data=request.data or {})
        ser.is_valid(raise_exception=True)

        outcome = EncounterTransitionService.advance_stage(
            ctx=ctx,
            encounter_id=pk,
            requested_stage=ser.validated_data["requested_stage"],
            actor_user_id=ser.validated_data.get("actor_id"),
            context=ser.validated_data.get("context") or {},
        )
        if not outcome.success:
            raise DomainAPIException.from_error(outcome.error)
        return Response(outcome.as_dict(), status=status.HTTP_200_OK)

    @extend_schema(tags=["Encounters"], responses={200: StageTransitionEventSerializer(many=True)})
    @action(detail=True, methods=["get"], url_path="stage-history")
    def stage_history(self, request, pk=None):
        ctx = AccessContext.from_request(request)
        enc = get_encounter_in_scope(ctx, pk)
        events = EncounterSelectors.stage_history(
            tenant_id=ctx.tenant_id, facility_id=ctx.facility_id, encounter_id=enc.id
        )
        return Response(StageTransitionEventSerializer(events, many=True).data, status=status.HTTP_200_OK)

    @extend_schema(tags=["Encounters"], responses={200: TimelineEntrySerializer(many=True)})
    @action(detail=True, methods=["get"], url_path="timeline")
    def timeline(self, request, pk=None):
        ctx = AccessContext.from_request(request)
        enc = get_encounter_in_scope(ctx, pk)
        items = EncounterSelectors.timeline_items(
            tenant_id=ctx.tenant_id, facility_id=ctx.facility_id, encounter_id=enc.id
        )
        return Response(
            {
                "encounter": {"id": str(enc.id), "current_stage": enc.current_stage},
                "entries": TimelineEntrySerializer(items, many=True).data,
            },
            status=status.HTTP_200_OK,
        )

    @extend_schema(tags=["Encounters"], request=VitalsInputSerializer, responses={200: VitalsSerializer})
    @action(detail=True, methods=["post"], url_path="vitals")
    def vitals(self, request, pk=None):
        ctx = AccessContext.from_request(request)

        ser = VitalsInputSerializer(data=request.data or {})
        ser.is_valid(raise_exception=True)

        row = EncounterService.record_vitals(ctx=ctx, encounter_id=pk, vitals=ser.validated_data)
        return Response(VitalsSerializer(row).data, status=status.HTTP_200_OK)
