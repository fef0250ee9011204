# cp_core/queues/services.py
"""
Queue projection writer.

Rows are patched per encounter (delete + recreate) inside the triggering
transaction, so a dashboard read right after a write sees it. A refresh that
fails is retried, then retried once more after commit; it never rolls back
the write that triggered it.
"""
from __future__ import annotations

import logging
from datetime import date
from uuid import UUID

from django.conf import settings
from django.db import transaction
from django.db.models import Q
from django.utils import timezone

from cp_core.billing.selectors import classify_payments
from cp_core.encounters.models import Encounter, EncounterVitals
from cp_core.encounters.stages import PAYING_STAGES, RoutingStatus, Stage
from cp_core.queues.models import Dashboard, QueueProjectionRow

logger = logging.getLogger(__name__)

DASHBOARD_STAGES: dict[str, frozenset[str]] = {
    Dashboard.NURSE: frozenset({Stage.AT_TRIAGE.value, Stage.VITALS_TAKEN.value, Stage.ADMITTED.value}),
    Dashboard.DOCTOR: frozenset({Stage.VITALS_TAKEN.value, Stage.WITH_DOCTOR.value}),
    Dashboard.CASHIER: PAYING_STAGES,
}


def dashboards_for(current_stage: str, routing_status: str) -> list[str]:
    boards = [str(d) for d, stages in DASHBOARD_STAGES.items() if current_stage in stages]
    if routing_status == RoutingStatus.AWAITING_ROUTING and Dashboard.CASHIER not in boards:
        boards.append(Dashboard.CASHIER.value)
    return boards


def _vitals_snapshot(encounter: Encounter) -> dict:
    vitals = EncounterVitals.objects.filter(encounter=encounter).first()
    return vitals.snapshot() if vitals else {}


def _build_rows(encounter: Encounter, *, today: date | None = None) -> list[QueueProjectionRow]:
    boards = dashboards_for(encounter.current_stage, encounter.routing_status)
    if not boards:
        return []

    patient = encounter.patient
    summary = patient.summary(today=today)
    payments = classify_payments(encounter)
    vitals = _vitals_snapshot(encounter)
    now = timezone.now()

    return [
        QueueProjectionRow(
            tenant_id=encounter.tenant_id,
            facility_id=encounter.facility_id,
            dashboard=board,
            encounter=encounter,
            patient_id=patient.id,
            patient_name=summary["full_name"],
            patient_mrn=summary["mrn"] or "",
            patient_gender=summary["gender"] or "",
            patient_age=summary["age"],
            current_stage=encounter.current_stage,
            current_stage_entered_at=encounter.current_stage_entered_at,
            routing_status=encounter.routing_status,
            vitals=vitals,
            consultation_payment_status=payments.consultation_payment_status,
            overall_payment_status=payments.overall_payment_status,
            has_unpaid_items=payments.has_unpaid_items,
            refreshed_at=now,
        )
        for board in boards
    ]


def _queue_candidates(*, tenant_id: UUID, facility_id: UUID):
    stages = set().union(*DASHBOARD_STAGES.values())
    return (
        Encounter.objects.filter(tenant_id=tenant_id, facility_id=facility_id)
        .filter(Q(current_stage__in=stages) | Q(routing_status=RoutingStatus.AWAITING_ROUTING))
        .select_related("patient")
    )


class QueueProjectionService:
    @staticmethod
    def refresh_encounter(*, tenant_id: UUID, facility_id: UUID, encounter_id: UUID) -> int:
        """
        Replace this encounter's rows. Returns the number of rows written.
        """
        with transaction.atomic():
            QueueProjectionRow.objects.filter(
                tenant_id=tenant_id, facility_id=facility_id, encounter_id=encounter_id
            ).delete()

            encounter = (
                Encounter.objects.filter(id=encounter_id, tenant_id=tenant_id, facility_id=facility_id)
                .select_related("patient")
                .first()
            )
            if encounter is None:
                return 0

            rows = _build_rows(encounter)
            QueueProjectionRow.objects.bulk_create(rows)
            return len(rows)

    @staticmethod
    def safe_refresh(*, tenant_id: UUID, facility_id: UUID, encounter_id: UUID) -> bool:
        attempts = max(int(getattr(settings, "QUEUE_PROJECTION_REFRESH_ATTEMPTS", 2)), 1)

        for attempt in range(1, attempts + 1):
            try:
                QueueProjectionService.refresh_encounter(
                    tenant_id=tenant_id, facility_id=facility_id, encounter_id=encounter_id
                )
                return True
            except Exception:
                logger.warning(
                    "Queue projection refresh failed",
                    exc_info=True,
                    extra={"encounter_id": str(encounter_id), "attempt": attempt, "max_attempts": attempts},
                )

        def _retry_after_commit() -> None:
            try:
                QueueProjectionService.refresh_encounter(
                    tenant_id=tenant_id, facility_id=facility_id, encounter_id=encounter_id
                )
            except Exception:
                logger.exception(
                    "Queue projection refresh failed after commit; run rebuild_queue_projections",
                    extra={"encounter_id": str(encounter_id)},
                )

        transaction.on_commit(_retry_after_commit)
        return False

    @staticmethod
    @transaction.atomic
    def rebuild_facility(*, tenant_id: UUID, facility_id: UUID) -> int:
        """
        Full recompute-and-replace for one facility.
        """
        deleted, _ = QueueProjectionRow.objects.filter(tenant_id=tenant_id, facility_id=facility_id).delete()

        today = timezone.localdate()
        rows: list[QueueProjectionRow] = []
        for encounter in _queue_candidates(tenant_id=tenant_id, facility_id=facility_id).iterator():
            rows.extend(_build_rows(encounter, today=today))

        QueueProjectionRow.objects.bulk_create(rows, batch_size=500)
        logger.info(
            "Queue projections rebuilt",
            extra={
                "tenant_id": str(tenant_id),
                "facility_id": str(facility_id),
                "deleted": deleted,
                "rows_created": len(rows),
            },
        )
        return len(rows)
