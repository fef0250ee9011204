# cp_core/iam/services/membership.py
from __future__ import annotations

from uuid import UUID

from cp_core.iam.models import FacilityMembership


def is_user_member_of_facility(*, user_id: int, tenant_id: UUID, facility_id: UUID) -> bool:
    """
    Validate user -> (tenant, facility) membership.
    This is the single source of truth used by scope enforcement.
    """
    return FacilityMembership.objects.active_for(
        user_id=user_id,
        tenant_id=tenant_id,
        facility_id=facility_id,
    ).exists()


def role_codes_for(*, user_id: int, tenant_id: UUID, facility_id: UUID) -> set[str]:
    return set(
        FacilityMembership.objects.active_for(user_id=user_id, tenant_id=tenant_id, facility_id=facility_id)
        .filter(role__is_active=True)
        .values_list("role__code", flat=True)
    )
