# cp_core/iam/services/rbac.py
"""
Capability oracle consumed by the encounter workflow.

The workflow never inspects roles directly: it asks which capabilities a
caller holds inside one (tenant, facility) and whether the caller is a
super-operator. Role codes are only used to phrase error messages.
"""
from __future__ import annotations

from uuid import UUID

from django.contrib.auth import get_user_model

from cp_core.iam.models import FacilityMembership, RolePermission
from cp_core.iam.roles import SUPER_OPERATOR_ROLES
from cp_core.iam.services.membership import role_codes_for


def resolve_active_user(user_id: int | None):
    """Return the active auth user for `user_id`, or None."""
    if user_id is None:
        return None
    User = get_user_model()
    return User.objects.filter(pk=user_id, is_active=True).first()


def capabilities_for(*, user_id: int, tenant_id: UUID, facility_id: UUID) -> frozenset[str]:
    role_ids = (
        FacilityMembership.objects.active_for(user_id=user_id, tenant_id=tenant_id, facility_id=facility_id)
        .filter(role__is_active=True)
        .values_list("role_id", flat=True)
    )
    codes = RolePermission.objects.filter(role_id__in=list(role_ids)).values_list("permission__code", flat=True)
    return frozenset(codes)


def is_super_operator(*, user_id: int, tenant_id: UUID, facility_id: UUID) -> bool:
    user = resolve_active_user(user_id)
    if user is None:
        return False
    if user.is_superuser:
        return True
    roles = role_codes_for(user_id=user_id, tenant_id=tenant_id, facility_id=facility_id)
    return bool(roles & SUPER_OPERATOR_ROLES)


def role_label_for(*, user_id: int, tenant_id: UUID, facility_id: UUID) -> str:
    roles = sorted(role_codes_for(user_id=user_id, tenant_id=tenant_id, facility_id=facility_id))
    if not roles:
        return "none"
    return ", ".join(roles)
