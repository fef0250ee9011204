# cp_core/iam/services/roles.py
from __future__ import annotations

import logging

from django.db import transaction

from cp_core.iam.models import Permission, Role, RolePermission
from cp_core.iam.roles import DEFAULT_ROLE_CAPABILITIES, ROLE_NAMES, Capability
from cp_core.tenants.models import Tenant

logger = logging.getLogger(__name__)


@transaction.atomic
def ensure_capability_permissions() -> dict[str, Permission]:
    perms: dict[str, Permission] = {}
    for code in Capability.all():
        perm, _ = Permission.objects.get_or_create(
            code=code,
            defaults={"description": Capability.DESCRIPTIONS[code]},
        )
        perms[code] = perm
    return perms


@transaction.atomic
def ensure_workflow_roles(tenant: Tenant) -> dict[str, Role]:
    """
    Idempotently create the default workflow roles for a tenant and grant
    their default capabilities. Existing extra grants are left alone.
    """
    perms = ensure_capability_permissions()
    roles: dict[str, Role] = {}
    granted = 0

    for code, capabilities in DEFAULT_ROLE_CAPABILITIES.items():
        role, _ = Role.objects.get_or_create(
            tenant=tenant,
            code=code,
            defaults={"name": ROLE_NAMES[code], "is_active": True},
        )
        roles[code] = role
        for cap in capabilities:
            _, created = RolePermission.objects.get_or_create(role=role, permission=perms[cap])
            granted += 1 if created else 0

    logger.info("Workflow roles ensured", extra={"tenant_id": str(tenant.id), "new_grants": granted})
    return roles
