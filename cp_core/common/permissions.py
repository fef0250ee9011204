# cp_core/common/permissions.py
"""
Endpoint-level role gates.

These only decide whether a caller may reach an endpoint at all. Whether a
stage transition is allowed is decided by capabilities inside the workflow
service, never here.
"""
from __future__ import annotations

from typing import Set

from rest_framework.exceptions import ValidationError
from rest_framework.permissions import SAFE_METHODS, BasePermission

from cp_core.common.scope import resolve_scope
from cp_core.iam.roles import (
    ALL_ROLES,
    ROLE_ADMIN,
    ROLE_CASHIER,
    ROLE_DOCTOR,
    ROLE_INPATIENT_NURSE,
    ROLE_NURSE,
    ROLE_RECEPTIONIST,
    ROLE_SUPER_ADMIN,
)
from cp_core.iam.services.membership import role_codes_for

STAFF_ROLES = frozenset(ALL_ROLES)


def _user_roles(request) -> Set[str]:
    """
    Role codes the user holds in the request's (tenant, facility).

    Empty when unauthenticated, unscoped, or not a member of the facility.
    """
    user = getattr(request, "user", None)
    if not user or not getattr(user, "is_authenticated", False):
        return set()

    if getattr(user, "is_superuser", False):
        return {ROLE_SUPER_ADMIN}

    try:
        scope = resolve_scope(request)
    except ValidationError:
        return set()
    if scope is None:
        return set()

    return role_codes_for(user_id=user.id, tenant_id=scope.tenant_id, facility_id=scope.facility_id)


class BaseRolePermission(BasePermission):
    """
    Base permission class for role-based access control.

    Key behavior:
    - Requires an authenticated member of the scoped facility.
    - admin / super_admin bypass.
    - Uses allowed_roles_per_action for strict RBAC.
    - If action is unknown and request is SAFE, fall back to list/retrieve.
    """
    message = "You do not have permission to perform this action."

    # Override in subclasses: dict of action -> set of allowed roles
    allowed_roles_per_action: dict[str, frozenset[str]] = {
        "list": STAFF_ROLES,
        "retrieve": STAFF_ROLES,
    }

    def _infer_action(self, request, view) -> str | None:
        action = getattr(view, "action", None)
        if action:
            return action

        kwargs = getattr(view, "kwargs", {}) or {}
        is_detail = "pk" in kwargs or "id" in kwargs

        method = request.method.upper()
        if method in ("GET", "HEAD", "OPTIONS"):
            return "retrieve" if is_detail else "list"
        if method == "POST":
            return "create"
        return None

    def has_permission(self, request, view) -> bool:
        roles = _user_roles(request)
        if not roles:
            return False

        if roles & {ROLE_ADMIN, ROLE_SUPER_ADMIN}:
            return True

        action = self._infer_action(request, view)
        allowed = self.allowed_roles_per_action.get(action)

        if allowed is None and request.method in SAFE_METHODS:
            kwargs = getattr(view, "kwargs", {}) or {}
            read_action = "retrieve" if ("pk" in kwargs or "id" in kwargs) else "list"
            allowed = self.allowed_roles_per_action.get(read_action)

        if allowed is not None:
            return bool(roles & allowed)

        # Unknown action => deny by default
        return False

    def has_object_permission(self, request, view, obj) -> bool:
        return self.has_permission(request, view)


class EncounterPermission(BaseRolePermission):
    allowed_roles_per_action = {
        "list": STAFF_ROLES,
        "retrieve": STAFF_ROLES,
        "create": frozenset({ROLE_RECEPTIONIST}),
        # capability checks happen inside the transition service
        "advance_stage": STAFF_ROLES,
        "stage_history": STAFF_ROLES,
        "timeline": STAFF_ROLES,
        "vitals": frozenset({ROLE_NURSE, ROLE_INPATIENT_NURSE, ROLE_DOCTOR}),
    }


class QueuePermission(BaseRolePermission):
    allowed_roles_per_action = {
        "list": STAFF_ROLES,
        "retrieve": STAFF_ROLES,
    }


class RoutingPermission(BaseRolePermission):
    allowed_roles_per_action = {
        "list": STAFF_ROLES,
    }


class BillingPermission(BaseRolePermission):
    allowed_roles_per_action = {
        "payments": frozenset({ROLE_CASHIER, ROLE_RECEPTIONIST}),
        "waive": frozenset({ROLE_CASHIER}),
    }
