# cp_core/iam/scope.py
from __future__ import annotations

from rest_framework.exceptions import PermissionDenied

from cp_core.common.scope import Scope, resolve_scope
from cp_core.iam.services.membership import is_user_member_of_facility


def assert_user_membership(user, scope: Scope) -> None:
    """
    Ensures user is a member of (tenant_id, facility_id).
    Raises 403 if not.
    """
    if not user or not getattr(user, "is_authenticated", False):
        raise PermissionDenied("Authentication required to set scope.")

    ok = is_user_member_of_facility(
        user_id=user.id,
        tenant_id=scope.tenant_id,
        facility_id=scope.facility_id,
    )
    if not ok:
        raise PermissionDenied("You do not have access to the selected facility.")


def apply_scope_from_headers(request, user=None) -> Scope | None:
    """
    Used by the auth layer (CookieOrHeaderJWTAuthentication).

    If scope headers are present:
      - validates they are UUIDs
      - verifies user membership
      - sets request.tenant_id, request.facility_id and request.scope

    If no scope headers: returns None and does nothing.
    """
    scope = resolve_scope(request)
    if scope is None:
        return None

    u = user or getattr(request, "user", None)
    assert_user_membership(u, scope)

    request.tenant_id = scope.tenant_id
    request.facility_id = scope.facility_id
    request.scope = scope
    return scope
