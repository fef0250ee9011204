# cp_core/common/scope.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional
from uuid import UUID

from rest_framework.exceptions import ValidationError

# Preferred header names (what we standardize on)
HDR_TENANT = "X-Tenant-Id"
HDR_FACILITY = "X-Facility-Id"

# Legacy variants (kept for compatibility)
HDR_TENANT_LEGACY = "X-Tenant-ID"
HDR_FACILITY_LEGACY = "X-Facility-ID"

MISSING_SCOPE_MSG = "Missing scope headers. Provide X-Tenant-Id and X-Facility-Id."
INVALID_SCOPE_MSG = "Invalid scope headers. Provide valid UUIDs for X-Tenant-Id and X-Facility-Id."


@dataclass(frozen=True)
class Scope:
    tenant_id: UUID
    facility_id: UUID


@dataclass(frozen=True)
class AccessContext:
    """
    Explicit (tenant, facility, caller) triple threaded through every service call.

    Nothing below the API layer reads request/session state; services receive
    this object instead.
    """
    tenant_id: UUID
    facility_id: UUID
    caller_user_id: int | None = None

    @property
    def scope(self) -> Scope:
        return Scope(tenant_id=self.tenant_id, facility_id=self.facility_id)

    @classmethod
    def from_request(cls, request) -> "AccessContext":
        scope = require_scope(request)
        user = getattr(request, "user", None)
        caller = user.id if user is not None and getattr(user, "is_authenticated", False) else None
        return cls(tenant_id=scope.tenant_id, facility_id=scope.facility_id, caller_user_id=caller)


def _parse_uuid(value: str) -> Optional[UUID]:
    try:
        return UUID(str(value))
    except (TypeError, ValueError):
        return None


def _get_header(request, name: str) -> Optional[str]:
    """
    request.headers is case-insensitive; fallback to META for pytest/client.
    """
    headers = getattr(request, "headers", None)
    if headers is not None:
        v = headers.get(name)
        if v:
            return v

    meta_key = "HTTP_" + name.upper().replace("-", "_")
    return request.META.get(meta_key)


def resolve_scope(request) -> Optional[Scope]:
    """
    Returns Scope if BOTH headers are present and valid.
    Returns None if NO scope headers are present at all.
    Raises ValidationError for partial or malformed headers.
    """
    # Prefer middleware-attached values if present
    t = getattr(request, "tenant_id", None)
    f = getattr(request, "facility_id", None)
    if t and f:
        tu = _parse_uuid(str(t))
        fu = _parse_uuid(str(f))
        if tu and fu:
            return Scope(tenant_id=tu, facility_id=fu)

    tenant_raw = _get_header(request, HDR_TENANT) or _get_header(request, HDR_TENANT_LEGACY)
    facility_raw = _get_header(request, HDR_FACILITY) or _get_header(request, HDR_FACILITY_LEGACY)

    if not tenant_raw and not facility_raw:
        return None

    if not tenant_raw or not facility_raw:
        raise ValidationError(MISSING_SCOPE_MSG)

    tenant_id = _parse_uuid(tenant_raw)
    facility_id = _parse_uuid(facility_raw)
    if not tenant_id or not facility_id:
        raise ValidationError(INVALID_SCOPE_MSG)

    return Scope(tenant_id=tenant_id, facility_id=facility_id)


def require_scope(request) -> Scope:
    """
    Scope for a view that cannot run without one (400 through the error envelope).
    Does NOT check membership; that is the middleware/auth/permission layer's job.
    """
    scope = resolve_scope(request)
    if scope is None:
        raise ValidationError(MISSING_SCOPE_MSG)

    # Attach for downstream consistency
    request.tenant_id = scope.tenant_id
    request.facility_id = scope.facility_id
    request.scope = scope
    return scope
