# cp_core/iam/models.py
import uuid
from uuid import UUID

from django.conf import settings
from django.db import models

from cp_core.facilities.models import Facility
from cp_core.tenants.models import Tenant


class Permission(models.Model):
    """
    Atomic capability: e.g. "workflow.triage", "workflow.cashier"
    """
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)

    code = models.CharField(max_length=128, unique=True)
    description = models.CharField(max_length=255, blank=True)

    class Meta:
        db_table = "iam_permission"

    def __str__(self) -> str:
        return self.code


class Role(models.Model):
    """
    Role is tenant-scoped (different tenants can grant different capabilities to a role code).
    """
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)

    tenant = models.ForeignKey(Tenant, on_delete=models.PROTECT, related_name="roles")

    name = models.CharField(max_length=128)
    code = models.SlugField(max_length=64)  # unique per tenant

    is_active = models.BooleanField(default=True)

    class Meta:
        db_table = "iam_role"
        constraints = [
            models.UniqueConstraint(fields=["tenant", "code"], name="uq_role_tenant_code"),
        ]
        indexes = [
            models.Index(fields=["tenant", "is_active"]),
        ]

    def __str__(self) -> str:
        return f"{self.code}"


class RolePermission(models.Model):
    """
    Many-to-many Role <-> Permission.
    """
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)

    role = models.ForeignKey(Role, on_delete=models.CASCADE, related_name="role_permissions")
    permission = models.ForeignKey(Permission, on_delete=models.PROTECT, related_name="permission_roles")

    class Meta:
        db_table = "iam_role_permission"
        constraints = [
            models.UniqueConstraint(fields=["role", "permission"], name="uq_role_permission"),
        ]


class UserProfile(models.Model):
    """
    Tenant-scoped identity wrapper anchored to Django's AUTH_USER_MODEL.
    """
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)

    user = models.OneToOneField(settings.AUTH_USER_MODEL, on_delete=models.CASCADE, related_name="cp_profile")
    tenant = models.ForeignKey(Tenant, on_delete=models.PROTECT, related_name="user_profiles")
    is_active = models.BooleanField(default=True)

    created_at = models.DateTimeField(auto_now_add=True, db_index=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = "iam_user_profile"
        indexes = [
            models.Index(fields=["tenant", "is_active"]),
        ]

    def __str__(self) -> str:
        return f"{self.user.username} ({self.tenant.code})"


class FacilityMembershipQuerySet(models.QuerySet):
    def active_for(self, *, user_id: int, tenant_id: UUID, facility_id: UUID) -> "FacilityMembershipQuerySet":
        return self.filter(
            is_active=True,
            tenant_id=tenant_id,
            facility_id=facility_id,
            user_profile__user_id=user_id,
            user_profile__is_active=True,
            user_profile__user__is_active=True,
        )


class FacilityMembership(models.Model):
    """
    Assigns a user to a facility with a role.
    This is the RBAC enforcement point for facility-level access.
    """
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)

    tenant = models.ForeignKey(Tenant, on_delete=models.PROTECT, related_name="facility_memberships")
    facility = models.ForeignKey(Facility, on_delete=models.PROTECT, related_name="memberships")

    user_profile = models.ForeignKey(UserProfile, on_delete=models.CASCADE, related_name="memberships")
    role = models.ForeignKey(Role, on_delete=models.PROTECT, related_name="memberships")

    is_active = models.BooleanField(default=True)

    objects = FacilityMembershipQuerySet.as_manager()

    class Meta:
        db_table = "iam_facility_membership"
        constraints = [
            models.UniqueConstraint(
                fields=["facility", "user_profile"],
                name="uq_facility_user_profile_membership",
            ),
        ]
        indexes = [
            models.Index(fields=["tenant", "facility"]),
            models.Index(fields=["tenant", "is_active"]),
        ]
