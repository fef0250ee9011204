# cp_core/facilities/models.py
from __future__ import annotations

import uuid

from django.db import models

from cp_core.tenants.models import Tenant


class FacilityType(models.TextChoices):
    HOSPITAL = "HOSPITAL", "Hospital"
    CLINIC = "CLINIC", "Clinic"
    DIAGNOSTIC = "DIAGNOSTIC", "Diagnostic Center"


class Facility(models.Model):
    """
    A branch/hospital/clinic under a Tenant. Encounters, queues and staff
    memberships are all facility-local.
    """

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)

    tenant = models.ForeignKey(Tenant, on_delete=models.PROTECT, related_name="facilities")

    name = models.CharField(max_length=255)
    code = models.SlugField(max_length=64)  # unique per tenant

    facility_type = models.CharField(
        max_length=24,
        choices=FacilityType.choices,
        default=FacilityType.HOSPITAL,
    )
    timezone = models.CharField(max_length=64, default="UTC")
    is_active = models.BooleanField(default=True, db_index=True)

    created_at = models.DateTimeField(auto_now_add=True, db_index=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = "facilities_facility"
        constraints = [
            models.UniqueConstraint(fields=["tenant", "code"], name="uq_facility_tenant_code"),
        ]
        indexes = [
            models.Index(fields=["tenant", "is_active"]),
        ]

    def __str__(self) -> str:
        return f"{self.name} ({self.code})"
