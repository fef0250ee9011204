# cp_core/common/models.py
from __future__ import annotations

import uuid

from django.core.exceptions import ValidationError
from django.db import models


class TimeStampedModel(models.Model):
    """
    Standard timestamps for all entities.
    """
    created_at = models.DateTimeField(auto_now_add=True, db_index=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        abstract = True


class ScopedModel(TimeStampedModel):
    """
    Enforces multi-tenant + multi-facility scope at the data layer.
    (Middleware enforces request scope; services take the scope explicitly.)

    Concrete models declare their own (tenant_id, facility_id, ...) indexes.
    """
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)

    tenant_id = models.UUIDField(db_index=True)
    facility_id = models.UUIDField(db_index=True)

    class Meta:
        abstract = True


class ImmutableModelMixin:
    """
    Append-only rows: inserts are allowed, updates and deletes are not.
    """
    immutable_label = "Record"

    def save(self, *args, **kwargs):
        # UUID PK exists even before first save, so use _state.adding
        if not self._state.adding:
            raise ValidationError(f"{self.immutable_label} is immutable and cannot be modified once created.")
        return super().save(*args, **kwargs)

    def delete(self, *args, **kwargs):
        raise ValidationError(f"{self.immutable_label} is immutable and cannot be deleted.")
