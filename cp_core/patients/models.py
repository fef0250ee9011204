# cp_core/patients/models.py
from __future__ import annotations

from datetime import date

from django.db import models

from cp_core.common.models import ScopedModel


class Patient(ScopedModel):
    """
    Patient demographics, facility-local. Owned by the registration desk;
    the encounter engine only reads a summary of it.
    """
    full_name = models.CharField(max_length=255)
    phone = models.CharField(max_length=32, blank=True)
    date_of_birth = models.DateField(null=True, blank=True)
    gender = models.CharField(max_length=32, blank=True)

    # facility-local medical record number
    mrn = models.CharField(max_length=64)

    class Meta:
        db_table = "patients_patient"
        constraints = [
            models.UniqueConstraint(
                fields=["tenant_id", "facility_id", "mrn"],
                name="uq_patient_scope_mrn",
            ),
        ]
        indexes = [
            models.Index(fields=["tenant_id", "facility_id", "full_name"]),
        ]

    def __str__(self) -> str:
        return f"{self.full_name} ({self.mrn})"

    def age_on(self, on: date) -> int | None:
        if not self.date_of_birth:
            return None
        dob = self.date_of_birth
        return on.year - dob.year - ((on.month, on.day) < (dob.month, dob.day))

    def summary(self, *, today: date | None = None) -> dict:
        today = today or date.today()
        return {
            "id": str(self.id),
            "full_name": self.full_name,
            "mrn": self.mrn,
            "gender": self.gender,
            "age": self.age_on(today),
            "phone": self.phone,
        }
