# cp_core/orders/models.py
from django.db import models

from cp_core.common.models import ScopedModel
from cp_core.encounters.models import Encounter


class OrderType(models.TextChoices):
    LAB = "LAB", "Lab"
    IMAGING = "IMAGING", "Imaging"
    MEDICATION = "MEDICATION", "Medication"
    PROCEDURE = "PROCEDURE", "Procedure"


class OrderPriority(models.TextChoices):
    ROUTINE = "ROUTINE", "Routine"
    URGENT = "URGENT", "Urgent"
    STAT = "STAT", "Stat"


class OrderStatus(models.TextChoices):
    CREATED = "CREATED", "Created"
    CANCELLED = "CANCELLED", "Cancelled"


class Order(ScopedModel):
    """
    A clinician's request for a lab test, imaging study, medication or procedure.
    The workflow only cares whether active orders of a given type exist.
    """
    encounter = models.ForeignKey(Encounter, on_delete=models.CASCADE, related_name="orders")
    order_type = models.CharField(max_length=16, choices=OrderType.choices)
    service_code = models.SlugField(max_length=64)
    priority = models.CharField(max_length=16, choices=OrderPriority.choices, default=OrderPriority.ROUTINE)
    status = models.CharField(max_length=16, choices=OrderStatus.choices, default=OrderStatus.CREATED)

    ordered_by_user_id = models.BigIntegerField(null=True, blank=True)

    class Meta:
        db_table = "orders_order"
        indexes = [
            models.Index(fields=["tenant_id", "facility_id", "encounter", "order_type"]),
        ]

    def __str__(self) -> str:
        return f"{self.order_type}:{self.service_code}"
