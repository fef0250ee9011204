# cp_core/billing/models.py
from __future__ import annotations

from decimal import Decimal

from django.db import models
from django.utils import timezone

from cp_core.common.models import ScopedModel
from cp_core.encounters.models import Encounter
from cp_core.orders.models import Order


class LineItemType(models.TextChoices):
    CONSULTATION = "consultation", "Consultation"
    LAB = "lab", "Lab"
    IMAGING = "imaging", "Imaging"
    MEDICATION = "medication", "Medication"
    SERVICE = "service", "Service"


class LineItemPaymentStatus(models.TextChoices):
    UNPAID = "unpaid", "Unpaid"
    PARTIAL = "partial", "Partially paid"
    PAID = "paid", "Paid"
    WAIVED = "waived", "Waived"


SETTLED_STATUSES = frozenset({LineItemPaymentStatus.PAID.value, LineItemPaymentStatus.WAIVED.value})

# Department label shown to routing staff for each line item type.
DEPARTMENT_LABELS = {
    LineItemType.CONSULTATION: "Consultation",
    LineItemType.LAB: "Lab",
    LineItemType.IMAGING: "Imaging",
    LineItemType.MEDICATION: "Pharmacy",
    LineItemType.SERVICE: "Service",
}


class ChargeableLineItem(ScopedModel):
    """
    A billable unit attached to an encounter (consultation fee, a lab test,
    an imaging study, a medication, a service).

    payment_status moves unpaid -> partial -> paid, or to waived; paid/waived
    are "settled" and never move back.
    """
    encounter = models.ForeignKey(Encounter, on_delete=models.PROTECT, related_name="line_items")
    source_order = models.OneToOneField(
        Order,
        on_delete=models.SET_NULL,
        related_name="line_item",
        null=True,
        blank=True,
    )

    item_type = models.CharField(max_length=16, choices=LineItemType.choices)
    description = models.CharField(max_length=255)

    amount = models.DecimalField(max_digits=12, decimal_places=2)
    amount_paid = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal("0.00"))
    payment_status = models.CharField(
        max_length=16,
        choices=LineItemPaymentStatus.choices,
        default=LineItemPaymentStatus.UNPAID,
        db_index=True,
    )

    settled_at = models.DateTimeField(null=True, blank=True)
    settled_by_user_id = models.BigIntegerField(null=True, blank=True)

    class Meta:
        db_table = "billing_line_item"
        indexes = [
            models.Index(fields=["tenant_id", "facility_id", "encounter", "payment_status"]),
        ]

    def __str__(self) -> str:
        return f"{self.item_type}:{self.description} ({self.payment_status})"

    @property
    def is_settled(self) -> bool:
        return self.payment_status in SETTLED_STATUSES

    @property
    def balance_due(self) -> Decimal:
        if self.payment_status == LineItemPaymentStatus.WAIVED:
            return Decimal("0.00")
        return max(self.amount - self.amount_paid, Decimal("0.00"))

    @property
    def department(self) -> str:
        return DEPARTMENT_LABELS.get(self.item_type, "Service")


class PaymentMethod(models.TextChoices):
    CASH = "CASH", "Cash"
    CARD = "CARD", "Card"
    TRANSFER = "TRANSFER", "Bank Transfer"
    MOBILE_MONEY = "MOBILE_MONEY", "Mobile Money"
    INSURANCE = "INSURANCE", "Insurance"
    OTHER = "OTHER", "Other"


class LineItemPayment(ScopedModel):
    line_item = models.ForeignKey(ChargeableLineItem, on_delete=models.PROTECT, related_name="payments")
    amount = models.DecimalField(max_digits=12, decimal_places=2)
    method = models.CharField(max_length=32, choices=PaymentMethod.choices, default=PaymentMethod.CASH)

    reference = models.CharField(max_length=64, blank=True)
    received_at = models.DateTimeField(default=timezone.now)
    recorded_by_user_id = models.BigIntegerField(null=True, blank=True)

    class Meta:
        db_table = "billing_line_item_payment"
        indexes = [
            models.Index(fields=["tenant_id", "facility_id", "line_item", "received_at"]),
        ]
