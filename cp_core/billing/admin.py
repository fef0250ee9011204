# cp_core/billing/admin.py
from __future__ import annotations

from django.contrib import admin

from cp_core.billing.models import ChargeableLineItem, LineItemPayment


@admin.register(ChargeableLineItem)
class ChargeableLineItemAdmin(admin.ModelAdmin):
    list_display = (
        "id",
        "tenant_id",
        "facility_id",
        "encounter",
        "item_type",
        "description",
        "amount",
        "amount_paid",
        "payment_status",
        "created_at",
    )
    list_filter = ("tenant_id", "facility_id", "item_type", "payment_status")
    search_fields = ("id", "description", "encounter__id")
    ordering = ("-created_at",)


@admin.register(LineItemPayment)
class LineItemPaymentAdmin(admin.ModelAdmin):
    list_display = ("id", "line_item", "amount", "method", "received_at", "recorded_by_user_id")
    list_filter = ("method", "received_at")
    ordering = ("-received_at",)
