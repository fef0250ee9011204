# cp_core/orders/admin.py
from __future__ import annotations

from django.contrib import admin

from cp_core.orders.models import Order


@admin.register(Order)
class OrderAdmin(admin.ModelAdmin):
    list_display = (
        "id",
        "tenant_id",
        "facility_id",
        "encounter",
        "order_type",
        "service_code",
        "priority",
        "status",
        "created_at",
    )
    list_filter = ("order_type", "priority", "status")
    search_fields = ("id", "encounter__id", "service_code")
    ordering = ("-created_at",)
    readonly_fields = ("created_at", "updated_at")
    list_select_related = ("encounter",)
