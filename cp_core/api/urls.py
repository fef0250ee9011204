# cp_core/api/urls.py
from __future__ import annotations

from django.urls import path
from rest_framework.routers import DefaultRouter
from rest_framework_simplejwt.views import TokenObtainPairView, TokenRefreshView

from cp_core.billing.api.views import LineItemViewSet
from cp_core.encounters.api.views import EncounterViewSet
from cp_core.queues.api.views import AwaitingRoutingView, QueueView

router = DefaultRouter()

router.register(r"encounters", EncounterViewSet, basename="encounter")
router.register(r"billing/line-items", LineItemViewSet, basename="billing-line-items")

urlpatterns = [
    # Auth (simplejwt)
    path("auth/token/", TokenObtainPairView.as_view(), name="token-obtain"),
    path("auth/token/refresh/", TokenRefreshView.as_view(), name="token-refresh"),

    # Derived queues
    path("queues/<str:dashboard>/", QueueView.as_view(), name="queue"),
    path("routing/awaiting/", AwaitingRoutingView.as_view(), name="routing-awaiting"),

    # Router URLs last (so explicit paths win if ever overlapping)
    *router.urls,
]
