"""API URL configuration."""
from __future__ import annotations

from django.urls import path

from backend.api.views import AdvisoryView, HealthView

urlpatterns = [
    path("advisory", AdvisoryView.as_view(), name="advisory"),
    path("health", HealthView.as_view(), name="health"),
]
