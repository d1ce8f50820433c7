"""
Operations endpoints for the Fixnado backend.

Mounted without authentication under /_health/ and /_metrics/; keep them
on the internal network in production.
"""
from django.urls import path

from ops.health import AnalyticsBacklogView, FullHealthView, LivenessView, ReadinessView
from ops.metrics import MetricsView

app_name = "ops"

urlpatterns = [
    path("live", LivenessView.as_view(), name="health-live"),
    path("ready", ReadinessView.as_view(), name="health-ready"),
    path("full", FullHealthView.as_view(), name="health-full"),
    path("analytics", AnalyticsBacklogView.as_view(), name="health-analytics"),
]

metrics_patterns = [
    path("", MetricsView.as_view(), name="metrics"),
]
