# analytics/urls.py
"""
URL configuration for the analytics admin API.
"""

from django.urls import path

from analytics.views import (
    AnalyticsEventListView,
    FreshnessView,
    PipelinePauseView,
    PipelineResumeView,
    PipelineRunView,
    PipelineStatusView,
)


app_name = "analytics"

urlpatterns = [
    # Pipeline status and control
    path("pipeline/", PipelineStatusView.as_view(), name="pipeline-status"),
    path("pipeline/pause/", PipelinePauseView.as_view(), name="pipeline-pause"),
    path("pipeline/resume/", PipelineResumeView.as_view(), name="pipeline-resume"),
    path("pipeline/run/", PipelineRunView.as_view(), name="pipeline-run"),

    # Captured events
    path("events/", AnalyticsEventListView.as_view(), name="event-list"),

    # Warehouse freshness
    path("freshness/", FreshnessView.as_view(), name="freshness"),
]
