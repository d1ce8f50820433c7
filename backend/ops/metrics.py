"""
Prometheus metrics endpoint.

Exposes application metrics in Prometheus format for scraping.

Metrics exposed:
- fixnado_analytics_pending_events: Events awaiting warehouse delivery, by domain
- fixnado_analytics_abandoned_events: Events that hit the attempt cap
- fixnado_analytics_oldest_pending_age_seconds: Age of the oldest pending event
- fixnado_analytics_failure_streak: Consecutive failed ingestion runs
- fixnado_analytics_pipeline_enabled: 1 when ingestion is enabled, 0 when paused
- fixnado_request_duration_seconds: HTTP request duration histogram
"""
import logging
import re
import time

from django.db.models import Count
from django.http import HttpResponse
from django.utils import timezone
from django.views import View
from prometheus_client import CONTENT_TYPE_LATEST, Gauge, Histogram, generate_latest

logger = logging.getLogger(__name__)

pending_events = Gauge(
    "fixnado_analytics_pending_events",
    "Analytics events awaiting warehouse delivery",
    ["domain"],
)

abandoned_events = Gauge(
    "fixnado_analytics_abandoned_events",
    "Analytics events abandoned after reaching the attempt cap",
)

oldest_pending_age = Gauge(
    "fixnado_analytics_oldest_pending_age_seconds",
    "Age of the oldest pending analytics event",
)

failure_streak = Gauge(
    "fixnado_analytics_failure_streak",
    "Consecutive failed analytics ingestion runs",
)

pipeline_enabled = Gauge(
    "fixnado_analytics_pipeline_enabled",
    "Analytics ingestion pipeline state (1=enabled, 0=paused)",
)

request_duration = Histogram(
    "fixnado_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "endpoint", "status"],
    buckets=(0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
)

active_requests = Gauge(
    "fixnado_active_requests",
    "Number of requests currently being processed",
)


def collect_metrics():
    """Refresh gauge values from the analytics tables."""
    from analytics.models import AnalyticsEvent, AnalyticsPipelineRun
    from analytics.pipeline import compute_failure_streak, evaluate_pipeline_state

    try:
        pending = AnalyticsEvent.objects.filter(
            ingested_at__isnull=True, abandoned_at__isnull=True
        )

        pending_events.clear()
        for row in pending.values("domain").annotate(count=Count("id")):
            pending_events.labels(domain=row["domain"]).set(row["count"])

        abandoned_events.set(
            AnalyticsEvent.objects.filter(abandoned_at__isnull=False).count()
        )

        oldest = pending.order_by("occurred_at").values_list("occurred_at", flat=True).first()
        age = (timezone.now() - oldest).total_seconds() if oldest else 0
        oldest_pending_age.set(max(age, 0))

        runs = AnalyticsPipelineRun.objects.order_by("-started_at", "-id")[:20]
        failure_streak.set(compute_failure_streak(runs))

        pipeline_enabled.set(1 if evaluate_pipeline_state()["enabled"] else 0)

    except Exception as e:
        logger.error(f"Error collecting metrics: {e}")


def get_prometheus_response():
    """Generate Prometheus metrics response."""
    try:
        collect_metrics()
        return HttpResponse(generate_latest(), content_type=CONTENT_TYPE_LATEST)
    except Exception as e:
        logger.error(f"Error generating metrics: {e}")
        return HttpResponse(
            f"# Error generating metrics: {e}\n",
            content_type="text/plain",
            status=500,
        )


class MetricsView(View):
    """
    Prometheus metrics endpoint.

    Exposes metrics in Prometheus format at /_metrics.
    Should be protected in production (internal network only).
    """

    def get(self, request):
        return get_prometheus_response()


def _normalise_endpoint(path: str) -> str:
    # Strip IDs so label cardinality stays bounded
    path = re.sub(r"/\d+/", "/{id}/", path)
    path = re.sub(r"/[0-9a-f-]{36}/", "/{uuid}/", path)
    return path[:50]


def track_request_metrics(get_response):
    """
    Middleware to track request duration metrics.

    Installed in MIDDLEWARE right after SecurityMiddleware.
    """

    def middleware(request):
        start = time.time()
        active_requests.inc()
        status = 500

        try:
            response = get_response(request)
            status = response.status_code
            return response
        finally:
            active_requests.dec()
            request_duration.labels(
                method=request.method,
                endpoint=_normalise_endpoint(request.path),
                status=f"{status // 100}xx",
            ).observe(time.time() - start)

    return middleware
