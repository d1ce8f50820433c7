"""
Health check endpoints for operations monitoring.

Checks:
- Database connectivity (all configured databases)
- Redis/Celery broker connectivity
- Analytics ingestion backlog and pipeline state

Endpoints:
- /_health/live    - Kubernetes liveness probe (is the process running?)
- /_health/ready   - Kubernetes readiness probe (can we serve traffic?)
- /_health/full    - Full health report (for debugging/dashboards)
- /_health/analytics - Analytics backlog only (for ingestion alerting)
"""
import logging
import time
from typing import Dict, Any

import redis
from django.conf import settings
from django.db import connections
from django.http import JsonResponse
from django.views import View

logger = logging.getLogger(__name__)


def _elapsed_ms(start: float) -> float:
    return round((time.time() - start) * 1000, 2)


class HealthCheck:
    """Health check implementation."""

    @staticmethod
    def check_database(alias: str = "default") -> Dict[str, Any]:
        """Check database connectivity."""
        start = time.time()
        try:
            conn = connections[alias]
            conn.ensure_connection()
            with conn.cursor() as cursor:
                cursor.execute("SELECT 1")
                cursor.fetchone()
            return {
                "status": "healthy",
                "alias": alias,
                "duration_ms": _elapsed_ms(start),
            }
        except Exception as e:
            logger.warning(f"Database health check failed for {alias}: {e}")
            return {
                "status": "unhealthy",
                "alias": alias,
                "error": str(e),
                "duration_ms": _elapsed_ms(start),
            }

    @staticmethod
    def check_all_databases() -> Dict[str, Any]:
        """Check all configured databases."""
        results = {alias: HealthCheck.check_database(alias) for alias in settings.DATABASES}
        all_healthy = all(r["status"] == "healthy" for r in results.values())
        return {
            "status": "healthy" if all_healthy else "degraded",
            "databases": results,
        }

    @staticmethod
    def check_redis() -> Dict[str, Any]:
        """Check the Celery broker (if configured)."""
        redis_url = getattr(settings, "CELERY_BROKER_URL", None)
        if not redis_url:
            return {"status": "skipped", "reason": "Redis not configured"}

        start = time.time()
        try:
            client = redis.from_url(redis_url)
            client.ping()
            return {"status": "healthy", "duration_ms": _elapsed_ms(start)}
        except Exception as e:
            return {
                "status": "unhealthy",
                "error": str(e),
                "duration_ms": _elapsed_ms(start),
            }

    @staticmethod
    def check_analytics_backlog() -> Dict[str, Any]:
        """
        Check the analytics ingestion backlog.

        Degraded when pending events exceed ANALYTICS_BACKLOG_THRESHOLD or the
        last runs all failed. A paused pipeline is reported but not degraded.
        """
        try:
            from analytics.pipeline import get_pipeline_status

            report = get_pipeline_status()
            backlog = report["backlog"]
            threshold = getattr(settings, "ANALYTICS_BACKLOG_THRESHOLD", 5000)

            degraded = backlog["pendingEvents"] > threshold or report["failureStreak"] >= 3
            return {
                "status": "degraded" if degraded else "healthy",
                "pending_events": backlog["pendingEvents"],
                "abandoned_events": backlog["abandonedEvents"],
                "oldest_pending_at": backlog["oldestPendingAt"],
                "threshold": threshold,
                "failure_streak": report["failureStreak"],
                "pipeline_enabled": report["pipeline"]["enabled"],
                "last_success_at": report["lastSuccessAt"],
            }
        except Exception as e:
            return {
                "status": "error",
                "error": str(e),
            }

    @staticmethod
    def get_full_health() -> Dict[str, Any]:
        """Get comprehensive health report."""
        checks = {
            "databases": HealthCheck.check_all_databases(),
            "redis": HealthCheck.check_redis(),
            "analytics_backlog": HealthCheck.check_analytics_backlog(),
        }

        statuses = [c.get("status", "unknown") for c in checks.values()]
        if all(s in ("healthy", "skipped") for s in statuses):
            overall = "healthy"
        elif any(s == "unhealthy" for s in statuses):
            overall = "unhealthy"
        else:
            overall = "degraded"

        return {
            "status": overall,
            "checks": checks,
            "version": getattr(settings, "VERSION", "unknown"),
            "environment": "development" if settings.DEBUG else "production",
        }


class LivenessView(View):
    """
    Kubernetes liveness probe.

    Returns 200 if the process is running.
    """

    def get(self, request):
        return JsonResponse({"status": "alive"})


class ReadinessView(View):
    """
    Kubernetes readiness probe.

    Returns 200 if the default database is reachable, 503 otherwise.
    """

    def get(self, request):
        db_check = HealthCheck.check_database("default")

        if db_check["status"] == "healthy":
            return JsonResponse({"status": "ready", "database": db_check})
        return JsonResponse({"status": "not_ready", "database": db_check}, status=503)


class FullHealthView(View):
    """
    Full health check for debugging and dashboards.

    Should be protected in production (internal network only).
    """

    def get(self, request):
        health = HealthCheck.get_full_health()

        status_code = 200 if health["status"] == "healthy" else 503
        return JsonResponse(health, status=status_code)


class AnalyticsBacklogView(View):
    """
    Analytics ingestion backlog probe.

    Returns 200 while the backlog is healthy, 503 when degraded or the
    check itself failed.
    """

    def get(self, request):
        check = HealthCheck.check_analytics_backlog()

        status_code = 200 if check["status"] == "healthy" else 503
        return JsonResponse(check, status=status_code)
