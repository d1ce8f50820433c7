# analytics/views.py
"""
Analytics pipeline admin API.

- Pipeline status: backlog, recent runs, failure streak
- Pause / resume: operator switch, recorded in the run ledger
- Run now: one synchronous ingestion cycle
- Event listing: latest captured events with ingestion state
- Freshness: warehouse freshness summary

All endpoints are staff only.
"""

from rest_framework import generics, views, status
from rest_framework.permissions import IsAdminUser
from rest_framework.response import Response

from analytics.freshness import evaluate_warehouse_freshness
from analytics.ingestion import run_locked_cycle
from analytics.models import AnalyticsEvent
from analytics.pipeline import get_pipeline_status, pause_pipeline, resume_pipeline
from analytics.serializers import AnalyticsEventSerializer, PipelineControlSerializer


EVENT_LIST_LIMIT = 500


def _actor_for(request) -> str:
    user = request.user
    return getattr(user, "email", None) or user.get_username()


class PipelineStatusView(views.APIView):
    """
    Pipeline status.

    GET /api/analytics/pipeline/
    """

    permission_classes = [IsAdminUser]

    def get(self, request):
        return Response(get_pipeline_status())


class _PipelineControlView(views.APIView):
    permission_classes = [IsAdminUser]
    control_action = None

    def post(self, request):
        serializer = PipelineControlSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        try:
            state = self.control_action(
                _actor_for(request),
                reason=serializer.validated_data.get("reason"),
                ticket=serializer.validated_data.get("ticket"),
            )
        except ValueError as e:
            return Response({"detail": str(e)}, status=status.HTTP_400_BAD_REQUEST)

        return Response(state)


class PipelinePauseView(_PipelineControlView):
    """
    Pause ingestion.

    POST /api/analytics/pipeline/pause/
    Body: {"reason": "...", "ticket": "..."} (both optional)
    """

    control_action = staticmethod(pause_pipeline)


class PipelineResumeView(_PipelineControlView):
    """
    Resume ingestion.

    POST /api/analytics/pipeline/resume/
    Body: {"reason": "...", "ticket": "..."} (both optional)
    """

    control_action = staticmethod(resume_pipeline)


class PipelineRunView(views.APIView):
    """
    Run one ingestion cycle now.

    POST /api/analytics/pipeline/run/

    Returns 409 while another worker holds the ingestion lock.
    """

    permission_classes = [IsAdminUser]

    def post(self, request):
        result = run_locked_cycle(triggered_by=_actor_for(request))
        if result is None:
            return Response(
                {"detail": "An ingestion cycle is already running"},
                status=status.HTTP_409_CONFLICT,
            )

        return Response({
            "status": result.status,
            "startedAt": result.started_at,
            "finishedAt": result.finished_at,
            "backfilled": result.backfilled,
            "delivered": result.delivered,
            "failed": result.failed,
            "abandoned": result.abandoned,
            "purged": result.purged,
            "error": result.error,
        })


class AnalyticsEventListView(generics.ListAPIView):
    """
    List the latest analytics events.

    GET /api/analytics/events/

    Supports filtering by:
    - domain: Event domain (zones, bookings, ...)
    - event_name: Catalog event name (exact match)
    - tenant_id: Tenant (company) id
    - pending: "true" for events not yet ingested or abandoned
    """

    serializer_class = AnalyticsEventSerializer
    permission_classes = [IsAdminUser]
    pagination_class = None

    def get_queryset(self):
        qs = AnalyticsEvent.objects.order_by('-occurred_at')

        domain = self.request.query_params.get('domain')
        if domain:
            qs = qs.filter(domain=domain)

        event_name = self.request.query_params.get('event_name')
        if event_name:
            qs = qs.filter(event_name=event_name)

        tenant_id = self.request.query_params.get('tenant_id')
        if tenant_id:
            qs = qs.filter(tenant_id=tenant_id)

        pending = self.request.query_params.get('pending')
        if pending and pending.lower() in ('true', '1', 'yes'):
            qs = qs.filter(ingested_at__isnull=True, abandoned_at__isnull=True)

        return qs[:EVENT_LIST_LIMIT]


class FreshnessView(views.APIView):
    """
    Warehouse freshness summary.

    GET /api/analytics/freshness/

    Returns 204 when freshness monitoring is not configured.
    """

    permission_classes = [IsAdminUser]

    def get(self, request):
        summary = evaluate_warehouse_freshness()
        if summary is None:
            return Response(status=status.HTTP_204_NO_CONTENT)
        return Response(summary)
