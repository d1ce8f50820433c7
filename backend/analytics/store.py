# analytics/store.py
"""
Persistence facade over the AnalyticsEvent table.

The recorder and the ingestion job only talk to the event store through
this contract, so the query engine stays swappable in tests:

- create(**fields) -> event
- find_many(filter, order_by, limit) -> [event]
- update_fields(event, patch) -> event
- update_where(filter, patch) -> updated count
- delete_where(filter, limit=None, order_by=None) -> deleted count
- count_where(filter) -> count
"""

from typing import Any, Dict, List, Optional, Sequence

from django.db.models import Q

from analytics.models import AnalyticsEvent


class AnalyticsEventStore:
    """Django ORM implementation of the event store contract."""

    model = AnalyticsEvent

    def create(self, **fields) -> AnalyticsEvent:
        return self.model.objects.create(**fields)

    def find_many(
        self,
        filter: Optional[Q] = None,
        order_by: Sequence[Any] = (),
        limit: Optional[int] = None,
    ) -> List[AnalyticsEvent]:
        qs = self.model.objects.all()
        if filter is not None:
            qs = qs.filter(filter)
        if order_by:
            qs = qs.order_by(*order_by)
        if limit is not None:
            qs = qs[:limit]
        return list(qs)

    def update_fields(self, event: AnalyticsEvent, patch: Dict[str, Any]) -> AnalyticsEvent:
        for field_name, value in patch.items():
            setattr(event, field_name, value)
        event.save(update_fields=list(patch.keys()))
        return event

    def update_where(self, filter: Q, patch: Dict[str, Any]) -> int:
        return self.model.objects.filter(filter).update(**patch)

    def delete_where(
        self,
        filter: Q,
        limit: Optional[int] = None,
        order_by: Sequence[Any] = (),
    ) -> int:
        """
        Delete matching rows, at most `limit` of them.

        Bounded deletes select primary keys first; most backends do not
        accept LIMIT on DELETE.
        """
        qs = self.model.objects.filter(filter)
        if limit is None:
            deleted, _ = qs.delete()
            return deleted

        if order_by:
            qs = qs.order_by(*order_by)
        ids = list(qs.values_list("id", flat=True)[:limit])
        if not ids:
            return 0
        deleted, _ = self.model.objects.filter(id__in=ids).delete()
        return deleted

    def count_where(self, filter: Optional[Q] = None) -> int:
        qs = self.model.objects.all()
        if filter is not None:
            qs = qs.filter(filter)
        return qs.count()
