"""Prometheus-compatible metrics endpoint."""

from fastapi import APIRouter, Request, Response

from app.monitoring.metrics import realtime_offline_queue_messages, realtime_online_users
from app.monitoring.registry import registry


router = APIRouter(tags=["metrics"])


@router.get("/metrics", response_class=Response)
def export_metrics(request: Request) -> Response:
    """Expose collected metrics for Prometheus scraping.

    Point-in-time gauges are refreshed from the running chat service so a
    scrape never reports state left over from a previous service instance.
    """

    service = getattr(request.app.state, "chat_service", None)
    if service is not None:
        realtime_online_users.set(service.connected_users_count())
        realtime_offline_queue_messages.set(service.queue.total)

    payload = registry.render()
    return Response(content=payload, media_type="text/plain; version=0.0.4")
