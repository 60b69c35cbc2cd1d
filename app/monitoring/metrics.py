"""Metric definitions for the realtime chat service."""

from __future__ import annotations

from .registry import registry


realtime_connections = registry.gauge(
    "realtime_active_connections",
    "Number of live websocket endpoints handled by this process.",
    label_names=("scope",),
)

realtime_online_users = registry.gauge(
    "realtime_online_users",
    "Number of users with at least one live endpoint.",
)

realtime_events_total = registry.counter(
    "realtime_events_total",
    "Count of realtime events processed by the chat service.",
    label_names=("topic", "direction", "action"),
)

realtime_event_errors_total = registry.counter(
    "realtime_event_errors_total",
    "Inbound events rejected with an error event, by error code.",
    label_names=("code",),
)

realtime_delivery_failures_total = registry.counter(
    "realtime_delivery_failures_total",
    "Deliveries to a single live endpoint that failed.",
    label_names=("event",),
)

realtime_offline_queue_messages = registry.gauge(
    "realtime_offline_queue_messages",
    "Messages currently held for offline users.",
)

realtime_offline_queue_evictions_total = registry.counter(
    "realtime_offline_queue_evictions_total",
    "Queued messages dropped because a user's offline queue was full.",
)

realtime_reconciled_endpoints_total = registry.counter(
    "realtime_reconciled_endpoints_total",
    "Dead endpoints removed by the session reconciler.",
)

realtime_presence_cache_errors_total = registry.counter(
    "realtime_presence_cache_errors_total",
    "Failures while reading or writing the presence cache.",
    label_names=("operation",),
)
