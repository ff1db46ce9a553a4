from __future__ import annotations

from prometheus_client import CONTENT_TYPE_LATEST, Counter, Histogram, generate_latest


collection_fetch_total = Counter(
    "collection_fetch_total",
    "Total page fetches by outcome",
    ["resource", "outcome"],
)

collection_fetch_duration_seconds = Histogram(
    "collection_fetch_duration_seconds",
    "Page fetch duration in seconds",
    ["resource"],
)

collection_mutations_total = Counter(
    "collection_mutations_total",
    "Total optimistic mutations by outcome",
    ["resource", "field", "outcome"],
)

collection_drag_events_total = Counter(
    "collection_drag_events_total",
    "Total drag gestures by result",
    ["resource", "result"],
)

collection_bulk_items_total = Counter(
    "collection_bulk_items_total",
    "Total bulk operation items by outcome",
    ["resource", "operation", "outcome"],
)


def record_fetch(resource: str, outcome: str, duration_seconds: float | None = None) -> None:
    collection_fetch_total.labels(resource=resource, outcome=outcome).inc()
    if duration_seconds is not None:
        collection_fetch_duration_seconds.labels(resource=resource).observe(duration_seconds)


def record_mutation(resource: str, field: str, outcome: str) -> None:
    collection_mutations_total.labels(resource=resource, field=field, outcome=outcome).inc()


def record_drag(resource: str, result: str) -> None:
    collection_drag_events_total.labels(resource=resource, result=result).inc()


def record_bulk_item(resource: str, operation: str, outcome: str) -> None:
    collection_bulk_items_total.labels(resource=resource, operation=operation, outcome=outcome).inc()


def render_metrics() -> tuple[bytes, str]:
    return generate_latest(), CONTENT_TYPE_LATEST
