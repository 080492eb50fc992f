from prometheus_client import Counter, Histogram, Gauge, REGISTRY


# we check if they are already registered to avoid errors during hot reloads or test runs
def get_or_create_metric(name, documentation, metric_type, **kwargs):
    try:
        return metric_type(name, documentation, **kwargs)
    except ValueError:
        return REGISTRY._names_to_collectors[name]


REQUESTS_TOTAL = get_or_create_metric(
    "dayplan_requests_total",
    "Total requests",
    Counter,
    labelnames=["endpoint", "status"],
)

REQUEST_LATENCY_SECONDS = get_or_create_metric(
    "dayplan_request_latency_seconds",
    "Request latency",
    Histogram,
    labelnames=["endpoint"],
)

ITEMS_DETECTED_TOTAL = get_or_create_metric(
    "dayplan_items_detected_total",
    "Work items seen by an ingress channel",
    Counter,
    labelnames=["source"],
)

ITEMS_DUPLICATE_TOTAL = get_or_create_metric(
    "dayplan_items_duplicate_total",
    "Work items dropped as already seen",
    Counter,
    labelnames=["source"],
)

ITEMS_COMPLETED_TOTAL = get_or_create_metric(
    "dayplan_items_completed_total", "Work items that finished the pipeline", Counter
)

ITEMS_FAILED_TOTAL = get_or_create_metric(
    "dayplan_items_failed_total",
    "Work items that ended in the failed stage",
    Counter,
    labelnames=["error"],
)

STAGE_LATENCY_SECONDS = get_or_create_metric(
    "dayplan_stage_latency_seconds",
    "Time spent per pipeline stage",
    Histogram,
    labelnames=["stage"],
)

TASKS_RESCHEDULED_TOTAL = get_or_create_metric(
    "dayplan_tasks_rescheduled_total", "Tasks moved by reschedule or repack", Counter
)

TASKS_EXPIRED_TOTAL = get_or_create_metric(
    "dayplan_tasks_expired_total", "Pending tasks swept after their window passed", Counter
)

QUEUE_DEPTH = get_or_create_metric(
    "dayplan_queue_depth", "Current items waiting in the pipeline queue", Gauge
)
