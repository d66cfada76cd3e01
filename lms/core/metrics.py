"""Application metrics using the Prometheus client library.

Every metric the service exposes is defined here, one inventory for the
whole process.  Other modules import a metric and increment or observe
it at the point of action; GET /metrics renders them in exposition
format for the Prometheus scraper.

Counters only go up (rates come from rate() in PromQL), gauges go up and
down (in-flight requests, queue depth), histograms bucket observations so
Prometheus can estimate percentiles.
"""

from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram

# ---------------------------------------------------------------------------
# HTTP metrics (populated by the MetricsMiddleware)
# ---------------------------------------------------------------------------

REQUEST_COUNT = Counter(
    "http_requests_total",
    "Total HTTP requests by method, endpoint, and status code",
    ["method", "endpoint", "status_code"],
)

REQUEST_DURATION = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "endpoint"],
    buckets=[0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0],
)

ACTIVE_REQUESTS = Gauge(
    "http_active_requests",
    "Number of HTTP requests currently being processed",
)

# ---------------------------------------------------------------------------
# Infrastructure metrics
# ---------------------------------------------------------------------------

CACHE_OPERATIONS = Counter(
    "cache_operations_total",
    "Cache get operations by result",
    ["operation"],  # "hit", "miss" or "error"
)

QUEUE_DEPTH = Gauge(
    "task_queue_depth",
    "Number of tasks waiting in a queue",
    ["queue_name"],  # "enrollment_notifications", "course_completions"
)

QUEUE_WAIT = Histogram(
    "task_queue_wait_seconds",
    "Time a task spent queued before the worker picked it up",
    ["queue_name"],
    buckets=[0.5, 1, 5, 15, 60, 300, 900],
)

# ---------------------------------------------------------------------------
# Progress aggregation metrics
# ---------------------------------------------------------------------------

ENROLLMENT_EVENTS = Counter(
    "enrollment_events_total",
    "Enrollment ledger operations by kind and outcome",
    # kind: enroll|unenroll|bulk_item
    # outcome: ok|conflict|not_found|error
    ["kind", "outcome"],
)

MATERIAL_COMPLETIONS = Counter(
    "material_completions_total",
    "Material completion calls, split into first completions and replays",
    ["result"],  # "new" or "replay"
)

TOPIC_COMPLETIONS = Counter(
    "topic_completions_total",
    "Topics newly marked complete for a student",
)

COURSE_RECOMPUTES = Counter(
    "course_progress_recomputes_total",
    "Course progress recomputations",
)

COURSE_COMPLETIONS = Counter(
    "course_completions_total",
    "Enrollments that reached 100 percent",
)

NOTIFICATION_FAILURES = Counter(
    "notification_failures_total",
    "Post-commit notifications that could not be handed off",
    ["queue_name"],
)
