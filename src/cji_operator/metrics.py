from __future__ import annotations

from prometheus_client import Counter, Histogram

RECONCILE_TOTAL = Counter(
    "cji_operator_reconcile_total",
    "Number of job invocation reconciliations",
    labelnames=("result",),
)

RECONCILE_DURATION = Histogram(
    "cji_operator_reconcile_duration_seconds",
    "Duration of job invocation reconciliations in seconds",
    buckets=(0.05, 0.1, 0.25, 0.5, 1, 2, 5, 10),
)

JOBS_INVOKED_TOTAL = Counter(
    "cji_operator_jobs_invoked_total",
    "Number of Jobs staged for creation",
    labelnames=("type",),
)

INVOCATIONS_COMPLETED_TOTAL = Counter(
    "cji_operator_invocations_completed_total",
    "Number of job invocations observed transitioning to completed",
)

CACHE_APPLY_TOTAL = Counter(
    "cji_operator_cache_apply_total",
    "Number of staged objects written to the cluster",
    labelnames=("operation", "result"),
)

WATCH_ENQUEUE_TOTAL = Counter(
    "cji_operator_watch_enqueue_total",
    "Number of reconciles requested by the Job watch router",
)
