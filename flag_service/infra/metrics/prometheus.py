"""Prometheus metrics for the flag service."""

from __future__ import annotations

from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram

# Custom registry so tests and multiple apps never collide on the default one
REGISTRY = CollectorRegistry()

# Covers durations from 1ms to 10s
DEFAULT_LATENCY_BUCKETS = (
    0.001,
    0.005,
    0.01,
    0.025,
    0.05,
    0.1,
    0.25,
    0.5,
    1.0,
    2.5,
    5.0,
    10.0,
)

# HTTP metrics
http_requests_total = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "endpoint", "status"],
    registry=REGISTRY,
)

http_request_duration_seconds = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "endpoint"],
    buckets=DEFAULT_LATENCY_BUCKETS,
    registry=REGISTRY,
)

# Database metrics
database_query_duration_seconds = Histogram(
    "database_query_duration_seconds",
    "Database query duration in seconds",
    ["operation"],
    buckets=DEFAULT_LATENCY_BUCKETS,
    registry=REGISTRY,
)

# Flag cache metrics
cache_reads_total = Counter(
    "flag_cache_reads_total",
    "Cached flag reads by outcome",
    ["kind", "outcome"],
    registry=REGISTRY,
)

cache_invalidations_total = Counter(
    "flag_cache_invalidations_total",
    "Flag cache invalidations by outcome",
    ["kind", "outcome"],
    registry=REGISTRY,
)

# Dispatch metrics
flag_schedule_dispatch_total = Counter(
    "flag_schedule_dispatch_total",
    "Delayed messages dispatched or cancelled for flag schedules",
    ["operation", "outcome"],
    registry=REGISTRY,
)

flag_schedule_compensations_total = Counter(
    "flag_schedule_compensations_total",
    "Batch schedule creations rolled back after a partial dispatch failure",
    registry=REGISTRY,
)

# Execution metrics
flag_schedule_executions_total = Counter(
    "flag_schedule_executions_total",
    "Flag schedule executions by outcome",
    ["schedule_type", "status", "reason"],
    registry=REGISTRY,
)

flag_schedule_execution_duration_seconds = Histogram(
    "flag_schedule_execution_duration_seconds",
    "Time spent executing a dispatched flag schedule message",
    ["schedule_type"],
    buckets=DEFAULT_LATENCY_BUCKETS,
    registry=REGISTRY,
)

flag_schedule_executions_in_flight = Gauge(
    "flag_schedule_executions_in_flight",
    "Flag schedule executions currently holding a worker slot",
    registry=REGISTRY,
)

flag_schedule_rate_limit_waits_total = Counter(
    "flag_schedule_rate_limit_waits_total",
    "Times an execution waited because the worker rate ceiling was reached",
    registry=REGISTRY,
)

# Cascade metrics
flag_cascade_updates_total = Counter(
    "flag_cascade_updates_total",
    "Dependent flags updated by the dependency cascade",
    ["direction"],
    registry=REGISTRY,
)

flag_cascade_failures_total = Counter(
    "flag_cascade_failures_total",
    "Dependency cascades aborted by a read or write failure",
    ["direction"],
    registry=REGISTRY,
)

# Taskiq metrics
taskiq_tasks_total = Counter(
    "taskiq_tasks_total",
    "Total number of Taskiq tasks executed",
    ["task_name", "status"],
    registry=REGISTRY,
)

taskiq_task_duration_seconds = Histogram(
    "taskiq_task_duration_seconds",
    "Taskiq task duration in seconds",
    ["task_name"],
    buckets=DEFAULT_LATENCY_BUCKETS,
    registry=REGISTRY,
)

# Application metrics
application_info = Gauge(
    "application_info",
    "Application information",
    ["version", "service", "environment"],
    registry=REGISTRY,
)
