"""Prometheus metrics for lifecycle operations and readiness."""

from __future__ import annotations

from prometheus_client import Counter, Histogram

lifecycle_operations_total = Counter(
    "berth_lifecycle_operations_total",
    "Lifecycle operations started",
    ["action"],
)
lifecycle_operation_failures_total = Counter(
    "berth_lifecycle_operation_failures_total",
    "Lifecycle operations that raised",
    ["action"],
)
lifecycle_operation_seconds = Histogram(
    "berth_lifecycle_operation_seconds",
    "Wall time of lifecycle operations",
    ["action"],
)
hook_failures_total = Counter(
    "berth_hook_failures_total",
    "Hook handlers that raised",
    ["hook"],
)
plugin_load_failures_total = Counter(
    "berth_plugin_load_failures_total",
    "App-declared plugins that failed to load",
)
orphan_containers_removed_total = Counter(
    "berth_orphan_containers_removed_total",
    "Containers removed by cleanup because no registered app owns them",
)
url_scan_failures_total = Counter(
    "berth_url_scan_failures_total",
    "URLs still unavailable after exhausting retries",
)
healthcheck_failures_total = Counter(
    "berth_healthcheck_failures_total",
    "Services that exhausted healthcheck retries",
    ["service"],
)
metrics_report_failures_total = Counter(
    "berth_metrics_report_failures_total",
    "Remote action reports that failed or timed out",
)
