"""
Telemetry Module

Provides Prometheus metrics for reconciliation job health
(runs, duration, rows scanned/repaired, batch failures).
"""

from clubstats.telemetry.metrics import (
    job_runs_total,
    job_duration_ms,
    job_last_success_timestamp,
    reconcile_rows_scanned_total,
    reconcile_rows_repaired_total,
    reconcile_batch_failures_total,
    record_job_run,
    record_reconcile_batch,
    record_reconcile_failure,
    get_metrics_text,
)

__all__ = [
    "job_runs_total",
    "job_duration_ms",
    "job_last_success_timestamp",
    "reconcile_rows_scanned_total",
    "reconcile_rows_repaired_total",
    "reconcile_batch_failures_total",
    "record_job_run",
    "record_reconcile_batch",
    "record_reconcile_failure",
    "get_metrics_text",
]
