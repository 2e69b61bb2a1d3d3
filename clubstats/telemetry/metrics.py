"""
Prometheus metrics for reconciliation jobs.

Design principles:
- Low cardinality (job names only, never row ids)
- Best-effort (never block main flow)

ALLOWED LABELS:
- job:     "club_keyword_summary", "performance_review_like_count"
- status:  "ok", "error", "skipped"

For debugging a specific review or club, use logs, NOT metric labels.
"""

import logging
import time

from prometheus_client import (
    Counter,
    Gauge,
    Histogram,
    generate_latest,
    CONTENT_TYPE_LATEST,
    REGISTRY,
)

logger = logging.getLogger(__name__)

# =============================================================================
# JOB HEALTH METRICS
# =============================================================================

job_runs_total = Counter(
    "job_runs_total",
    "Total job runs by job and status",
    ["job", "status"],
)

job_last_success_timestamp = Gauge(
    "job_last_success_timestamp",
    "Unix timestamp of last successful job run",
    ["job"],
)

job_duration_ms = Histogram(
    "job_duration_ms",
    "Job duration in milliseconds",
    ["job"],
    buckets=[100, 500, 1000, 5000, 10000, 30000, 60000, 120000, 300000, 600000],
)

# =============================================================================
# RECONCILIATION METRICS
# =============================================================================

reconcile_rows_scanned_total = Counter(
    "reconcile_rows_scanned_total",
    "Source rows read by reconciliation scans",
    ["job"],
)

reconcile_rows_repaired_total = Counter(
    "reconcile_rows_repaired_total",
    "Summary rows written (updated or inserted) by reconciliation",
    ["job"],
)

reconcile_batch_failures_total = Counter(
    "reconcile_batch_failures_total",
    "Reconciliation batches that raised and aborted their run",
    ["job"],
)


def record_job_run(job: str, status: str, duration_ms: float) -> None:
    """
    Record a job run with status and duration.

    Args:
        job: Job identifier
        status: "ok", "error", "skipped"
        duration_ms: Job duration in milliseconds
    """
    try:
        job_runs_total.labels(job=job, status=status).inc()
        if duration_ms > 0:
            job_duration_ms.labels(job=job).observe(duration_ms)
        if status == "ok":
            job_last_success_timestamp.labels(job=job).set(time.time())
    except Exception as e:
        logger.warning(f"Failed to record job run metric: {e}")


def record_reconcile_batch(job: str, scanned: int, repaired: int) -> None:
    try:
        reconcile_rows_scanned_total.labels(job=job).inc(scanned)
        if repaired:
            reconcile_rows_repaired_total.labels(job=job).inc(repaired)
    except Exception as e:
        logger.warning(f"Failed to record reconcile batch metric: {e}")


def record_reconcile_failure(job: str) -> None:
    try:
        reconcile_batch_failures_total.labels(job=job).inc()
    except Exception as e:
        logger.warning(f"Failed to record reconcile failure metric: {e}")


def get_metrics_text() -> tuple[bytes, str]:
    """Prometheus exposition payload and its content type."""
    return generate_latest(REGISTRY), CONTENT_TYPE_LATEST
