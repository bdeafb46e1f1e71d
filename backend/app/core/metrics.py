"""Prometheus metrics for the API and the encoding workers."""

import os

from prometheus_client import (
    Counter,
    Gauge,
    Histogram,
    Info,
    CollectorRegistry,
    generate_latest,
    CONTENT_TYPE_LATEST,
    multiprocess,
)

REGISTRY = CollectorRegistry()

# Multiprocess mode (gunicorn, celery prefork)
if "PROMETHEUS_MULTIPROC_DIR" in os.environ or "prometheus_multiproc_dir" in os.environ:
    multiprocess.MultiProcessCollector(REGISTRY)


# ============================================
# Application Info
# ============================================
APP_INFO = Info(
    "episode_hls_app",
    "Application information",
    registry=REGISTRY,
)


# ============================================
# HTTP Request Metrics
# ============================================
HTTP_REQUESTS_TOTAL = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "endpoint", "status_code"],
    registry=REGISTRY,
)

HTTP_REQUEST_DURATION_SECONDS = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "endpoint"],
    buckets=[0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0],
    registry=REGISTRY,
)

HTTP_REQUESTS_IN_PROGRESS = Gauge(
    "http_requests_in_progress",
    "Number of HTTP requests currently in progress",
    ["method", "endpoint"],
    registry=REGISTRY,
)


# ============================================
# Encoding Job Metrics
# ============================================
ENCODING_JOBS_TOTAL = Counter(
    "encoding_jobs_total",
    "Finished encoding jobs by outcome",
    ["status"],
    registry=REGISTRY,
)

ENCODING_JOBS_IN_PROGRESS = Gauge(
    "encoding_jobs_in_progress",
    "Encoding jobs currently running on this worker",
    registry=REGISTRY,
)

ENCODING_JOB_DURATION_SECONDS = Histogram(
    "encoding_job_duration_seconds",
    "Wall time of a whole encoding job",
    buckets=[30.0, 60.0, 120.0, 300.0, 600.0, 900.0, 1200.0, 1800.0, 3600.0],
    registry=REGISTRY,
)

RENDITION_ENCODE_DURATION_SECONDS = Histogram(
    "rendition_encode_duration_seconds",
    "Wall time of one rendition encode",
    ["resolution", "status"],
    buckets=[10.0, 30.0, 60.0, 120.0, 300.0, 600.0, 1200.0, 1800.0],
    registry=REGISTRY,
)

SOURCE_DOWNLOAD_ATTEMPTS_TOTAL = Counter(
    "source_download_attempts_total",
    "Source download attempts by result",
    ["result"],
    registry=REGISTRY,
)

ORPHANED_JOBS_RECONCILED_TOTAL = Counter(
    "orphaned_jobs_reconciled_total",
    "Jobs failed by the startup reconciliation sweep",
    registry=REGISTRY,
)


def get_metrics() -> bytes:
    """Generate latest metrics in Prometheus format.

    Returns:
        bytes: Prometheus-formatted metrics
    """
    return generate_latest(REGISTRY)


def get_content_type() -> str:
    return CONTENT_TYPE_LATEST


def set_app_info(version: str, environment: str) -> None:
    """Set application info metrics.

    Args:
        version: Application version
        environment: Deployment environment
    """
    APP_INFO.info({
        "version": version,
        "environment": environment,
    })
