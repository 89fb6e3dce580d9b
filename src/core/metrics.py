"""
Prometheus Metrics for Observability

Tracks per-stage latency, per-image outcomes and batch shape.
Exposes /api/v1/metrics for Prometheus scraping.
"""

import time
from contextlib import contextmanager

from prometheus_client import (
    Counter,
    Histogram,
    Info,
    generate_latest,
    CONTENT_TYPE_LATEST,
    REGISTRY
)

# =============================================================================
# Metrics Definitions
# =============================================================================

# Pipeline Latency - Per Stage
pipeline_latency_seconds = Histogram(
    "pipeline_latency_seconds",
    "Time spent in each pipeline stage",
    labelnames=["stage", "status"],
    buckets=[0.005, 0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0]
)

# Whole batch
batch_duration_seconds = Histogram(
    "batch_duration_seconds",
    "Total time to process one batch",
    labelnames=["result"],
    buckets=[0.1, 0.5, 1.0, 5.0, 10.0, 30.0, 60.0, 120.0, 300.0]
)

batch_size_images = Histogram(
    "batch_size_images",
    "Number of images submitted per batch",
    buckets=[1, 2, 5, 10, 25, 50, 100, 200]
)

# Per-image outcomes
images_processed_total = Counter(
    "images_processed_total",
    "Total number of images run through the pipeline",
    labelnames=["status", "output_format"]
)

# API Request Metrics
http_requests_total = Counter(
    "http_requests_total",
    "Total HTTP requests",
    labelnames=["method", "endpoint", "status"]
)

http_request_duration_seconds = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration",
    labelnames=["method", "endpoint"],
    buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0]
)

# Application Info
app_info = Info(
    "batch_imagery_app",
    "Application information"
)


# =============================================================================
# Helper Functions
# =============================================================================

def set_app_info(version: str, environment: str, avif: bool = False):
    app_info.info({
        "version": version,
        "environment": environment,
        "avif": str(avif).lower()
    })


@contextmanager
def track_stage_latency(stage: str):
    """
    Context manager to track stage latency.

    Usage:
        with track_stage_latency("mask"):
            # do work
    """
    start = time.time()
    status = "success"
    try:
        yield
    except Exception:
        status = "error"
        raise
    finally:
        duration = time.time() - start
        pipeline_latency_seconds.labels(stage=stage, status=status).observe(duration)


def record_image_outcome(status: str, output_format: str):
    """Record one image leaving the pipeline (processed or skipped)."""
    images_processed_total.labels(status=status, output_format=output_format).inc()


def record_batch(result: str, size: int, duration_seconds: float):
    """Record a finished batch."""
    batch_size_images.observe(size)
    batch_duration_seconds.labels(result=result).observe(duration_seconds)


def get_metrics() -> bytes:
    """Generate Prometheus metrics output."""
    return generate_latest(REGISTRY)


def get_metrics_content_type() -> str:
    """Get the content type for Prometheus metrics."""
    return CONTENT_TYPE_LATEST
