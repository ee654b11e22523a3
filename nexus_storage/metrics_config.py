"""Storage Metrics Configuration.

Local metrics collection using OpenTelemetry with a Prometheus reader.
Counts facade operations per backend and every remote-to-local fallback.
Disabled in test/CI environments unless explicitly enabled.
"""
from __future__ import annotations


import logging
import os
import socket
from typing import Any

from opentelemetry import metrics
from opentelemetry.exporter.prometheus import PrometheusMetricReader
from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.resources import Resource
from prometheus_client import CONTENT_TYPE_LATEST
from prometheus_client import generate_latest

logger = logging.getLogger(__name__)

# =============================================================================
# SERVICE CONFIGURATION
# =============================================================================

SERVICE_NAME = os.getenv("OTEL_SERVICE_NAME", "nexus-storage")
SERVICE_VERSION = os.getenv("OTEL_SERVICE_VERSION", "1.0.0")
DEPLOYMENT_ENVIRONMENT = os.getenv("DEPLOYMENT_ENVIRONMENT", "local")


def is_test_environment() -> bool:
    """Detect if running in test environment."""
    return "PYTEST_CURRENT_TEST" in os.environ or "CI" in os.environ or "GITHUB_ACTIONS" in os.environ


default_metrics_enabled = "false" if is_test_environment() else "true"
METRICS_ENABLED = os.getenv("STORAGE_METRICS_ENABLED", default_metrics_enabled).lower() == "true"

# Metrics instances
meter = None
operations_counter = None
fallbacks_counter = None
prometheus_reader = None

_metrics_initialized = False


def get_resource() -> Resource:
    """Create OpenTelemetry resource with service information."""
    return Resource.create(
        {
            "service.name": SERVICE_NAME,
            "service.version": SERVICE_VERSION,
            "deployment.environment": DEPLOYMENT_ENVIRONMENT,
            "host.name": socket.gethostname(),
        }
    )


def initialize_metrics():
    """Initialize the meter provider and storage counters."""
    global meter, operations_counter, fallbacks_counter, prometheus_reader

    if not METRICS_ENABLED:
        logger.debug("Storage metrics disabled")
        return

    try:
        prometheus_reader = PrometheusMetricReader()
        meter_provider = MeterProvider(resource=get_resource(), metric_readers=[prometheus_reader])
        metrics.set_meter_provider(meter_provider)
        meter = metrics.get_meter(__name__)

        operations_counter = meter.create_counter(
            name="storage_operations_total",
            description="Storage facade calls by operation, backend and outcome",
            unit="1",
        )
        fallbacks_counter = meter.create_counter(
            name="storage_fallbacks_total",
            description="Remote-to-local storage downgrades",
            unit="1",
        )
        logger.debug("Storage metrics initialized: %s v%s", SERVICE_NAME, SERVICE_VERSION)
    except Exception as e:
        logger.warning("Storage metrics initialization failed: %s", e)


def ensure_metrics_initialized():
    """Initialize metrics once per process."""
    global _metrics_initialized
    if _metrics_initialized:
        return
    if METRICS_ENABLED:
        initialize_metrics()
    _metrics_initialized = True


def is_metrics_enabled() -> bool:
    """Check if metrics collection is enabled."""
    return METRICS_ENABLED and meter is not None


def record_operation(operation: str, backend: str, status: str) -> None:
    """Count one facade call. ``status`` is success, empty or error."""
    if not is_metrics_enabled() or operations_counter is None:
        return
    try:
        operations_counter.add(
            1,
            {"operation": operation, "backend": backend, "status": status, "environment": DEPLOYMENT_ENVIRONMENT},
        )
    except Exception as e:
        logger.debug("Recording operation metric failed: %s", e)


def record_fallback(reason: str) -> None:
    """Count one remote-to-local downgrade."""
    if not is_metrics_enabled() or fallbacks_counter is None:
        return
    try:
        fallbacks_counter.add(1, {"reason": reason, "environment": DEPLOYMENT_ENVIRONMENT})
    except Exception as e:
        logger.debug("Recording fallback metric failed: %s", e)


def get_metrics_export() -> tuple[str, str]:
    """Export metrics in Prometheus format."""
    if not is_metrics_enabled() or not prometheus_reader:
        return "# Metrics not available\n", "text/plain"

    try:
        return generate_latest().decode("utf-8"), CONTENT_TYPE_LATEST
    except Exception as e:
        return f"# Error: {e}\n", "text/plain"


def get_metrics_summary() -> dict[str, Any]:
    """Get metrics summary for debugging."""
    if not is_metrics_enabled():
        return {"status": "disabled"}

    return {
        "status": "active",
        "service_name": SERVICE_NAME,
        "service_version": SERVICE_VERSION,
        "environment": DEPLOYMENT_ENVIRONMENT,
        "prometheus_enabled": prometheus_reader is not None,
    }


def shutdown_metrics():
    """Shutdown metrics collection."""
    if prometheus_reader:
        try:
            prometheus_reader.shutdown()
        except Exception as e:
            logger.debug("Metrics shutdown failed: %s", e)
