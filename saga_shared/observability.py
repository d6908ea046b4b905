"""
Observability Module for the Appointment Saga

Provides:
- OpenTelemetry tracing setup and a span helper for saga steps
- Prometheus metrics for bus consumers and saga steps
- A timer context manager for step durations
"""

import os
import time
import logging
from typing import Dict, Any, Optional
from contextlib import asynccontextmanager

from opentelemetry import trace
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter
from opentelemetry.sdk.resources import Resource, SERVICE_NAME
from opentelemetry.trace import Status, StatusCode
from prometheus_client import (
    Counter, Histogram, Info,
    generate_latest, CONTENT_TYPE_LATEST, REGISTRY
)

logger = logging.getLogger(__name__)

# Global tracer (initialized lazily)
_tracer: Optional[trace.Tracer] = None
_metrics_initialized = False


# =============================================================================
# OpenTelemetry Tracing
# =============================================================================

def setup_tracing(service_name: str, enable_console_export: bool = False) -> trace.Tracer:
    """
    Setup OpenTelemetry tracing for a service.

    Args:
        service_name: Name of the service for tracing
        enable_console_export: Enable console span export for debugging

    Returns:
        Tracer instance
    """
    global _tracer

    resource = Resource.create({
        SERVICE_NAME: service_name,
        "service.version": os.getenv("SERVICE_VERSION", "1.0.0"),
        "deployment.environment": os.getenv("DEPLOYMENT_ENV", "development")
    })
    provider = TracerProvider(resource=resource)

    if enable_console_export:
        provider.add_span_processor(BatchSpanProcessor(ConsoleSpanExporter()))
        logger.info("Console trace exporter enabled")

    trace.set_tracer_provider(provider)
    _tracer = trace.get_tracer(service_name)

    logger.info(f"OpenTelemetry tracing initialized for {service_name}")
    return _tracer


def get_tracer() -> Optional[trace.Tracer]:
    """Get the global tracer instance."""
    return _tracer


@asynccontextmanager
async def trace_span(name: str, attributes: Dict[str, Any] = None):
    """
    Async context manager for creating a trace span.
    No-op until setup_tracing() has been called.

    Usage:
        async with trace_span("appointment.create", {"appointment_id": aid}):
            ...
    """
    if not _tracer:
        yield None
        return

    with _tracer.start_as_current_span(name) as span:
        if attributes:
            for key, value in attributes.items():
                span.set_attribute(key, str(value))
        try:
            yield span
        except Exception as e:
            span.set_status(Status(StatusCode.ERROR, str(e)))
            span.record_exception(e)
            raise


# =============================================================================
# Prometheus Metrics Definitions
# =============================================================================

EVENTS_TOTAL = Counter(
    'appointment_events_total',
    'Total number of bus events processed',
    ['consumer', 'event_type', 'status']
)

EVENTS_ERRORS = Counter(
    'appointment_events_errors_total',
    'Total number of bus event processing errors',
    ['consumer', 'event_type', 'error_type']
)

EVENT_PROCESSING_DURATION = Histogram(
    'appointment_event_processing_duration_seconds',
    'Time spent processing bus events',
    ['consumer', 'event_type'],
    buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0)
)

SAGA_STEPS_TOTAL = Counter(
    'appointment_saga_steps_total',
    'Saga step outcomes',
    ['step', 'outcome']
)

SAGA_STEP_DURATION = Histogram(
    'appointment_saga_step_duration_seconds',
    'Saga step latency',
    ['step'],
    buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5)
)

SERVICE_INFO = Info(
    'appointment_service',
    'Service information'
)


def setup_metrics(service_name: str, service_version: str = "1.0.0"):
    """Publish service info once per process."""
    global _metrics_initialized

    if _metrics_initialized:
        return

    SERVICE_INFO.info({
        'service': service_name,
        'version': service_version,
        'environment': os.getenv('DEPLOYMENT_ENV', 'development')
    })
    _metrics_initialized = True
    logger.info(f"Prometheus metrics initialized for {service_name}")


def get_metrics_response():
    """
    Get Prometheus metrics as HTTP response content.

    Returns:
        Tuple of (content_bytes, content_type) for HTTP response
    """
    return generate_latest(REGISTRY), CONTENT_TYPE_LATEST


# =============================================================================
# Metric Recording Utilities
# =============================================================================

def record_event_processed(
    consumer: str,
    event_type: str,
    status: str = "success",
    duration_seconds: float = None
):
    """Record a bus event processing metric."""
    EVENTS_TOTAL.labels(consumer=consumer, event_type=event_type, status=status).inc()

    if duration_seconds is not None:
        EVENT_PROCESSING_DURATION.labels(
            consumer=consumer,
            event_type=event_type
        ).observe(duration_seconds)


def record_event_error(consumer: str, event_type: str, error_type: str):
    """Record a bus event processing error."""
    EVENTS_ERRORS.labels(
        consumer=consumer,
        event_type=event_type,
        error_type=error_type
    ).inc()


def record_saga_step(step: str, outcome: str):
    """Record the outcome of a saga step (success or an error kind)."""
    SAGA_STEPS_TOTAL.labels(step=step, outcome=outcome).inc()


class MetricTimer:
    """Context manager for timing operations and recording to a histogram."""

    def __init__(self, histogram, labels: Dict[str, str] = None):
        self.histogram = histogram
        self.labels = labels or {}
        self.start_time = None

    def _observe(self):
        if self.start_time:
            duration = time.time() - self.start_time
            if self.labels:
                self.histogram.labels(**self.labels).observe(duration)
            else:
                self.histogram.observe(duration)

    def __enter__(self):
        self.start_time = time.time()
        return self

    def __exit__(self, *args):
        self._observe()

    async def __aenter__(self):
        self.start_time = time.time()
        return self

    async def __aexit__(self, *args):
        self._observe()


def time_saga_step(step: str) -> MetricTimer:
    """Create a timer context manager for a saga step."""
    return MetricTimer(SAGA_STEP_DURATION, {"step": step})
