"""
Shared Utilities for the Appointment Saga

Common building blocks used by the appointment service and its workers:
- Redis client factory and connection pooling
- Bus event envelope and Redis Streams broker
- Resilient stream consumer with retry and dead-letter queue
- Health checks for Redis and the relational stores
- Prometheus metrics and OpenTelemetry tracing helpers

Usage:
    from saga_shared import RedisConfig, create_redis_client, EventBroker

    redis = await create_redis_client(RedisConfig.from_env())
    broker = EventBroker(redis)
"""

from .redis_client import (
    create_redis_client,
    close_redis_client,
    ping_redis,
    get_redis_info,
    RedisConfig,
)

from .health_check import (
    check_redis_health,
    check_database_health,
    check_all,
    overall_status,
    HealthCheckResult,
)

from .events import (
    BusEvent,
    EventTypes,
    COUNTRY_ATTRIBUTE,
)

from .event_broker import (
    EventBroker,
    dead_letter_stream,
    routed_group,
)

from .event_consumer import (
    EventConsumer,
    ConsumerConfig,
    ConsumerMetrics,
    ProcessingResult,
)

from .observability import (
    setup_tracing,
    get_tracer,
    trace_span,
    setup_metrics,
    get_metrics_response,
    record_event_processed,
    record_event_error,
    record_saga_step,
    time_saga_step,
    MetricTimer,
)

__all__ = [
    # Redis client utilities
    "create_redis_client",
    "close_redis_client",
    "ping_redis",
    "get_redis_info",
    "RedisConfig",
    # Health check utilities
    "check_redis_health",
    "check_database_health",
    "check_all",
    "overall_status",
    "HealthCheckResult",
    # Event utilities
    "BusEvent",
    "EventTypes",
    "COUNTRY_ATTRIBUTE",
    "EventBroker",
    "dead_letter_stream",
    "routed_group",
    # Event consumer utilities
    "EventConsumer",
    "ConsumerConfig",
    "ConsumerMetrics",
    "ProcessingResult",
    # Observability utilities
    "setup_tracing",
    "get_tracer",
    "trace_span",
    "setup_metrics",
    "get_metrics_response",
    "record_event_processed",
    "record_event_error",
    "record_saga_step",
    "time_saga_step",
    "MetricTimer",
]
