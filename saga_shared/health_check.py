"""
Health Check Utilities for the Appointment Saga

Provides reusable health check functions for validating:
- Redis connectivity (tracking store and both buses)
- Relational database connectivity (one durable store per country)
- Overall system health

All health checks return HealthCheckResult with standardized status codes:
- "healthy": Dependency is fully operational
- "degraded": Dependency is running but with issues
- "unhealthy": Dependency is not functional

Usage:
    result = await check_redis_health(redis_client)
    if result.is_healthy():
        print(f"Redis is healthy (latency: {result.latency_ms}ms)")
"""

import asyncio
import logging
import time
from typing import Dict, Any, Awaitable, Callable
from dataclasses import dataclass, asdict

from redis.asyncio import Redis

from .redis_client import ping_redis, get_redis_info

logger = logging.getLogger(__name__)


@dataclass
class HealthCheckResult:
    """
    Standardized health check result.

    Attributes:
        service_name: Name of the dependency being checked
        status: "healthy", "unhealthy", or "degraded"
        latency_ms: Response time in milliseconds
        details: Additional information (error messages, metrics, etc.)
        timestamp: Unix timestamp when check was performed
    """
    service_name: str
    status: str
    latency_ms: float
    details: Dict[str, Any]
    timestamp: float

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization"""
        return asdict(self)

    def is_healthy(self) -> bool:
        """Check if dependency is healthy"""
        return self.status == "healthy"


def _unhealthy(service_name: str, start_time: float, error: str) -> HealthCheckResult:
    return HealthCheckResult(
        service_name=service_name,
        status="unhealthy",
        latency_ms=(time.time() - start_time) * 1000,
        details={"error": error},
        timestamp=time.time(),
    )


async def check_redis_health(redis_client: Redis) -> HealthCheckResult:
    """
    Check Redis connectivity and performance.

    Args:
        redis_client: Redis client instance

    Returns:
        HealthCheckResult: Health check result with Redis metrics
    """
    start_time = time.time()
    service_name = "redis"

    if not await ping_redis(redis_client):
        return _unhealthy(service_name, start_time, "PING command failed")

    info = await get_redis_info(redis_client)
    latency_ms = (time.time() - start_time) * 1000

    status = "degraded" if "error" in info else "healthy"

    return HealthCheckResult(
        service_name=service_name,
        status=status,
        latency_ms=latency_ms,
        details={
            "version": info.get("redis_version", "unknown"),
            "uptime_seconds": info.get("uptime_seconds", 0),
            "connected_clients": info.get("connected_clients", 0),
            "used_memory": info.get("used_memory_human", "unknown"),
        },
        timestamp=time.time(),
    )


async def check_database_health(
    service_name: str,
    ping: Callable[[], Awaitable[bool]],
    timeout: float = 2.0
) -> HealthCheckResult:
    """
    Check a relational store through its async ping callable.

    Args:
        service_name: Display name (e.g. "durable-PE")
        ping: Coroutine function returning True when a trivial query succeeds
        timeout: Seconds before the check is reported unhealthy
    """
    start_time = time.time()

    try:
        ok = await asyncio.wait_for(ping(), timeout=timeout)
    except asyncio.TimeoutError:
        logger.error(f"{service_name} health check timed out after {timeout}s")
        return _unhealthy(service_name, start_time, f"Timed out after {timeout}s")
    except Exception as e:
        logger.error(f"{service_name} health check failed: {e}")
        return _unhealthy(service_name, start_time, str(e))

    if not ok:
        return _unhealthy(service_name, start_time, "ping returned False")

    return HealthCheckResult(
        service_name=service_name,
        status="healthy",
        latency_ms=(time.time() - start_time) * 1000,
        details={},
        timestamp=time.time(),
    )


async def check_all(checks: Dict[str, Awaitable[HealthCheckResult]]) -> Dict[str, HealthCheckResult]:
    """
    Run several health checks concurrently.

    Args:
        checks: Mapping of name -> pending health check coroutine

    Returns:
        Mapping of name -> HealthCheckResult
    """
    names = list(checks.keys())
    results = await asyncio.gather(*checks.values(), return_exceptions=True)

    result_dict = {}
    for name, result in zip(names, results):
        if isinstance(result, Exception):
            result_dict[name] = HealthCheckResult(
                service_name=name,
                status="unhealthy",
                latency_ms=0.0,
                details={"error": str(result)},
                timestamp=time.time(),
            )
        else:
            result_dict[name] = result

    return result_dict


def overall_status(results: Dict[str, HealthCheckResult]) -> str:
    """Collapse individual results: all healthy -> healthy, none -> unhealthy."""
    if not results:
        return "unhealthy"
    healthy = sum(1 for r in results.values() if r.is_healthy())
    if healthy == len(results):
        return "healthy"
    if healthy == 0:
        return "unhealthy"
    return "degraded"
