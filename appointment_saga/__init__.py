"""
Appointment Saga - cross-country medical appointment booking

A requester books a slot (insured id, schedule id, country). The booking is
tracked as pending in Redis, fanned out to the country's processor, written
to that country's relational store, and confirmed back so the tracking
record becomes completed.

Key Features:
- Atomic slot reservation (one non-failed appointment per slot and country)
- Country-filtered fan-out over a Redis Stream with per-country consumer groups
- Idempotent processing on redelivery
- Retry with backoff and a dead-letter stream for poison messages
- Stale pending sweeper (re-publish, then mark failed)

Architecture:
- FastAPI for the HTTP endpoints
- Redis for tracking records and both buses
- SQLAlchemy asyncio (asyncpg) for the per-country durable stores
- AppointmentService as the single home of business rules
- Prometheus metrics and OpenTelemetry spans around every saga step
"""

__version__ = "1.0.0"
