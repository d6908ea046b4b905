"""
Appointment Saga - FastAPI Application

Thin HTTP adapter over AppointmentService: parses and validates bodies,
calls the service, and maps ServiceResult kinds to status codes.

Run with:
    uvicorn appointment_saga.app:create_app --factory
"""

import os
import json
import logging
import time
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request, Response
from fastapi.responses import JSONResponse

from saga_shared import (
    check_all,
    check_database_health,
    check_redis_health,
    get_metrics_response,
    overall_status,
    setup_metrics,
    setup_tracing,
)

from . import __version__
from .config import AppointmentConfig
from .consumers import ConfirmationConsumer, confirmation_consumer_config
from .errors import ErrorKind, ServiceResult
from .models import (
    AppointmentListResponse,
    AppointmentRequest,
    ErrorResponse,
    HealthResponse,
)
from .runtime import SagaRuntime, build_runtime
from .validation import validate_appointment_request, validate_insured_id

logger = logging.getLogger(__name__)

SERVICE_NAME = "appointment-saga"


def _error(kind: ErrorKind, message: str) -> JSONResponse:
    return JSONResponse(
        status_code=kind.status_code,
        content=ErrorResponse(message=message, kind=kind.value).model_dump(),
    )


def _failure(result: ServiceResult) -> JSONResponse:
    return _error(result.error.kind, result.error.message)


def create_app(
    config: Optional[AppointmentConfig] = None,
    runtime: Optional[SagaRuntime] = None,
) -> FastAPI:
    """
    Build the FastAPI application.

    Args:
        config: Saga configuration (default: AppointmentConfig.from_env() at startup)
        runtime: Pre-built runtime; when given, the lifespan neither builds nor closes it
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("Starting appointment saga API...")
        app.state.started_at = time.time()
        app.state.confirmation_consumer = None

        if runtime is not None:
            app.state.runtime = runtime
        else:
            app.state.runtime = await build_runtime(config or AppointmentConfig.from_env())

        active = app.state.runtime
        setup_metrics(SERVICE_NAME, __version__)
        if os.getenv("APPOINTMENT_TRACE_CONSOLE", "").lower() in ("true", "1", "yes"):
            setup_tracing(SERVICE_NAME, enable_console_export=True)

        if active.config.run_confirmation_consumer:
            consumer = ConfirmationConsumer(
                active.redis,
                active.broker,
                confirmation_consumer_config(active.config),
                active.service,
            )
            await consumer.start()
            app.state.confirmation_consumer = consumer

        logger.info("Appointment saga API ready")

        yield

        logger.info("Shutting down appointment saga API...")
        if app.state.confirmation_consumer is not None:
            await app.state.confirmation_consumer.stop()
        if runtime is None:
            await active.close()
        logger.info("Appointment saga API stopped")

    app = FastAPI(
        title="Appointment Saga Service",
        description="Cross-country medical appointment booking",
        version=__version__,
        lifespan=lifespan,
    )

    @app.post("/appointments", status_code=201)
    async def create_appointment(request: Request):
        """
        Create a pending appointment and fan it out to its country.

        The body is read raw rather than as a pydantic parameter so malformed
        or invalid input answers 400 with {message, kind} instead of a 422.
        """
        try:
            body = await request.json()
        except (json.JSONDecodeError, UnicodeDecodeError):
            return _error(ErrorKind.VALIDATION, "Invalid JSON in request body")

        is_valid, message = validate_appointment_request(body)
        if not is_valid:
            return _error(ErrorKind.VALIDATION, message)

        result = await request.app.state.runtime.service.create_appointment(
            AppointmentRequest.model_validate(body)
        )
        if not result.success:
            return _failure(result)
        return JSONResponse(
            status_code=201,
            content=result.data.to_response().model_dump(by_alias=True, exclude_none=True),
        )

    @app.get("/appointments/{insured_id}")
    async def list_appointments(insured_id: str, request: Request):
        """List a requester's appointments, newest first"""
        is_valid, message = validate_insured_id(insured_id)
        if not is_valid:
            return _error(ErrorKind.VALIDATION, message)

        result = await request.app.state.runtime.service.list_appointments(insured_id)
        if not result.success:
            return _failure(result)

        body = AppointmentListResponse(
            appointments=[r.to_response() for r in result.data],
            count=len(result.data),
        )
        return body.model_dump(by_alias=True, exclude_none=True)

    @app.post("/appointments/{appointment_id}/republish")
    async def republish_appointment(appointment_id: str, request: Request):
        """Send a pending appointment to the fan-out bus again"""
        result = await request.app.state.runtime.service.republish(appointment_id)
        if not result.success:
            return _failure(result)
        return result.data.to_response().model_dump(by_alias=True, exclude_none=True)

    @app.get("/health", response_model=HealthResponse)
    async def health_check(request: Request):
        """Redis plus every durable store opened by this process"""
        active = request.app.state.runtime
        checks = {"redis": check_redis_health(active.redis)}
        for store in active.repositories.durable_stores():
            name = f"durable-{store.country.value}"
            checks[name] = check_database_health(name, store.ping)

        results = await check_all(checks)
        status = overall_status(results)
        body = HealthResponse(
            status=status,
            checks={name: r.to_dict() for name, r in results.items()},
            uptime_seconds=time.time() - request.app.state.started_at,
        )
        return JSONResponse(status_code=200 if status != "unhealthy" else 503, content=body.model_dump())

    @app.get("/metrics")
    async def metrics():
        """Prometheus exposition"""
        content, content_type = get_metrics_response()
        return Response(content=content, media_type=content_type)

    @app.get("/")
    async def root():
        return {
            "service": "Appointment Saga Service",
            "version": __version__,
            "status": "operational",
            "endpoints": {
                "create": "POST /appointments",
                "list": "GET /appointments/{insuredId}",
                "republish": "POST /appointments/{appointmentId}/republish",
                "health": "GET /health",
                "metrics": "GET /metrics",
            },
        }

    return app


def main():
    """Local development entry point"""
    import uvicorn

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )
    uvicorn.run(
        "appointment_saga.app:create_app",
        factory=True,
        host="0.0.0.0",
        port=int(os.getenv("PORT", "8005")),
        log_level="info",
    )


if __name__ == "__main__":
    main()
