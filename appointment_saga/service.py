"""
AppointmentService - business rules of the appointment saga

Every operation returns a ServiceResult. Store and bus exceptions are caught
here, logged, and turned into Infrastructure failures; the entry points only
translate results into HTTP responses or consumer outcomes.

Steps run strictly in order: a store write completes before the matching
publish is attempted, and a failed write is never followed by a publish.
"""

import logging
import uuid
from datetime import datetime, timezone
from typing import List

from saga_shared import record_saga_step, time_saga_step, trace_span

from .config import AppointmentConfig
from .errors import (
    AppointmentError,
    ConflictError,
    ErrorKind,
    InvalidTransitionError,
    ServiceResult,
)
from .models import (
    AppointmentRequest,
    AppointmentStatus,
    ConfirmationEvent,
    CountryISO,
    DurableRecord,
    FanoutMessage,
    TrackingRecord,
    utc_now_iso,
)
from .publishers import ConfirmationPublisher, FanoutPublisher
from .repository_factory import RepositoryFactory

logger = logging.getLogger(__name__)


class AppointmentService:
    """
    Orchestrates the four saga steps plus the reconciliation operations.

    Args:
        repositories: Factory for the tracking store and per-country durable stores
        fanout: Publisher for creation messages
        confirmations: Publisher for processed confirmations
        config: Saga configuration
    """

    def __init__(
        self,
        repositories: RepositoryFactory,
        fanout: FanoutPublisher,
        confirmations: ConfirmationPublisher,
        config: AppointmentConfig,
    ):
        self.repositories = repositories
        self.fanout = fanout
        self.confirmations = confirmations
        self.config = config

    # ------------------------------------------------------------------
    # create
    # ------------------------------------------------------------------

    async def create_appointment(self, request: AppointmentRequest) -> ServiceResult[TrackingRecord]:
        """Record a pending appointment and fan it out to its country"""
        country = CountryISO(request.country_iso)
        attributes = {"insured_id": request.insured_id, "schedule_id": request.schedule_id,
                      "country_iso": country.value}

        async with trace_span("appointment.create", attributes), time_saga_step("create"):
            tracking = self.repositories.create_tracking_store()

            try:
                existing = await tracking.find_by_schedule_id(request.schedule_id, country)
            except Exception as e:
                return self._infrastructure("create", "Failed to create appointment", e)

            if existing is not None:
                record_saga_step("create", "conflict")
                logger.info(
                    f"Slot {request.schedule_id}/{country.value} already held by {existing.appointment_id}"
                )
                return ServiceResult.fail(
                    ErrorKind.CONFLICT,
                    f"Schedule slot {request.schedule_id} is already taken",
                )

            record = TrackingRecord(
                appointment_id=str(uuid.uuid4()),
                insured_id=request.insured_id,
                schedule_id=request.schedule_id,
                country_iso=country,
                status=AppointmentStatus.PENDING,
                created_at=utc_now_iso(),
            )

            try:
                await tracking.save(record)
            except ConflictError as e:
                record_saga_step("create", "conflict")
                logger.info(f"Lost slot reservation race for {request.schedule_id}/{country.value}")
                return ServiceResult.fail(
                    ErrorKind.CONFLICT,
                    f"Schedule slot {request.schedule_id} is already taken",
                    e.details,
                )
            except Exception as e:
                return self._infrastructure("create", "Failed to create appointment", e)

            try:
                await self.fanout.publish_created(FanoutMessage.from_record(record))
            except Exception as e:
                logger.error(
                    f"Appointment {record.appointment_id} saved but fan-out failed; "
                    f"it stays pending until republished"
                )
                return self._infrastructure("create", "Failed to create appointment", e)

            self._transition(record.appointment_id, None, AppointmentStatus.PENDING)
            record_saga_step("create", "success")
            return ServiceResult.ok(record)

    # ------------------------------------------------------------------
    # process
    # ------------------------------------------------------------------

    async def process_appointment(
        self, message: FanoutMessage, country: CountryISO
    ) -> ServiceResult[DurableRecord]:
        """Persist a fanned-out appointment in the country store, then confirm it"""
        country = CountryISO(country)

        async with trace_span("appointment.process", {"appointment_id": message.appointment_id,
                                                      "country_iso": country.value}), \
                time_saga_step("process"):
            if message.country_iso != country:
                record_saga_step("process", "validation")
                logger.error(
                    f"Appointment {message.appointment_id} for {message.country_iso.value} "
                    f"reached the {country.value} processor"
                )
                return ServiceResult.fail(
                    ErrorKind.VALIDATION,
                    f"Message country {message.country_iso.value} does not match processor {country.value}",
                )

            try:
                durable = self.repositories.create_durable_store(country)
                existing = None
                if self.config.idempotent_process:
                    existing = await durable.find_by_id(message.appointment_id)

                if existing is not None:
                    logger.info(
                        f"Appointment {message.appointment_id} already stored in {country.value}; "
                        f"re-sending confirmation"
                    )
                    record = existing
                else:
                    now = datetime.now(timezone.utc)
                    record = DurableRecord(
                        appointment_id=message.appointment_id,
                        insured_id=message.insured_id,
                        schedule_id=message.schedule_id,
                        country_iso=country,
                        status=AppointmentStatus.COMPLETED,
                        created_at=now,
                        updated_at=now,
                    )
                    await durable.save(record)
            except Exception as e:
                return self._infrastructure("process", "Failed to process appointment", e)

            confirmation = ConfirmationEvent(
                appointment_id=record.appointment_id,
                insured_id=record.insured_id,
                status=AppointmentStatus.COMPLETED,
                processed_at=utc_now_iso(),
                country_iso=country,
            )
            try:
                await self.confirmations.publish_confirmation(confirmation)
            except Exception as e:
                logger.error(
                    f"Appointment {record.appointment_id} stored in {country.value} "
                    f"but confirmation failed; tracking stays pending"
                )
                return self._infrastructure("process", "Failed to process appointment", e)

            record_saga_step("process", "success")
            return ServiceResult.ok(record)

    # ------------------------------------------------------------------
    # confirm
    # ------------------------------------------------------------------

    async def confirm_appointment(self, event: ConfirmationEvent) -> ServiceResult[bool]:
        """Apply a confirmation to the tracking record"""
        async with trace_span("appointment.confirm", {"appointment_id": event.appointment_id}), \
                time_saga_step("confirm"):
            tracking = self.repositories.create_tracking_store()
            try:
                updated = await tracking.update_status(event.appointment_id, event.status)
            except InvalidTransitionError as e:
                # Replayed or late confirmation; the record keeps its terminal status
                record_saga_step("confirm", "conflict")
                logger.warning(f"Skipping confirmation: {e.message}")
                return ServiceResult.ok(False)
            except Exception as e:
                return self._infrastructure("confirm", "Failed to confirm appointment", e)

            if not updated:
                logger.warning(
                    f"Confirmation for unknown appointment {event.appointment_id}; nothing updated"
                )
                record_saga_step("confirm", "missing")
            else:
                self._transition(event.appointment_id, AppointmentStatus.PENDING, event.status)
                record_saga_step("confirm", "success")
            return ServiceResult.ok(updated)

    # ------------------------------------------------------------------
    # list
    # ------------------------------------------------------------------

    async def list_appointments(self, insured_id: str) -> ServiceResult[List[TrackingRecord]]:
        """All tracking records of a requester, newest first"""
        async with time_saga_step("list"):
            tracking = self.repositories.create_tracking_store()
            try:
                records = await tracking.find_by_insured_id(insured_id)
            except Exception as e:
                return self._infrastructure("list", "Failed to list appointments", e)

            record_saga_step("list", "success")
            return ServiceResult.ok(records)

    # ------------------------------------------------------------------
    # Reconciliation
    # ------------------------------------------------------------------

    async def republish(self, appointment_id: str) -> ServiceResult[TrackingRecord]:
        """Send a pending appointment to the fan-out bus again"""
        tracking = self.repositories.create_tracking_store()
        try:
            record = await tracking.find_by_id(appointment_id)
        except Exception as e:
            return self._infrastructure("republish", "Failed to republish appointment", e)

        failure = self._require_pending(appointment_id, record, "republish")
        if failure:
            return failure

        try:
            await self.fanout.publish_created(FanoutMessage.from_record(record))
        except Exception as e:
            return self._infrastructure("republish", "Failed to republish appointment", e)

        logger.info(f"Republished pending appointment {appointment_id}")
        record_saga_step("republish", "success")
        return ServiceResult.ok(record)

    async def mark_failed(self, appointment_id: str) -> ServiceResult[TrackingRecord]:
        """Terminate a pending appointment as failed and free its slot"""
        tracking = self.repositories.create_tracking_store()
        try:
            updated = await tracking.update_status(appointment_id, AppointmentStatus.FAILED)
            record = await tracking.find_by_id(appointment_id) if updated else None
        except InvalidTransitionError as e:
            record_saga_step("mark_failed", "conflict")
            return ServiceResult.fail(
                ErrorKind.CONFLICT,
                f"Appointment {appointment_id} is {e.current}, not pending",
                e.details,
            )
        except Exception as e:
            return self._infrastructure("mark_failed", "Failed to mark appointment failed", e)

        if not updated:
            record_saga_step("mark_failed", "not_found")
            return ServiceResult.fail(ErrorKind.NOT_FOUND, f"Appointment {appointment_id} not found")

        self._transition(appointment_id, AppointmentStatus.PENDING, AppointmentStatus.FAILED)
        record_saga_step("mark_failed", "success")
        return ServiceResult.ok(record)

    async def expire_pending(self, appointment_id: str) -> ServiceResult[TrackingRecord]:
        """
        Settle a pending appointment that outlived the fail threshold.

        If the country store already holds the row, only the confirmation was
        lost: the tracking record is completed instead of failed, so the two
        stores agree and the slot stays taken. Otherwise the appointment is
        marked failed.
        """
        tracking = self.repositories.create_tracking_store()
        try:
            record = await tracking.find_by_id(appointment_id)
            stored = None
            if record is not None:
                durable = self.repositories.create_durable_store(record.country_iso)
                stored = await durable.find_by_id(appointment_id)
        except Exception as e:
            return self._infrastructure("expire", "Failed to expire appointment", e)

        if stored is None:
            return await self.mark_failed(appointment_id)

        logger.warning(
            f"Appointment {appointment_id} is stored in {record.country_iso.value} "
            f"but was never confirmed; completing it"
        )
        confirmation = ConfirmationEvent(
            appointment_id=appointment_id,
            insured_id=stored.insured_id,
            status=AppointmentStatus(stored.status),
            processed_at=utc_now_iso(),
            country_iso=record.country_iso,
        )
        result = await self.confirm_appointment(confirmation)
        if not result.success:
            return result

        try:
            settled = await tracking.find_by_id(appointment_id)
        except Exception as e:
            return self._infrastructure("expire", "Failed to expire appointment", e)
        record_saga_step("expire", "completed")
        return ServiceResult.ok(settled)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _require_pending(self, appointment_id: str, record, step: str):
        if record is None:
            record_saga_step(step, "not_found")
            return ServiceResult.fail(ErrorKind.NOT_FOUND, f"Appointment {appointment_id} not found")
        if record.status != AppointmentStatus.PENDING:
            record_saga_step(step, "conflict")
            return ServiceResult.fail(
                ErrorKind.CONFLICT,
                f"Appointment {appointment_id} is {record.status.value}, not pending",
            )
        return None

    def _infrastructure(self, step: str, message: str, exc: Exception) -> ServiceResult:
        record_saga_step(step, "infrastructure")
        logger.error(f"{step} failed: {type(exc).__name__}: {exc}")
        details = exc.details if isinstance(exc, AppointmentError) else str(exc)
        return ServiceResult.fail(ErrorKind.INFRASTRUCTURE, message, details)

    def _transition(self, appointment_id: str, old, new: AppointmentStatus):
        if self.config.log_state_transitions:
            old_value = old.value if old else "none"
            logger.info(f"Appointment {appointment_id}: {old_value} -> {AppointmentStatus(new).value}")
