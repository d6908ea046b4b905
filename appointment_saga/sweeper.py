"""
Stale pending sweeper.

A record stays pending forever if its fan-out publish or its confirmation
was lost. The sweep re-publishes pending records older than
stale_pending_seconds and marks those older than fail_pending_after_seconds
as failed, which frees their slot. An expired record whose country store
already has the row is completed instead, since only its confirmation was
lost.
"""

import logging
import time
from dataclasses import dataclass, asdict
from typing import Callable, Dict

from .models import AppointmentStatus, parse_iso
from .service import AppointmentService
from .tracking_store import TrackingStore

logger = logging.getLogger(__name__)


@dataclass
class SweepSummary:
    scanned: int = 0
    republished: int = 0
    completed: int = 0
    failed: int = 0
    errors: int = 0

    def to_dict(self) -> Dict[str, int]:
        return asdict(self)


class StalePendingSweeper:
    def __init__(
        self,
        service: AppointmentService,
        tracking_store: TrackingStore,
        stale_after_seconds: float,
        fail_after_seconds: float,
        clock: Callable[[], float] = time.time,
    ):
        if fail_after_seconds < stale_after_seconds:
            raise ValueError("fail_after_seconds must be >= stale_after_seconds")
        self.service = service
        self.tracking = tracking_store
        self.stale_after_seconds = stale_after_seconds
        self.fail_after_seconds = fail_after_seconds
        self.clock = clock

    async def sweep(self) -> SweepSummary:
        now = self.clock()
        summary = SweepSummary()
        records = await self.tracking.find_pending_older_than(self.stale_after_seconds, now=now)
        summary.scanned = len(records)

        for record in records:
            age = now - parse_iso(record.created_at).timestamp()
            if age >= self.fail_after_seconds:
                result = await self.service.expire_pending(record.appointment_id)
                counter = "failed"
                if result.success and result.data.status == AppointmentStatus.COMPLETED:
                    counter = "completed"
            else:
                result = await self.service.republish(record.appointment_id)
                counter = "republished"

            if result.success:
                setattr(summary, counter, getattr(summary, counter) + 1)
            else:
                summary.errors += 1
                logger.warning(
                    f"Sweep could not handle {record.appointment_id} ({counter}): {result.error.message}"
                )

        logger.info(f"Stale pending sweep: {summary.to_dict()}")
        return summary
