"""
Redis-backed tracking store for live appointment status.

Key layout (prefix defaults to "appointment"):
    {prefix}:record:{appointment_id}          JSON tracking record
    {prefix}:insured:{insured_id}             set of appointment ids
    {prefix}:slot:{country}:{schedule_id}     id of the record holding the slot
    {prefix}:pending                          sorted set, id -> created epoch

Writes that touch more than one key run as Lua scripts, so a reader never
sees a slot reservation without its record, and a status change is applied
only if the record is still in the status it was read in.
"""

import json
import logging
import time
from typing import List, Optional

import redis.asyncio as redis

from .errors import InvalidTransitionError, SlotTakenError
from .models import (
    SLOT_HOLDING_STATUSES,
    VALID_TRANSITIONS,
    AppointmentStatus,
    CountryISO,
    TrackingRecord,
    parse_iso,
    utc_now_iso,
)
from .repository import AppointmentRepository

logger = logging.getLogger(__name__)

# KEYS: slot, record, insured set, pending index
# ARGV: id, record json, created epoch, holds slot, is pending, record key prefix,
#       slot holding statuses...
# Returns the current holder when the slot is taken, nil once written.
SAVE_RECORD_SCRIPT = """
if ARGV[4] == '1' then
  local holder = redis.call('GET', KEYS[1])
  if holder and holder ~= ARGV[1] then
    local raw = redis.call('GET', ARGV[6] .. holder)
    if raw then
      local status = cjson.decode(raw)['status']
      for i = 7, #ARGV do
        if status == ARGV[i] then
          return holder
        end
      end
    end
  end
  redis.call('SET', KEYS[1], ARGV[1])
end
redis.call('SET', KEYS[2], ARGV[2])
redis.call('SADD', KEYS[3], ARGV[1])
if ARGV[5] == '1' then
  redis.call('ZADD', KEYS[4], ARGV[3], ARGV[1])
end
return false
"""

# KEYS: record, pending index, slot
# ARGV: expected status, new record json, id, leaves pending, releases slot
# Returns {1, status} when applied, {0, ''} for a missing record and
# {-1, current} when the record is no longer in the expected status.
CHANGE_STATUS_SCRIPT = """
local raw = redis.call('GET', KEYS[1])
if not raw then
  return {0, ''}
end
local current = cjson.decode(raw)['status']
if current ~= ARGV[1] then
  return {-1, current}
end
redis.call('SET', KEYS[1], ARGV[2])
if ARGV[4] == '1' then
  redis.call('ZREM', KEYS[2], ARGV[3])
end
if ARGV[5] == '1' and redis.call('GET', KEYS[3]) == ARGV[3] then
  redis.call('DEL', KEYS[3])
end
return {1, current}
"""


class TrackingStore(AppointmentRepository[TrackingRecord]):
    """Tracking store over a shared async Redis client"""

    def __init__(self, redis_client: redis.Redis, key_prefix: str = "appointment"):
        self.redis = redis_client
        self.prefix = key_prefix
        self._save_script = redis_client.register_script(SAVE_RECORD_SCRIPT)
        self._change_status_script = redis_client.register_script(CHANGE_STATUS_SCRIPT)

    # ------------------------------------------------------------------
    # Keys
    # ------------------------------------------------------------------

    def _record_key(self, appointment_id: str) -> str:
        return f"{self.prefix}:record:{appointment_id}"

    def _insured_key(self, insured_id: str) -> str:
        return f"{self.prefix}:insured:{insured_id}"

    def _slot_key(self, schedule_id: int, country_iso: CountryISO) -> str:
        return f"{self.prefix}:slot:{CountryISO(country_iso).value}:{schedule_id}"

    @property
    def _pending_key(self) -> str:
        return f"{self.prefix}:pending"

    # ------------------------------------------------------------------
    # Contract
    # ------------------------------------------------------------------

    async def save(self, record: TrackingRecord) -> None:
        """
        Reserve the slot and write the record with its indexes in one step.

        A reservation is taken over only when its holder record is gone or
        no longer holds the slot (failed).

        Raises:
            SlotTakenError: another pending or completed record holds (schedule_id, country)
        """
        holder = await self._save_script(
            keys=[
                self._slot_key(record.schedule_id, record.country_iso),
                self._record_key(record.appointment_id),
                self._insured_key(record.insured_id),
                self._pending_key,
            ],
            args=[
                record.appointment_id,
                json.dumps(record.to_dict()),
                parse_iso(record.created_at).timestamp(),
                _flag(record.holds_slot()),
                _flag(record.status == AppointmentStatus.PENDING),
                self._record_key(""),
                *sorted(s.value for s in SLOT_HOLDING_STATUSES),
            ],
        )
        if holder:
            raise SlotTakenError(record.schedule_id, record.country_iso.value, holder)

    async def find_by_insured_id(self, insured_id: str) -> List[TrackingRecord]:
        ids = await self.redis.smembers(self._insured_key(insured_id))
        if not ids:
            return []

        raw_records = await self.redis.mget([self._record_key(i) for i in sorted(ids)])
        records = [TrackingRecord.from_dict(json.loads(raw)) for raw in raw_records if raw]
        records.sort(key=lambda r: r.created_at, reverse=True)
        return records

    async def find_by_id(self, appointment_id: str) -> Optional[TrackingRecord]:
        raw = await self.redis.get(self._record_key(appointment_id))
        if not raw:
            return None
        return TrackingRecord.from_dict(json.loads(raw))

    async def update_status(self, appointment_id: str, status: AppointmentStatus) -> bool:
        """
        Move a record to a new status if VALID_TRANSITIONS allows it.

        The write is a compare-and-set on the status that was read, so a
        concurrent change makes this call fail instead of overwriting it.

        Returns:
            False when the record does not exist

        Raises:
            InvalidTransitionError: the record's current status does not allow the change
        """
        status = AppointmentStatus(status)
        record = await self.find_by_id(appointment_id)
        if record is None:
            return False

        expected = record.status
        if status not in VALID_TRANSITIONS[expected]:
            raise InvalidTransitionError(appointment_id, expected.value, status.value)

        record.status = status
        record.updated_at = utc_now_iso()
        applied, current = await self._change_status_script(
            keys=[
                self._record_key(appointment_id),
                self._pending_key,
                self._slot_key(record.schedule_id, record.country_iso),
            ],
            args=[
                expected.value,
                json.dumps(record.to_dict()),
                appointment_id,
                _flag(status != AppointmentStatus.PENDING),
                _flag(not record.holds_slot()),
            ],
        )
        applied = int(applied)
        if applied == 0:
            return False
        if applied < 0:
            logger.info(f"Appointment {appointment_id} moved to {current} before {status.value} was applied")
            raise InvalidTransitionError(appointment_id, current, status.value)
        return True

    async def find_by_schedule_id(
        self, schedule_id: int, country_iso: CountryISO
    ) -> Optional[TrackingRecord]:
        """Record currently holding the slot (pending or completed), if any"""
        holder = await self.redis.get(self._slot_key(schedule_id, country_iso))
        if not holder:
            return None

        record = await self.find_by_id(holder)
        if record is None or not record.holds_slot():
            return None
        return record

    # ------------------------------------------------------------------
    # Reconciliation support
    # ------------------------------------------------------------------

    async def find_pending_older_than(
        self, age_seconds: float, now: Optional[float] = None
    ) -> List[TrackingRecord]:
        """Pending records created at least age_seconds ago, oldest first"""
        cutoff = (now if now is not None else time.time()) - age_seconds
        ids = await self.redis.zrangebyscore(self._pending_key, "-inf", cutoff)

        records = []
        for appointment_id in ids:
            record = await self.find_by_id(appointment_id)
            if record is None or record.status != AppointmentStatus.PENDING:
                # Index entry outlived its record; drop it
                await self.redis.zrem(self._pending_key, appointment_id)
                continue
            records.append(record)
        return records


def _flag(value: bool) -> str:
    return "1" if value else "0"
