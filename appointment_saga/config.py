"""
Configuration for the Appointment Saga service and workers

Configuration is built once at process start and passed explicitly to the
factories (create_app, build_runtime), so tests can construct it directly.
"""

import os
import logging
from dataclasses import dataclass, field
from typing import Dict, Optional

from sqlalchemy.engine import URL

from .models import CountryISO

logger = logging.getLogger(__name__)


@dataclass
class DatabaseConfig:
    """Connection settings for one country's relational store"""
    host: str = "localhost"
    port: int = 5432
    username: str = "postgres"
    password: str = ""
    database: str = "appointments"

    def url(self) -> str:
        return URL.create(
            "postgresql+asyncpg",
            username=self.username,
            password=self.password or None,
            host=self.host,
            port=self.port,
            database=self.database,
        ).render_as_string(hide_password=False)


def _default_database_urls() -> Dict[str, str]:
    return {
        CountryISO.PE.value: DatabaseConfig(database="appointments_pe").url(),
        CountryISO.CL.value: DatabaseConfig(database="appointments_cl").url(),
    }


@dataclass
class AppointmentConfig:
    """
    Configuration for the appointment saga.

    Attributes:
        redis_url: Redis connection URL for the tracking store and both streams
        key_prefix: Prefix for every tracking store key
        fanout_stream: Stream carrying creation messages to country subscribers
        confirmation_stream: Stream carrying processed confirmations
        database_urls: SQLAlchemy async URL per country code
        db_pool_size: Connection pool size per country engine
        idempotent_process: Skip the durable insert when the id is already stored
        stale_pending_seconds: Age after which a pending record is re-published
        fail_pending_after_seconds: Age after which a pending record is marked failed
        consumer_max_retries: Redeliveries before a message goes to the DLQ
        run_confirmation_consumer: Start the confirmation consumer inside the API process
        log_state_transitions: Log every status change at INFO
    """

    redis_url: str = "redis://localhost:6379/0"
    key_prefix: str = "appointment"
    fanout_stream: str = "appointments:fanout"
    confirmation_stream: str = "appointments:confirmations"
    database_urls: Dict[str, str] = field(default_factory=_default_database_urls)
    db_pool_size: int = 10
    idempotent_process: bool = True
    stale_pending_seconds: int = 300
    fail_pending_after_seconds: int = 3600
    consumer_max_retries: int = 3
    run_confirmation_consumer: bool = False
    log_state_transitions: bool = True

    def __post_init__(self):
        """Validate configuration after initialization"""
        if not self.redis_url.startswith(("redis://", "rediss://", "unix://")):
            raise ValueError(
                f"redis_url must start with redis://, rediss://, or unix://, got {self.redis_url}"
            )

        missing = [c.value for c in CountryISO if not self.database_urls.get(c.value)]
        if missing:
            raise ValueError(f"database_urls missing entries for countries: {missing}")

        if self.stale_pending_seconds <= 0:
            raise ValueError(
                f"stale_pending_seconds must be positive, got {self.stale_pending_seconds}"
            )

        if self.fail_pending_after_seconds < self.stale_pending_seconds:
            raise ValueError(
                "fail_pending_after_seconds must be >= stale_pending_seconds, got "
                f"{self.fail_pending_after_seconds} < {self.stale_pending_seconds}"
            )

        if self.consumer_max_retries < 1:
            raise ValueError(
                f"consumer_max_retries must be at least 1, got {self.consumer_max_retries}"
            )

        if self.fanout_stream == self.confirmation_stream:
            raise ValueError("fanout_stream and confirmation_stream must differ")

        if self.log_state_transitions:
            logger.info(
                f"AppointmentConfig loaded: redis_url={self.redis_url}, "
                f"fanout={self.fanout_stream}, confirmations={self.confirmation_stream}, "
                f"countries={sorted(self.database_urls)}, idempotent_process={self.idempotent_process}"
            )

    def database_url(self, country: CountryISO) -> str:
        return self.database_urls[CountryISO(country).value]

    @staticmethod
    def from_env() -> "AppointmentConfig":
        """
        Load configuration from environment variables.

        Environment Variables:
            APPOINTMENT_REDIS_URL: Full Redis URL (overrides host/port/db)
            APPOINTMENT_REDIS_HOST / _PORT / _DB: Redis location (default: localhost:6379/0)
            APPOINTMENT_KEY_PREFIX: Tracking key prefix (default: appointment)
            APPOINTMENT_FANOUT_STREAM: Fan-out stream (default: appointments:fanout)
            APPOINTMENT_CONFIRMATION_STREAM: Confirmation stream (default: appointments:confirmations)
            APPOINTMENT_DB_URL_PE / APPOINTMENT_DB_URL_CL: Full database URL per country
            RDS_ENDPOINT, RDS_PORT, RDS_USERNAME, RDS_PASSWORD: Shared database server
            DB_NAME_PE / DB_NAME_CL: Database name per country
            APPOINTMENT_DB_POOL_SIZE: Pool size per engine (default: 10)
            APPOINTMENT_IDEMPOTENT_PROCESS: Lookup before durable insert (default: true)
            APPOINTMENT_STALE_PENDING_SECONDS: Re-publish threshold (default: 300)
            APPOINTMENT_FAIL_PENDING_AFTER_SECONDS: Mark-failed threshold (default: 3600)
            APPOINTMENT_CONSUMER_MAX_RETRIES: Consumer redeliveries (default: 3)
            APPOINTMENT_RUN_CONFIRMATION_CONSUMER: Run confirmations in the API (default: false)
            APPOINTMENT_LOG_STATE_TRANSITIONS: Log transitions (default: true)

        Returns:
            AppointmentConfig instance loaded from environment
        """
        redis_url = os.getenv("APPOINTMENT_REDIS_URL")
        if not redis_url:
            redis_host = os.getenv("APPOINTMENT_REDIS_HOST", "localhost")
            redis_port = _int_env("APPOINTMENT_REDIS_PORT", 6379)
            redis_db = _int_env("APPOINTMENT_REDIS_DB", 0)
            redis_url = f"redis://{redis_host}:{redis_port}/{redis_db}"

        database_urls = {}
        for country in CountryISO:
            explicit = os.getenv(f"APPOINTMENT_DB_URL_{country.value}")
            if explicit:
                database_urls[country.value] = explicit
                continue
            database_urls[country.value] = DatabaseConfig(
                host=os.getenv("RDS_ENDPOINT", "localhost"),
                port=_int_env("RDS_PORT", 5432),
                username=os.getenv("RDS_USERNAME", "postgres"),
                password=os.getenv("RDS_PASSWORD", ""),
                database=os.getenv(f"DB_NAME_{country.value}", f"appointments_{country.value.lower()}"),
            ).url()

        return AppointmentConfig(
            redis_url=redis_url,
            key_prefix=os.getenv("APPOINTMENT_KEY_PREFIX", "appointment"),
            fanout_stream=os.getenv("APPOINTMENT_FANOUT_STREAM", "appointments:fanout"),
            confirmation_stream=os.getenv(
                "APPOINTMENT_CONFIRMATION_STREAM", "appointments:confirmations"
            ),
            database_urls=database_urls,
            db_pool_size=_int_env("APPOINTMENT_DB_POOL_SIZE", 10),
            idempotent_process=_bool_env("APPOINTMENT_IDEMPOTENT_PROCESS", True),
            stale_pending_seconds=_int_env("APPOINTMENT_STALE_PENDING_SECONDS", 300),
            fail_pending_after_seconds=_int_env("APPOINTMENT_FAIL_PENDING_AFTER_SECONDS", 3600),
            consumer_max_retries=_int_env("APPOINTMENT_CONSUMER_MAX_RETRIES", 3),
            run_confirmation_consumer=_bool_env("APPOINTMENT_RUN_CONFIRMATION_CONSUMER", False),
            log_state_transitions=_bool_env("APPOINTMENT_LOG_STATE_TRANSITIONS", True),
        )


def _int_env(name: str, default: int) -> int:
    raw: Optional[str] = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning(f"Invalid {name}={raw!r}, using default {default}")
        return default


def _bool_env(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    return raw.lower() in ("true", "1", "yes")
