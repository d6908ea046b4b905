"""
Worker CLI for the asynchronous saga steps.

    appointment-worker --country PE            # process PE fan-out entries
    appointment-worker --country PE --country CL
    appointment-worker --confirmations         # complete tracking records
    appointment-worker --sweep                 # one stale pending sweep, then exit

Consumers run until SIGINT/SIGTERM.
"""

import argparse
import asyncio
import logging
import signal
from typing import List, Optional

from saga_shared import EventConsumer, setup_metrics

from . import __version__
from .config import AppointmentConfig
from .consumers import (
    ConfirmationConsumer,
    CountryProcessor,
    confirmation_consumer_config,
    country_consumer_config,
)
from .models import CountryISO
from .runtime import SagaRuntime, build_runtime
from .sweeper import StalePendingSweeper

logger = logging.getLogger(__name__)


def build_consumers(
    runtime: SagaRuntime,
    countries: List[CountryISO],
    confirmations: bool,
    consumer_name: Optional[str] = None,
) -> List[EventConsumer]:
    consumers: List[EventConsumer] = []
    for country in countries:
        consumers.append(CountryProcessor(
            runtime.redis,
            runtime.broker,
            country_consumer_config(runtime.config, country, consumer_name),
            runtime.service,
            country,
        ))
    if confirmations:
        consumers.append(ConfirmationConsumer(
            runtime.redis,
            runtime.broker,
            confirmation_consumer_config(runtime.config, consumer_name),
            runtime.service,
        ))
    return consumers


async def run_sweep(runtime: SagaRuntime) -> int:
    sweeper = StalePendingSweeper(
        runtime.service,
        runtime.repositories.create_tracking_store(),
        stale_after_seconds=runtime.config.stale_pending_seconds,
        fail_after_seconds=runtime.config.fail_pending_after_seconds,
    )
    summary = await sweeper.sweep()
    return 1 if summary.errors else 0


async def run_consumers(consumers: List[EventConsumer]) -> None:
    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except NotImplementedError:
            # Windows event loops have no signal handlers
            pass

    for consumer in consumers:
        await consumer.start()
    logger.info(f"Worker running {len(consumers)} consumer(s)")

    try:
        await stop.wait()
    finally:
        for consumer in consumers:
            await consumer.stop()


async def _main(args: argparse.Namespace) -> int:
    config = AppointmentConfig.from_env()
    runtime = await build_runtime(config)
    try:
        if args.sweep:
            return await run_sweep(runtime)

        countries = [CountryISO(c) for c in args.country]
        if args.create_schema:
            for country in countries:
                await runtime.repositories.create_durable_store(country).create_schema()

        setup_metrics("appointment-worker", __version__)
        await run_consumers(build_consumers(runtime, countries, args.confirmations, args.consumer_name))
        return 0
    finally:
        await runtime.close()


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="appointment-worker", description=__doc__.splitlines()[1])
    parser.add_argument(
        "--country", action="append", default=[], choices=[c.value for c in CountryISO],
        help="Country whose fan-out entries this worker processes (repeatable)",
    )
    parser.add_argument("--confirmations", action="store_true", help="Run the confirmation consumer")
    parser.add_argument("--sweep", action="store_true", help="Run one stale pending sweep and exit")
    parser.add_argument("--consumer-name", default=None, help="Consumer name inside the group")
    parser.add_argument(
        "--create-schema", action="store_true", help="Create the appointments table for each --country"
    )
    parser.add_argument("--log-level", default="INFO")

    args = parser.parse_args(argv)
    if not (args.country or args.confirmations or args.sweep):
        parser.error("nothing to run: pass --country, --confirmations or --sweep")
    return args


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    logging.basicConfig(
        level=args.log_level.upper(),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )
    return asyncio.run(_main(args))


if __name__ == "__main__":
    raise SystemExit(main())
