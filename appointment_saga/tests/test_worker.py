"""
Tests for the worker CLI wiring.
"""

import pytest

from ..consumers import ConfirmationConsumer, CountryProcessor
from ..models import CountryISO
from ..worker import build_consumers, parse_args, run_sweep


def test_parse_repeated_countries():
    args = parse_args(["--country", "PE", "--country", "CL", "--confirmations"])

    assert args.country == ["PE", "CL"]
    assert args.confirmations is True
    assert args.sweep is False


def test_parse_requires_something_to_run():
    with pytest.raises(SystemExit):
        parse_args([])


def test_parse_rejects_unknown_country():
    with pytest.raises(SystemExit):
        parse_args(["--country", "AR"])


@pytest.mark.asyncio
async def test_build_consumers(runtime):
    consumers = build_consumers(runtime, [CountryISO.PE, CountryISO.CL], confirmations=True,
                                consumer_name="w1")

    assert [type(c) for c in consumers] == [CountryProcessor, CountryProcessor, ConfirmationConsumer]
    assert [c.config.group_name for c in consumers] == [
        "appointment-processor-pe",
        "appointment-processor-cl",
        "appointment-confirmations",
    ]
    assert all(c.config.consumer_name == "w1" for c in consumers)


@pytest.mark.asyncio
async def test_run_sweep_with_nothing_pending(runtime):
    assert await run_sweep(runtime) == 0
