"""
Validation utilities for the Appointment Saga

Syntactic checks run by the entry points before the service is called.
Slot uniqueness is a business rule and lives in the service, not here.
"""

from typing import Any, Tuple

from .models import INSURED_ID_PATTERN, CountryISO


def validate_insured_id(insured_id: Any) -> Tuple[bool, str]:
    """
    Validate insured identifier format (exactly 5 digits).

    Returns:
        Tuple of (is_valid, error_message)
    """
    if insured_id is None or insured_id == "":
        return False, "insuredId is required"

    if not isinstance(insured_id, str) or not INSURED_ID_PATTERN.match(insured_id):
        return False, "insuredId must be exactly 5 digits"

    return True, ""


def validate_schedule_id(schedule_id: Any) -> Tuple[bool, str]:
    """
    Validate slot identifier (positive integer, booleans rejected).

    Returns:
        Tuple of (is_valid, error_message)
    """
    if schedule_id is None:
        return False, "scheduleId is required"

    if isinstance(schedule_id, bool) or not isinstance(schedule_id, int):
        return False, "scheduleId must be an integer"

    if schedule_id <= 0:
        return False, "scheduleId must be a positive number"

    return True, ""


def validate_country(country_iso: Any) -> Tuple[bool, str]:
    """
    Validate country code against the supported set.

    Returns:
        Tuple of (is_valid, error_message)
    """
    if not country_iso:
        return False, "countryISO is required"

    supported = [c.value for c in CountryISO]
    if country_iso not in supported:
        return False, f"countryISO must be either {' or '.join(supported)}"

    return True, ""


def validate_appointment_request(data: Any) -> Tuple[bool, str]:
    """
    Validate a raw create body, reporting the first failure.

    Returns:
        Tuple of (is_valid, error_message)
    """
    if not isinstance(data, dict):
        return False, "Request body must be a JSON object"

    for check, key in (
        (validate_insured_id, "insuredId"),
        (validate_schedule_id, "scheduleId"),
        (validate_country, "countryISO"),
    ):
        is_valid, error = check(data.get(key))
        if not is_valid:
            return False, error

    return True, ""
