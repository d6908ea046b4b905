"""
Tests for request validation.
"""

import pytest

from ..validation import (
    validate_appointment_request,
    validate_country,
    validate_insured_id,
    validate_schedule_id,
)


class TestInsuredId:

    @pytest.mark.parametrize("value", ["12345", "00000", "99999"])
    def test_valid(self, value):
        assert validate_insured_id(value) == (True, "")

    @pytest.mark.parametrize("value", ["1234", "123456", "12a45", " 1234", 12345])
    def test_invalid_format(self, value):
        is_valid, error = validate_insured_id(value)

        assert not is_valid
        assert "5 digits" in error

    @pytest.mark.parametrize("value", [None, ""])
    def test_missing(self, value):
        assert validate_insured_id(value) == (False, "insuredId is required")


class TestScheduleId:

    def test_valid(self):
        assert validate_schedule_id(100) == (True, "")

    @pytest.mark.parametrize("value", [0, -5])
    def test_not_positive(self, value):
        assert validate_schedule_id(value) == (False, "scheduleId must be a positive number")

    @pytest.mark.parametrize("value", ["100", 1.5, True])
    def test_not_integer(self, value):
        assert validate_schedule_id(value) == (False, "scheduleId must be an integer")

    def test_missing(self):
        assert validate_schedule_id(None) == (False, "scheduleId is required")


class TestCountry:

    @pytest.mark.parametrize("value", ["PE", "CL"])
    def test_valid(self, value):
        assert validate_country(value) == (True, "")

    @pytest.mark.parametrize("value", ["AR", "pe", "PER"])
    def test_unsupported(self, value):
        is_valid, error = validate_country(value)

        assert not is_valid
        assert "PE or CL" in error


class TestRequest:

    def test_valid_request(self):
        body = {"insuredId": "12345", "scheduleId": 100, "countryISO": "PE"}

        assert validate_appointment_request(body) == (True, "")

    def test_reports_first_failure(self):
        body = {"insuredId": "1", "scheduleId": -1, "countryISO": "XX"}

        is_valid, error = validate_appointment_request(body)

        assert not is_valid
        assert "insuredId" in error

    def test_not_an_object(self):
        assert validate_appointment_request(["12345"]) == (False, "Request body must be a JSON object")
