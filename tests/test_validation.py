"""Tests for log validation"""

import pytest

from traffic_stream.validation import SchemaValidator, ValidationError, create_log_validator


def make_log(**request):
    log = {
        "request": {
            "time": "2024-01-01T10:00:00.000Z",
            "address": "1.2.3.4",
            "method": "GET",
            "url": "/",
            "headers": {"user-agent": "curl/8.0"},
        },
        "response": {"status": 200},
    }
    log["request"].update(request)
    return log


@pytest.fixture
def validator():
    return create_log_validator()


class TestLogSchema:
    def test_valid_log(self, validator):
        assert validator.validate(make_log(), "log")
        assert validator.errors(make_log(), "log") == []

    def test_response_is_optional(self, validator):
        log = make_log()
        del log["response"]
        assert validator.validate(log, "log")

    def test_missing_address(self, validator):
        log = make_log()
        del log["request"]["address"]
        assert validator.errors(log, "log") == ["Required field 'request.address' is missing"]

    def test_bad_time(self, validator):
        assert not validator.validate(make_log(time="yesterday"), "log")
        assert not validator.validate(make_log(time=1704103200), "log")

    def test_naive_time_is_accepted(self, validator):
        assert validator.validate(make_log(time="2024-01-01T10:00:00"), "log")

    def test_status_range(self, validator):
        log = make_log()
        log["response"]["status"] = 700
        assert validator.errors(log, "log") == [
            "Field 'response.status' exceeds maximum value of 599"
        ]

    def test_not_an_object(self, validator):
        assert not validator.validate("GET / HTTP/1.1", "log")

    def test_strict(self, validator):
        with pytest.raises(ValidationError) as exc_info:
            validator.validate({"request": {}}, "log", strict=True)
        assert len(exc_info.value.errors) == 2

    def test_stats(self, validator):
        validator.validate(make_log(), "log")
        validator.validate({}, "log")
        stats = validator.get_stats()
        assert stats["validations_performed"] == 2
        assert stats["validation_failures"] == 1
        assert stats["success_rate"] == 50.0


class TestSchemaValidator:
    def test_unknown_schema(self):
        with pytest.raises(ValidationError):
            SchemaValidator().validate({}, "missing")

    def test_bool_is_not_a_number(self):
        validator = SchemaValidator()
        validator.register_schema("metric", {"value": "number"})
        assert validator.validate({"value": 1.5}, "metric")
        assert not validator.validate({"value": True}, "metric")
