"""Tests for input and output monitors"""

import pytest

from traffic_stream.monitoring import Monitoring
from traffic_stream.util import complement, iso, parse_iso8601


class TestMonitoring:
    def test_register(self, clock):
        monitoring = Monitoring(clock=clock)
        source = monitoring.register(name="syslog", type="input", speeds=["accepted", "rejected"])
        output = monitoring.register_output("metrics")

        assert (source.id, output.id) == (0, 1)
        assert monitoring.get(1) is output
        assert monitoring.get_all("input") == [source]
        assert output.status == "Running"

    def test_hits(self, clock):
        monitoring = Monitoring(clock=clock)
        item = monitoring.register(name="syslog", type="input", speeds=["accepted", "rejected"])
        item.hit()
        item.hit()
        item.hit("rejected")

        computed = monitoring.get_all_computed()[0]
        assert computed["speeds"]["accepted"]["per_minute"] == [2]
        assert computed["speeds"]["rejected"]["per_hour"] == [1]

    def test_needs_a_speed(self, clock):
        with pytest.raises(ValueError):
            Monitoring(clock=clock).register(name="empty", type="input", speeds=[])


class TestTime:
    def test_parse_iso8601(self):
        assert parse_iso8601("1970-01-01T00:01:00Z") == 60
        assert parse_iso8601("1970-01-01T01:00:00+01:00") == 0
        assert parse_iso8601("1970-01-01T00:00:01.500") == 1.5

    def test_parse_invalid(self):
        with pytest.raises(ValueError):
            parse_iso8601("01/01/1970")

    def test_iso(self):
        assert iso(60) == "1970-01-01T00:01:00+00:00"


def test_complement():
    is_error = complement(lambda status: status < 400)
    assert is_error(500)
    assert not is_error(200)
