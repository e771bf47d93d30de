"""
Unit tests for producer-boundary argument and delay parsing.
"""

import time
from datetime import datetime, timedelta

import pytest

from jobhive.exceptions import InvalidJob
from jobhive.jobs.args import coerce_scalar, parse_args, parse_delay
from jobhive.jobs.queue import resolve_due_time


class TestParseArgs:
    """Tests for parse_args."""

    def test_blank_is_empty(self):
        assert parse_args(None) == []
        assert parse_args("   ") == []

    def test_json_list_used_as_is(self):
        assert parse_args('["a@b.com", 3, "3"]') == ["a@b.com", 3, "3"]

    def test_json_object_is_single_argument(self):
        assert parse_args('{"to": "a@b.com"}') == [{"to": "a@b.com"}]

    def test_comma_list_coerces_numbers(self):
        assert parse_args("a@b.com,3,1.5") == ["a@b.com", 3, 1.5]

    def test_zero_is_a_number(self):
        assert coerce_scalar("0") == 0
        assert coerce_scalar("abc") == "abc"


class TestParseDelay:
    """Tests for parse_delay."""

    def test_empty_means_no_delay(self):
        assert parse_delay(None) == 0
        assert parse_delay("") == 0

    def test_empty_takes_the_default(self):
        assert parse_delay(None, default=15) == 15
        assert parse_delay("", default=15) == 15
        assert parse_delay("5", default=15) == 5

    def test_small_integer_is_duration(self):
        assert parse_delay("30") == 30
        assert parse_delay(30) == 30

    def test_large_integer_is_timestamp(self):
        future = int(time.time()) + 3600

        result = parse_delay(str(future))

        assert isinstance(result, datetime)
        assert int(result.timestamp()) == future

    def test_non_integer_string_rejected(self):
        with pytest.raises(InvalidJob, match="must be an integer"):
            parse_delay("soon")

    def test_timedelta_passes_through(self):
        assert parse_delay(timedelta(minutes=5)) == timedelta(minutes=5)


class TestResolveDueTime:
    """Tests for resolve_due_time."""

    def test_duration_is_relative(self):
        assert resolve_due_time(30, now=1000.0) == 1030.0
        assert resolve_due_time(timedelta(seconds=5), now=1000.0) == 1005.0

    def test_negative_duration_rejected(self):
        with pytest.raises(InvalidJob):
            resolve_due_time(-1, now=1000.0)

    def test_past_datetime_rejected(self):
        with pytest.raises(InvalidJob):
            resolve_due_time(datetime.now() - timedelta(minutes=1))

    def test_unsupported_type_rejected(self):
        with pytest.raises(InvalidJob):
            resolve_due_time("30")  # type: ignore[arg-type]
