"""Parametrized tests for sync time and timezone input rules."""

from datetime import time

import pytest

from eight_sleep.domain.validation import COMMON_TIMEZONES, is_valid_timezone, parse_sync_time


@pytest.mark.parametrize(
    "value, expected",
    [
        ("08:00", time(8, 0)),
        ("8:05", time(8, 5)),
        ("23:59:59", time(23, 59, 59)),
        ("00:00:00", time(0, 0)),
    ],
)
def test_parse_sync_time_accepts(value, expected):
    assert parse_sync_time(value) == expected


@pytest.mark.parametrize(
    "value",
    ["24:00", "12:60", "7", "07:00:60", "07-00", " 07:00", "", "noon"],
)
def test_parse_sync_time_rejects(value):
    assert parse_sync_time(value) is None


@pytest.mark.parametrize("name", ["America/Los_Angeles", "UTC", "Asia/Kolkata"])
def test_valid_timezones(name):
    assert is_valid_timezone(name) is True


@pytest.mark.parametrize("name", ["", "Not/AZone", "PST8PDT ", "../etc/passwd"])
def test_invalid_timezones(name):
    assert is_valid_timezone(name) is False


def test_common_timezones_are_all_valid():
    assert len(COMMON_TIMEZONES) == 15
    assert all(is_valid_timezone(tz) for tz in COMMON_TIMEZONES)
