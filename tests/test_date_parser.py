import pytest

from lib.date_parser import build_start_datetime, find_time, normalize_time, parse_iso_date, resolve_date


@pytest.mark.parametrize("value, expected", [
    ("3pm", "15:00"),
    ("10am", "10:00"),
    ("noon", "12:00"),
    ("midnight", "00:00"),
    ("3:30 pm", "15:30"),
    ("3 p.m.", "15:00"),
    ("7 in the evening", "19:00"),
    ("9 in the morning", "09:00"),
    ("15:00", "15:00"),
    ("12am", "00:00"),
    ("12pm", "12:00"),
])
def test_normalize_time(value, expected):
    assert normalize_time(value) == expected


@pytest.mark.parametrize("value", [None, "", "banana", "13pm", "25:00", "tomorrow"])
def test_normalize_time_rejects_garbage(value):
    assert normalize_time(value) is None


def test_find_time_inside_sentence():
    assert find_time("tomorrow at 3pm dentist") == "15:00"
    assert find_time("lunch with Ana at noon") == "12:00"
    assert find_time("buy milk") is None


@pytest.mark.parametrize("text, expected", [
    ("tomorrow at 3pm dentist", "2025-09-30"),
    ("day after tomorrow", "2025-10-01"),
    ("dinner tonight", "2025-09-29"),
    ("next friday", "2025-10-03"),
    ("on monday", "2025-10-06"),
    ("in 3 days", "2025-10-02"),
    ("in two weeks", "2025-10-13"),
    ("October 15", "2025-10-15"),
    ("15th of October", "2025-10-15"),
    ("March 3", "2026-03-03"),
    ("the 15th", "2025-10-15"),
    ("meeting on 2025-12-01", "2025-12-01"),
])
def test_resolve_date(now, text, expected):
    assert resolve_date(text, now) == expected


def test_resolve_date_without_date(now):
    assert resolve_date("buy milk", now) is None
    assert resolve_date("buy bread, milk, eggs, tuna", now) is None


def test_parse_iso_date():
    assert parse_iso_date("2025-09-30").isoformat() == "2025-09-30"
    assert parse_iso_date("next tuesday") is None
    assert parse_iso_date(None) is None


def test_build_start_datetime_defaults_to_midnight():
    assert build_start_datetime("2025-09-30", "15:00") == "2025-09-30T15:00:00"
    assert build_start_datetime("2025-09-30", None) == "2025-09-30T00:00:00"
