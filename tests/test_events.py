from datetime import datetime

import pytest

from rasdecode.events import (
    FieldError,
    RasContext,
    TraceRecord,
    format_timestamp,
)


def test_value_and_raw_return_stored_fields():
    record = TraceRecord({"pfn": 0x1234, "msg": b"hello"})
    assert record.value("pfn") == 0x1234
    assert record.raw("msg") == b"hello"


def test_has_reports_presence():
    record = TraceRecord({"a": 1})
    assert record.has("a") is True
    assert record.has("b") is False


def test_missing_field_raises():
    record = TraceRecord({})
    with pytest.raises(FieldError) as info:
        record.value("cpu")
    assert info.value.field == "cpu"
    with pytest.raises(FieldError):
        record.raw("msg")


def test_wrong_kind_raises():
    record = TraceRecord({"num": 3, "text": "x"})
    with pytest.raises(FieldError):
        record.value("text")
    with pytest.raises(FieldError):
        record.raw("num")


def test_event_time_uses_uptime_clock():
    ctx = RasContext(use_uptime=True, uptime_diff=50, user_hz=100)
    assert ctx.event_time(TraceRecord(ts=1000), 999999) == 60


def test_event_time_without_uptime_uses_now():
    ctx = RasContext(use_uptime=False)
    assert ctx.event_time(TraceRecord(ts=1000), 12345) == 12345


@pytest.mark.parametrize("when", [0, 86400, 1700000000])
def test_format_timestamp_round_trip(when):
    text = format_timestamp(when)
    parsed = datetime.strptime(text, "%Y-%m-%d %H:%M:%S %z")
    assert parsed.timestamp() == when


def test_format_timestamp_overflow_falls_back_to_epoch():
    assert format_timestamp(10**20) == "1970-01-01 00:00:00 +0000"