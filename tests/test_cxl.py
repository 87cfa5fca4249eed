import struct

import pytest

from rasdecode.cxl import (
    CXL_AER_CE,
    CXL_AER_UE,
    CXL_HEADERLOG_SIZE_U32,
    convert_timestamp,
    decode_flags,
    handle_cxl_aer_ce_event,
    handle_cxl_aer_ue_event,
    handle_cxl_overflow_event,
    handle_cxl_poison_event,
    log_type_name,
    type_name,
    uuid_be,
)
from rasdecode.events import EPOCH_TIMESTAMP, FieldError, RasContext, TraceRecord, format_timestamp


@pytest.fixture
def context():
    return RasContext(use_uptime=True, uptime_diff=1_000_000, user_hz=100)


def _common(**extra):
    fields = {"memdev": b"mem0\0junk", "host": "0000:0d:00.0", "serial": 0x1234}
    fields.update(extra)
    return fields


def _poison_fields(**extra):
    fields = _common(
        trace_type=1,
        region=b"region0",
        uuid="some-uuid",
        hpa=0x1000,
        dpa=0x2000,
        dpa_length=0x40,
        source=3,
        flags=0,
    )
    fields.update(extra)
    return fields


def test_uuid_be_keeps_byte_order():
    assert uuid_be(bytes(range(16))) == "00010203-0405-0607-0809-0a0b0c0d0e0f"


def test_uuid_be_short_input_rejected():
    with pytest.raises(ValueError):
        uuid_be(b"\x01\x02")


def test_decode_flags_ue():
    assert decode_flags(0b11, CXL_AER_UE) == "'Cache Data Parity Error' 'Cache Address Parity Error' "


def test_decode_flags_none_set():
    assert decode_flags(0, CXL_AER_CE) == ""


def test_type_name_range():
    names = ("a", "b")
    assert type_name(names, 1) == "b"
    assert type_name(names, 2) == "Unknown"
    assert type_name(names, -1) == "Unknown"


@pytest.mark.parametrize(
    "value, expected",
    [(0, "Informational"), (1, "Warning"), (2, "Failure"), (3, "Fatal"), (4, "Unknown")],
)
def test_log_type_name(value, expected):
    assert log_type_name(value) == expected


def test_convert_timestamp_zero_is_epoch():
    assert convert_timestamp(0) == EPOCH_TIMESTAMP


def test_convert_timestamp_uses_seconds():
    assert convert_timestamp(5_000_000_000 + 999) == format_timestamp(5)


def test_poison_event(context):
    record = TraceRecord(fields=_poison_fields(), ts=100)
    event = handle_cxl_poison_event(context, record)
    assert event.memdev == "mem0"
    assert event.trace_type == "Inject"
    assert event.source == "Injected"
    assert event.overflow_ts == EPOCH_TIMESTAMP
    assert event.timestamp == format_timestamp(1 + 1_000_000)
    assert "serial:0x1234 " in event.text
    assert "poison list: hpa:0x1000 dpa:0x2000 dpa_length:0x40 " in event.text
    assert event.text.endswith(f"overflow timestamp:{EPOCH_TIMESTAMP}\n")


def test_poison_invalid_codes(context):
    record = TraceRecord(fields=_poison_fields(trace_type=9, source=5))
    event = handle_cxl_poison_event(context, record)
    assert event.trace_type == "Invalid"
    assert event.source == "Invalid"


def test_poison_vendor_source(context):
    event = handle_cxl_poison_event(context, TraceRecord(fields=_poison_fields(source=7)))
    assert event.source == "Vendor"


def test_poison_overflow_timestamp(context):
    fields = _poison_fields(flags=2, overflow_ts=7_000_000_000)
    event = handle_cxl_poison_event(context, TraceRecord(fields=fields))
    assert event.overflow_ts == convert_timestamp(7_000_000_000)


def test_poison_overflow_missing_field(context):
    with pytest.raises(FieldError):
        handle_cxl_poison_event(context, TraceRecord(fields=_poison_fields(flags=2)))


def test_poison_missing_memdev(context):
    fields = _poison_fields()
    del fields["memdev"]
    with pytest.raises(FieldError):
        handle_cxl_poison_event(context, TraceRecord(fields=fields))


def _header_log():
    return struct.pack(f"<{CXL_HEADERLOG_SIZE_U32}I", *range(CXL_HEADERLOG_SIZE_U32))


def test_aer_ue_event(context):
    fields = _common(status=1, first_error=1 << 16, header_log=_header_log())
    event = handle_cxl_aer_ue_event(context, TraceRecord(fields=fields))
    assert event.header_log == tuple(range(CXL_HEADERLOG_SIZE_U32))
    assert struct.unpack(f">{CXL_HEADERLOG_SIZE_U32}I", event.header_log_bytes) == event.header_log
    assert "error status:'Cache Data Parity Error' first error:'IDE Rx Error' header log:\n" in event.text


def test_aer_ue_short_header_log(context):
    fields = _common(status=0, first_error=0, header_log=b"\0" * 8)
    with pytest.raises(ValueError):
        handle_cxl_aer_ue_event(context, TraceRecord(fields=fields))


def test_aer_ce_event(context):
    fields = _common(status=(1 << 6) | (1 << 2))
    event = handle_cxl_aer_ce_event(context, TraceRecord(fields=fields))
    assert event.error_status == 0x44
    assert event.text.endswith(
        "error status:'CRC Threshold Hit' 'Received Error From Physical Layer' "
    )


def test_aer_ce_missing_status(context):
    with pytest.raises(FieldError):
        handle_cxl_aer_ce_event(context, TraceRecord(fields=_common()))


def test_overflow_with_count(context):
    fields = _common(log=2, count=3, first_ts=0, last_ts=9_000_000_000)
    event = handle_cxl_overflow_event(context, TraceRecord(fields=fields))
    assert event.log_type == "Failure"
    assert event.first_ts == EPOCH_TIMESTAMP
    assert event.last_ts == convert_timestamp(9_000_000_000)
    assert event.text.endswith(f"3 errors from {EPOCH_TIMESTAMP} to {event.last_ts}\n")


def test_overflow_without_count(context):
    fields = _common(log=0, count=0, first_ts=0, last_ts=0)
    event = handle_cxl_overflow_event(context, TraceRecord(fields=fields))
    assert "errors from" not in event.text
    assert event.text.endswith("log type:Informational ")