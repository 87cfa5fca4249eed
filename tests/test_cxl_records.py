import pytest

from rasdecode.events import EPOCH_TIMESTAMP, FieldError, RasContext, TraceRecord
from rasdecode.cxl_records import (
    CXL_EVENT_RECORD_DATA_LENGTH,
    handle_cxl_dram_event,
    handle_cxl_general_media_event,
    handle_cxl_generic_event,
    handle_cxl_memory_module_event,
    parse_common_header,
)

UUID_BYTES = bytes(range(16))
UUID_TEXT = "00010203-0405-0607-0809-0a0b0c0d0e0f"


def _ctx():
    return RasContext(use_uptime=True, uptime_diff=0, user_hz=100)


def _header_fields(**extra):
    fields = {
        "memdev": b"mem0\0",
        "host": "0000:0c:00.0",
        "serial": 0xABC,
        "log": 1,
        "hdr_uuid": UUID_BYTES,
        "hdr_flags": 1 << 2,
        "hdr_handle": 0x10,
        "hdr_related_handle": 0x20,
        "hdr_timestamp": 0,
        "hdr_length": 128,
        "hdr_maint_op_class": 0,
    }
    fields.update(extra)
    return fields


def _media_fields(**extra):
    fields = _header_fields(
        dpa=0x1000,
        dpa_flags=1,
        descriptor=2,
        type=0,
        transaction_type=1,
        hpa=0x2000,
        region_name="region0",
        region="region0",
        region_uuid=UUID_BYTES,
        validity_flags=0,
    )
    fields.update(extra)
    return fields


def test_common_header_fields():
    hdr = parse_common_header(_ctx(), TraceRecord(_header_fields()))
    assert hdr.memdev == "mem0"
    assert hdr.log_type == "Warning"
    assert hdr.hdr_uuid == UUID_TEXT
    assert hdr.hdr_timestamp == EPOCH_TIMESTAMP
    assert "'PERMANENT_CONDITION' " in hdr.text
    assert "hdr_handle:0x10 " in hdr.text
    assert hdr.text.startswith(hdr.timestamp)


def test_common_header_missing_field():
    fields = _header_fields()
    del fields["hdr_length"]
    with pytest.raises(FieldError):
        parse_common_header(_ctx(), TraceRecord(fields))


def test_generic_event_dump():
    data = bytes(range(CXL_EVENT_RECORD_DATA_LENGTH))
    ev = handle_cxl_generic_event(_ctx(), TraceRecord(_header_fields(data=data)))
    assert ev.data == data
    assert "\ndata:\n  00000000: 00010203 " in ev.text
    assert "\n  00000010: 10111213 " in ev.text
    assert ev.text.count("\n  ") == CXL_EVENT_RECORD_DATA_LENGTH // 16


def test_generic_event_short_data():
    with pytest.raises(ValueError):
        handle_cxl_generic_event(_ctx(), TraceRecord(_header_fields(data=b"\x00" * 8)))


def test_general_media_without_optional_fields():
    ev = handle_cxl_general_media_event(_ctx(), TraceRecord(_media_fields()))
    assert ev.channel is None and ev.comp_id is None
    assert "channel:" not in ev.text
    assert "dpa_flags:'VOLATILE' " in ev.text
    assert "descriptor:'THRESHOLD EVENT' " in ev.text
    assert "type:ECC Error " in ev.text
    assert "transaction_type:Host Read " in ev.text
    assert f"region_uuid:{UUID_TEXT} " in ev.text


def test_general_media_with_optional_fields():
    fields = _media_fields(validity_flags=0xF, channel=3, rank=2, device=0x1F, comp_id=bytes(16))
    ev = handle_cxl_general_media_event(_ctx(), TraceRecord(fields))
    assert ev.channel == 3
    assert ev.rank == 2
    assert "device:1f " in ev.text
    assert "comp_id:" + "00 " * 16 in ev.text


def test_general_media_out_of_range_type():
    ev = handle_cxl_general_media_event(_ctx(), TraceRecord(_media_fields(type=42)))
    assert "type:Unknown " in ev.text


def test_general_media_short_comp_id():
    fields = _media_fields(validity_flags=8, comp_id=b"\x01\x02")
    with pytest.raises(ValueError):
        handle_cxl_general_media_event(_ctx(), TraceRecord(fields))


def test_dram_event_optional_fields():
    fields = _media_fields(validity_flags=0x41, channel=5, column=7)
    ev = handle_cxl_dram_event(_ctx(), TraceRecord(fields))
    assert ev.channel == 5
    assert ev.column == 7
    assert ev.row is None
    assert "channel:5 " in ev.text and "column:7 " in ev.text
    assert ev.text.count("hpa:0x2000 ") == 2


def test_dram_page_offline_policy():
    threshold = handle_cxl_dram_event(_ctx(), TraceRecord(_media_fields(descriptor=2)))
    uncorrectable = handle_cxl_dram_event(_ctx(), TraceRecord(_media_fields(descriptor=3)))
    assert threshold.needs_page_offline is True
    assert uncorrectable.needs_page_offline is False


def test_dram_missing_optional_field_raises():
    with pytest.raises(FieldError):
        handle_cxl_dram_event(_ctx(), TraceRecord(_media_fields(validity_flags=0x2)))


def test_memory_module_event():
    fields = _header_fields(
        event_type=3,
        health_status=1,
        media_status=0,
        add_status=2 | (1 << 2) | (1 << 4),
        life_used=10,
        device_temp=40,
        dirty_shutdown_cnt=0,
        cor_vol_err_cnt=1,
        cor_per_err_cnt=2,
    )
    ev = handle_cxl_memory_module_event(_ctx(), TraceRecord(fields))
    assert ev.life_used == 10
    assert "event_type:Temperature Change " in ev.text
    assert "health_status:'MAINTENANCE_NEEDED' " in ev.text
    assert "media_status:Normal " in ev.text
    assert "as_life_used:Critical " in ev.text
    assert "as_dev_temp:Warning " in ev.text
    assert "as_cor_vol_err_cnt:Warning " in ev.text
    assert "as_cor_per_err_cnt:Normal " in ev.text