import logging

import pytest

from rasdecode.events import RasContext, TraceRecord, format_timestamp
from rasdecode.mc import DEFAULT_PATH, handle_mc_event, trigger_environment

CTX = RasContext(use_uptime=True, uptime_diff=50, user_hz=100)


def _record(**overrides):
    fields = {
        "error_count": 1,
        "error_type": 0,
        "msg": b"memory read error\0",
        "label": b"CPU_SrcID#0_Ha#0_Chan#1_DIMM#0",
        "mc_index": 0,
        "top_layer": 1,
        "middle_layer": 2,
        "lower_layer": 0xFF,
        "address": 0x1000,
        "grain_bits": 6,
        "syndrome": 0,
        "driver_detail": b"",
    }
    fields.update(overrides)
    return TraceRecord(fields=fields, ts=500)


def test_corrected_single_error():
    event = handle_mc_event(CTX, _record())
    assert event.error_type == "Corrected"
    assert event.timestamp == format_timestamp(55)
    assert event.text.startswith(f"{event.timestamp} 1 Corrected error: memory read error on ")
    assert " (mc: 0 location: 1:2 address: 0x00001000 grain: 6)" in event.text
    assert event.text.endswith(")")


def test_plural_errors_and_types():
    event = handle_mc_event(CTX, _record(error_count=2, error_type=1))
    assert event.error_type == "Uncorrected"
    assert "Uncorrected errors:" in event.text


@pytest.mark.parametrize("value, name", [(2, "Fatal"), (3, "Info"), (9, "Info")])
def test_error_type_names(value, name):
    assert handle_mc_event(CTX, _record(error_type=value)).error_type == name


def test_layers_are_signed_bytes():
    event = handle_mc_event(CTX, _record(middle_layer=0xFF, lower_layer=0xFF))
    assert event.middle_layer == -1
    assert event.lower_layer == -1
    assert "location: 1 " in event.text


def test_no_location_when_all_layers_negative():
    event = handle_mc_event(CTX, _record(top_layer=0xFF, middle_layer=0xFF))
    assert "location" not in event.text


def test_zero_address_and_syndrome_are_omitted():
    event = handle_mc_event(CTX, _record(address=0, syndrome=0))
    assert "address:" not in event.text
    assert "syndrome:" not in event.text


def test_syndrome_and_detail_shown():
    event = handle_mc_event(CTX, _record(syndrome=0xAB, driver_detail=b"bank 3"))
    assert "syndrome: 0x000000ab bank 3)" in event.text


def test_missing_field_returns_none(caplog):
    record = _record()
    del record.fields["label"]
    with caplog.at_level(logging.ERROR):
        assert handle_mc_event(CTX, record) is None
    assert "can't parse field #3" in caplog.text


def test_trigger_environment_values():
    event = handle_mc_event(CTX, _record(error_count=2))
    env = trigger_environment(event, "/opt/bin")
    assert env["PATH"] == "/opt/bin"
    assert env["COUNT"] == "2"
    assert env["ADDRESS"] == "1000"
    assert env["TYPE"] == "Corrected"
    assert env["LOWER_LAYER"] == "-1"
    assert list(env)[:3] == ["PATH", "TIMESTAMP", "COUNT"]
    assert list(env)[-1] == "DRIVER_DETAIL"


def test_trigger_environment_default_path(monkeypatch):
    monkeypatch.delenv("PATH", raising=False)
    event = handle_mc_event(CTX, _record())
    assert trigger_environment(event)["PATH"] == DEFAULT_PATH