"""Decoding of EDAC memory controller (mc_event) trace events."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from typing import Dict, Optional, Union

from .events import FieldError, McErrorType, RasContext, TraceRecord, format_timestamp

log = logging.getLogger(__name__)

DEFAULT_PATH = "/sbin:/usr/sbin:/bin:/usr/bin"

_U64 = (1 << 64) - 1

_ERROR_TYPES = {
    McErrorType.CORRECTED: "Corrected",
    McErrorType.UNCORRECTED: "Uncorrected",
    McErrorType.FATAL: "Fatal",
}


def _signed(value: int, bits: int) -> int:
    value &= (1 << bits) - 1
    return value - (1 << bits) if value >> (bits - 1) else value


def _text(raw: Union[bytes, str]) -> str:
    if isinstance(raw, str):
        return raw.split("\0", 1)[0]
    return bytes(raw).split(b"\0", 1)[0].decode("utf-8", errors="replace")


@dataclass
class McEvent:
    """A decoded memory controller error."""

    timestamp: str
    error_count: int
    error_type: str
    msg: str
    label: str
    mc_index: int
    top_layer: int
    middle_layer: int
    lower_layer: int
    address: int
    grain: int
    syndrome: int
    driver_detail: str
    text: str = field(default="", repr=False)


def _location(top: int, middle: int, lower: int) -> str:
    if top < 0 and middle < 0 and lower < 0:
        return ""
    if lower >= 0:
        return f" location: {top}:{middle}:{lower}"
    if middle >= 0:
        return f" location: {top}:{middle}"
    return f" location: {top}"


def _render(event: McEvent) -> str:
    out = [f"{event.timestamp} {event.error_count} {event.error_type}"]
    out.append(" errors:" if event.error_count > 1 else " error:")
    if event.msg:
        out.append(f" {event.msg}")
    if event.label:
        out.append(f" on {event.label}")
    out.append(f" (mc: {event.mc_index}")
    out.append(_location(event.top_layer, event.middle_layer, event.lower_layer))
    if event.address:
        out.append(f" address: 0x{event.address:08x}")
    out.append(f" grain: {event.grain}")
    if event.syndrome:
        out.append(f" syndrome: 0x{event.syndrome:08x}")
    if event.driver_detail:
        out.append(f" {event.driver_detail}")
    out.append(")")
    return "".join(out)


def handle_mc_event(context: RasContext, record: TraceRecord) -> Optional[McEvent]:
    """Decode an mc_event record.

    A record with a missing field is logged, naming how many fields were
    parsed, and None is returned.
    """
    timestamp = format_timestamp(context.event_time(record))
    parsed = 0
    try:
        error_count = _signed(record.value("error_count"), 32)
        parsed += 1
        error_type = _ERROR_TYPES.get(record.value("error_type"), "Info")
        parsed += 1
        msg = _text(record.raw("msg"))
        parsed += 1
        label = _text(record.raw("label"))
        parsed += 1
        mc_index = _signed(record.value("mc_index"), 32)
        parsed += 1
        top_layer = _signed(record.value("top_layer"), 8)
        parsed += 1
        middle_layer = _signed(record.value("middle_layer"), 8)
        parsed += 1
        lower_layer = _signed(record.value("lower_layer"), 8)
        parsed += 1
        address = record.value("address") & _U64
        parsed += 1
        grain = _signed(record.value("grain_bits"), 64)
        parsed += 1
        syndrome = record.value("syndrome") & _U64
        parsed += 1
        driver_detail = _text(record.raw("driver_detail"))
        parsed += 1
    except FieldError:
        log.error("MC error handler: can't parse field #%d", parsed)
        return None

    event = McEvent(
        timestamp=timestamp,
        error_count=error_count,
        error_type=error_type,
        msg=msg,
        label=label,
        mc_index=mc_index,
        top_layer=top_layer,
        middle_layer=middle_layer,
        lower_layer=lower_layer,
        address=address,
        grain=grain,
        syndrome=syndrome,
        driver_detail=driver_detail,
    )
    event.text = _render(event)
    log.info("%s", event.text)
    return event


def trigger_environment(event: McEvent, path: Optional[str] = None) -> Dict[str, str]:
    """Build the environment handed to an mc_event trigger, in its fixed order."""
    if path is None:
        path = os.environ.get("PATH") or DEFAULT_PATH
    return {
        "PATH": path,
        "TIMESTAMP": event.timestamp,
        "COUNT": str(event.error_count),
        "TYPE": event.error_type,
        "MESSAGE": event.msg,
        "LABEL": event.label,
        "MC_INDEX": str(event.mc_index),
        "TOP_LAYER": str(event.top_layer),
        "MIDDLE_LAYER": str(event.middle_layer),
        "LOWER_LAYER": str(event.lower_layer),
        "ADDRESS": f"{event.address:x}",
        "GRAIN": str(event.grain),
        "SYNDROME": f"{event.syndrome:x}",
        "DRIVER_DETAIL": event.driver_detail,
    }