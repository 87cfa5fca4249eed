"""Decoding of CXL poison, AER and overflow trace events."""

from __future__ import annotations

import logging
import struct
import uuid
from dataclasses import dataclass, field
from typing import Dict, Sequence, Tuple, Union

from .events import EPOCH_TIMESTAMP, RasContext, TraceRecord, format_timestamp

log = logging.getLogger(__name__)

FlagTable = Sequence[Tuple[int, str]]

# Poison list payload flags
CXL_POISON_FLAG_MORE = 1 << 0
CXL_POISON_FLAG_OVERFLOW = 1 << 1
CXL_POISON_FLAG_SCANNING = 1 << 2

# The CXL header log is 512 bytes, carried as 32-bit words.
CXL_HEADERLOG_SIZE = 512
CXL_HEADERLOG_SIZE_U32 = CXL_HEADERLOG_SIZE // 4

POISON_TRACE_TYPES: Dict[int, str] = {
    0: "List",
    1: "Inject",
    2: "Clear",
}

POISON_SOURCES: Dict[int, str] = {
    0: "Unknown",
    1: "External",
    2: "Internal",
    3: "Injected",
    7: "Vendor",
}

CXL_AER_UE: FlagTable = (
    (1 << 0, "Cache Data Parity Error"),
    (1 << 1, "Cache Address Parity Error"),
    (1 << 2, "Cache Byte Enable Parity Error"),
    (1 << 3, "Cache Data ECC Error"),
    (1 << 4, "Memory Data Parity Error"),
    (1 << 5, "Memory Address Parity Error"),
    (1 << 6, "Memory Byte Enable Parity Error"),
    (1 << 7, "Memory Data ECC Error"),
    (1 << 8, "REINIT Threshold Hit"),
    (1 << 9, "Received Unrecognized Encoding"),
    (1 << 10, "Received Poison From Peer"),
    (1 << 11, "Receiver Overflow"),
    (1 << 14, "Component Specific Error"),
    (1 << 15, "IDE Tx Error"),
    (1 << 16, "IDE Rx Error"),
)

CXL_AER_CE: FlagTable = (
    (1 << 0, "Cache Data ECC Error"),
    (1 << 1, "Memory Data ECC Error"),
    (1 << 2, "CRC Threshold Hit"),
    (1 << 3, "Retry Threshold"),
    (1 << 4, "Received Cache Poison From Peer"),
    (1 << 5, "Received Memory Poison From Peer"),
    (1 << 6, "Received Error From Physical Layer"),
)

_LOG_TYPES: Dict[int, str] = {
    0: "Informational",
    1: "Warning",
    2: "Failure",
    3: "Fatal",
}


def _as_bytes(data: Union[bytes, str]) -> bytes:
    return data.encode("latin-1") if isinstance(data, str) else bytes(data)


def _text(record: TraceRecord, name: str) -> str:
    """Return a raw field as a string, cut at the first NUL."""
    raw = record.raw(name)
    if isinstance(raw, str):
        return raw.split("\0", 1)[0]
    return bytes(raw).split(b"\0", 1)[0].decode("utf-8", errors="replace")


def _cxl_timestamp(context: RasContext, record: TraceRecord) -> str:
    return format_timestamp(record.ts // context.user_hz + context.uptime_diff)


def convert_timestamp(ts: int) -> str:
    """Format a CXL timestamp (nanoseconds since the epoch) as local time."""
    if not ts:
        return EPOCH_TIMESTAMP
    return format_timestamp(ts // 1_000_000_000)


def uuid_be(raw: Union[bytes, str]) -> str:
    """Format 16 bytes, in order, as a UUID string."""
    data = _as_bytes(raw)
    if len(data) < 16:
        raise ValueError(f"a UUID needs 16 bytes, got {len(data)}")
    return str(uuid.UUID(bytes=data[:16]))


def decode_flags(value: int, table: FlagTable) -> str:
    """Quote the name of every flag set in value, each followed by a space."""
    return "".join(f"'{name}' " for bit, name in table if value & bit)


def type_name(names: Sequence[str], index: int) -> str:
    """Look up a type name; out-of-range indices are 'Unknown'."""
    if 0 <= index < len(names):
        return names[index]
    return "Unknown"


def log_type_name(log_type: int) -> str:
    """Describe a CXL event log type."""
    return _LOG_TYPES.get(log_type, "Unknown")


@dataclass
class CxlPoisonEvent:
    """A decoded cxl_poison record."""

    timestamp: str
    memdev: str
    host: str
    serial: int
    trace_type: str
    region: str
    uuid: str
    hpa: int
    dpa: int
    dpa_length: int
    source: str
    flags: int
    overflow_ts: str
    text: str = field(default="", repr=False)


@dataclass
class CxlAerUeEvent:
    """A decoded cxl_aer_uncorrectable_error record."""

    timestamp: str
    memdev: str
    host: str
    serial: int
    error_status: int
    first_error: int
    header_log: Tuple[int, ...]
    text: str = field(default="", repr=False)

    @property
    def header_log_bytes(self) -> bytes:
        """The header log as big-endian words, the form it is stored in."""
        return struct.pack(f">{len(self.header_log)}I", *self.header_log)


@dataclass
class CxlAerCeEvent:
    """A decoded cxl_aer_correctable_error record."""

    timestamp: str
    memdev: str
    host: str
    serial: int
    error_status: int
    text: str = field(default="", repr=False)


@dataclass
class CxlOverflowEvent:
    """A decoded cxl_overflow record."""

    timestamp: str
    memdev: str
    host: str
    serial: int
    log_type: str
    count: int
    first_ts: str
    last_ts: str
    text: str = field(default="", repr=False)


def handle_cxl_poison_event(context: RasContext, record: TraceRecord) -> CxlPoisonEvent:
    """Decode a cxl_poison record; raise FieldError if a field is missing."""
    timestamp = _cxl_timestamp(context, record)
    memdev = _text(record, "memdev")
    host = _text(record, "host")
    serial = record.value("serial")
    trace_type = POISON_TRACE_TYPES.get(record.value("trace_type"), "Invalid")
    region = _text(record, "region")
    region_uuid = _text(record, "uuid")
    hpa = record.value("hpa")
    dpa = record.value("dpa")
    dpa_length = record.value("dpa_length")
    source = POISON_SOURCES.get(record.value("source"), "Invalid")
    flags = record.value("flags")
    if flags & CXL_POISON_FLAG_OVERFLOW:
        overflow_ts = convert_timestamp(record.value("overflow_ts"))
    else:
        overflow_ts = EPOCH_TIMESTAMP

    event = CxlPoisonEvent(
        timestamp=timestamp,
        memdev=memdev,
        host=host,
        serial=serial,
        trace_type=trace_type,
        region=region,
        uuid=region_uuid,
        hpa=hpa,
        dpa=dpa,
        dpa_length=dpa_length,
        source=source,
        flags=flags,
        overflow_ts=overflow_ts,
    )
    event.text = (
        f"{timestamp} memdev:{memdev} host:{host} serial:0x{serial:x} "
        f"trace_type:{trace_type} region:{region} region_uuid:{region_uuid} "
        f"poison list: hpa:0x{hpa:x} dpa:0x{dpa:x} dpa_length:0x{dpa_length:x} "
        f"source:{source} flags:{flags} overflow timestamp:{overflow_ts}\n"
    )
    log.info("%s", event.text)
    return event


def _format_header_log(words: Sequence[int]) -> str:
    parts = []
    for i, word in enumerate(words):
        parts.append(f"{word:08x} ")
        if i > 0 and i % 20 == 0:
            parts.append("\n")
    return "".join(parts)


def handle_cxl_aer_ue_event(context: RasContext, record: TraceRecord) -> CxlAerUeEvent:
    """Decode a cxl_aer_uncorrectable_error record.

    Raises FieldError if a field is missing and ValueError if the header
    log is too short.
    """
    timestamp = _cxl_timestamp(context, record)
    memdev = _text(record, "memdev")
    host = _text(record, "host")
    serial = record.value("serial")
    error_status = record.value("status")
    first_error = record.value("first_error")
    raw_log = _as_bytes(record.raw("header_log"))
    if len(raw_log) < CXL_HEADERLOG_SIZE:
        raise ValueError(
            f"header log needs {CXL_HEADERLOG_SIZE} bytes, got {len(raw_log)}"
        )
    words = struct.unpack(f"<{CXL_HEADERLOG_SIZE_U32}I", raw_log[:CXL_HEADERLOG_SIZE])

    event = CxlAerUeEvent(
        timestamp=timestamp,
        memdev=memdev,
        host=host,
        serial=serial,
        error_status=error_status,
        first_error=first_error,
        header_log=tuple(words),
    )
    event.text = (
        f"{timestamp} memdev:{memdev} host:{host} serial:0x{serial:x} "
        f"error status:{decode_flags(error_status, CXL_AER_UE)}"
        f"first error:{decode_flags(first_error, CXL_AER_UE)}"
        f"header log:\n{_format_header_log(words)}"
    )
    log.info("%s", event.text)
    return event


def handle_cxl_aer_ce_event(context: RasContext, record: TraceRecord) -> CxlAerCeEvent:
    """Decode a cxl_aer_correctable_error record; raise FieldError if a field is missing."""
    timestamp = _cxl_timestamp(context, record)
    memdev = _text(record, "memdev")
    host = _text(record, "host")
    serial = record.value("serial")
    error_status = record.value("status")

    event = CxlAerCeEvent(
        timestamp=timestamp,
        memdev=memdev,
        host=host,
        serial=serial,
        error_status=error_status,
    )
    event.text = (
        f"{timestamp} memdev:{memdev} host:{host} serial:0x{serial:x} "
        f"error status:{decode_flags(error_status, CXL_AER_CE)}"
    )
    log.info("%s", event.text)
    return event


def handle_cxl_overflow_event(context: RasContext, record: TraceRecord) -> CxlOverflowEvent:
    """Decode a cxl_overflow record; raise FieldError if a field is missing."""
    timestamp = _cxl_timestamp(context, record)
    memdev = _text(record, "memdev")
    host = _text(record, "host")
    serial = record.value("serial")
    log_type = log_type_name(record.value("log"))
    count = record.value("count")
    first_ts = convert_timestamp(record.value("first_ts"))
    last_ts = convert_timestamp(record.value("last_ts"))

    event = CxlOverflowEvent(
        timestamp=timestamp,
        memdev=memdev,
        host=host,
        serial=serial,
        log_type=log_type,
        count=count,
        first_ts=first_ts,
        last_ts=last_ts,
    )
    text = f"{timestamp} memdev:{memdev} host:{host} serial:0x{serial:x} log type:{log_type} "
    if count:
        text += f"{count} errors from {first_ts} to {last_ts}\n"
    event.text = text
    log.info("%s", event.text)
    return event