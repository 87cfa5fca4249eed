"""Decoding of CXL event records: generic, general media, DRAM and memory module."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Optional, Sequence, Union

from .cxl import convert_timestamp, decode_flags, log_type_name, type_name, uuid_be
from .events import RasContext, TraceRecord, format_timestamp

log = logging.getLogger(__name__)

CXL_EVENT_RECORD_DATA_LENGTH = 0x50
CXL_EVENT_GEN_MED_COMP_ID_SIZE = 0x10
CXL_EVENT_DER_CORRECTION_MASK_SIZE = 0x20

# Common event record flags (CXL 3.0 section 8.2.9.2.1, table 8-42)
CXL_HDR_FLAGS = (
    (1 << 2, "PERMANENT_CONDITION"),
    (1 << 3, "MAINTENANCE_NEEDED"),
    (1 << 4, "PERFORMANCE_DEGRADED"),
    (1 << 5, "HARDWARE_REPLACEMENT_NEEDED"),
)

CXL_DPA_VOLATILE = 1 << 0
CXL_DPA_NOT_REPAIRABLE = 1 << 1

CXL_DPA_FLAGS = (
    (CXL_DPA_VOLATILE, "VOLATILE"),
    (CXL_DPA_NOT_REPAIRABLE, "NOT_REPAIRABLE"),
)

CXL_GMER_EVT_DESC_UNCORRECTABLE_EVENT = 1 << 0
CXL_GMER_EVT_DESC_THRESHOLD_EVENT = 1 << 1
CXL_GMER_EVT_DESC_POISON_LIST_OVERFLOW = 1 << 2

CXL_GMER_EVENT_DESC_FLAGS = (
    (CXL_GMER_EVT_DESC_UNCORRECTABLE_EVENT, "UNCORRECTABLE EVENT"),
    (CXL_GMER_EVT_DESC_THRESHOLD_EVENT, "THRESHOLD EVENT"),
    (CXL_GMER_EVT_DESC_POISON_LIST_OVERFLOW, "POISON LIST OVERFLOW"),
)

CXL_GMER_VALID_CHANNEL = 1 << 0
CXL_GMER_VALID_RANK = 1 << 1
CXL_GMER_VALID_DEVICE = 1 << 2
CXL_GMER_VALID_COMPONENT = 1 << 3

CXL_GMER_MEM_EVENT_TYPE = (
    "ECC Error",
    "Invalid Address",
    "Data Path Error",
)

CXL_GMER_TRANS_TYPE = (
    "Unknown",
    "Host Read",
    "Host Write",
    "Host Scan Media",
    "Host Inject Poison",
    "Internal Media Scrub",
    "Internal Media Management",
)

CXL_DER_VALID_CHANNEL = 1 << 0
CXL_DER_VALID_RANK = 1 << 1
CXL_DER_VALID_NIBBLE = 1 << 2
CXL_DER_VALID_BANK_GROUP = 1 << 3
CXL_DER_VALID_BANK = 1 << 4
CXL_DER_VALID_ROW = 1 << 5
CXL_DER_VALID_COLUMN = 1 << 6
CXL_DER_VALID_CORRECTION_MASK = 1 << 7

CXL_DEV_EVT_TYPE = (
    "Health Status Change",
    "Media Status Change",
    "Life Used Change",
    "Temperature Change",
    "Data Path Error",
    "LSA Error",
)

CXL_HEALTH_STATUS = (
    (1 << 0, "MAINTENANCE_NEEDED"),
    (1 << 1, "PERFORMANCE_DEGRADED"),
    (1 << 2, "REPLACEMENT_NEEDED"),
)

CXL_MEDIA_STATUS = (
    "Normal",
    "Not Ready",
    "Write Persistency Lost",
    "All Data Lost",
    "Write Persistency Loss in the Event of Power Loss",
    "Write Persistency Loss in Event of Shutdown",
    "Write Persistency Loss Imminent",
    "All Data Loss in Event of Power Loss",
    "All Data loss in the Event of Shutdown",
    "All Data Loss Imminent",
)

CXL_TWO_BIT_STATUS = ("Normal", "Warning", "Critical")
CXL_ONE_BIT_STATUS = ("Normal", "Warning")


def _as_bytes(data: Union[bytes, str]) -> bytes:
    return data.encode("latin-1") if isinstance(data, str) else bytes(data)


def _text(record: TraceRecord, name: str) -> str:
    raw = record.raw(name)
    if isinstance(raw, str):
        return raw.split("\0", 1)[0]
    return bytes(raw).split(b"\0", 1)[0].decode("utf-8", errors="replace")


def _sized_raw(record: TraceRecord, name: str, size: int) -> bytes:
    data = _as_bytes(record.raw(name))
    if len(data) < size:
        raise ValueError(f"field {name!r} needs {size} bytes, got {len(data)}")
    return data[:size]


def _hex_bytes(data: Sequence[int]) -> str:
    return "".join(f"{byte:02x} " for byte in data)


@dataclass
class CxlCommonHeader:
    """The header shared by every CXL event record."""

    timestamp: str
    memdev: str
    host: str
    serial: int
    log_type: str
    hdr_uuid: str
    hdr_flags: int
    hdr_handle: int
    hdr_related_handle: int
    hdr_timestamp: str
    hdr_length: int
    hdr_maint_op_class: int
    text: str = field(default="", repr=False)


@dataclass
class CxlGenericEvent:
    """A decoded cxl_generic_event record."""

    hdr: CxlCommonHeader
    data: bytes
    text: str = field(default="", repr=False)


@dataclass
class CxlGeneralMediaEvent:
    """A decoded cxl_general_media record."""

    hdr: CxlCommonHeader
    dpa: int
    dpa_flags: int
    descriptor: int
    type: int
    transaction_type: int
    hpa: int
    region: str
    region_uuid: str
    validity_flags: int
    channel: Optional[int] = None
    rank: Optional[int] = None
    device: Optional[int] = None
    comp_id: Optional[bytes] = None
    text: str = field(default="", repr=False)


@dataclass
class CxlDramEvent:
    """A decoded cxl_dram record."""

    hdr: CxlCommonHeader
    dpa: int
    dpa_flags: int
    descriptor: int
    type: int
    transaction_type: int
    hpa: int
    region: str
    region_uuid: str
    validity_flags: int
    channel: Optional[int] = None
    rank: Optional[int] = None
    nibble_mask: Optional[int] = None
    bank_group: Optional[int] = None
    bank: Optional[int] = None
    row: Optional[int] = None
    column: Optional[int] = None
    cor_mask: Optional[bytes] = None
    text: str = field(default="", repr=False)

    @property
    def needs_page_offline(self) -> bool:
        """A corrected error that crossed the device threshold."""
        return bool(
            not self.descriptor & CXL_GMER_EVT_DESC_UNCORRECTABLE_EVENT
            and self.descriptor & CXL_GMER_EVT_DESC_THRESHOLD_EVENT
        )


@dataclass
class CxlMemoryModuleEvent:
    """A decoded cxl_memory_module record."""

    hdr: CxlCommonHeader
    event_type: int
    health_status: int
    media_status: int
    add_status: int
    life_used: int
    device_temp: int
    dirty_shutdown_cnt: int
    cor_vol_err_cnt: int
    cor_per_err_cnt: int
    text: str = field(default="", repr=False)


def parse_common_header(context: RasContext, record: TraceRecord) -> CxlCommonHeader:
    """Decode the common record header; raise FieldError if a field is missing."""
    timestamp = format_timestamp(record.ts // context.user_hz + context.uptime_diff)
    hdr = CxlCommonHeader(
        timestamp=timestamp,
        memdev=_text(record, "memdev"),
        host=_text(record, "host"),
        serial=record.value("serial"),
        log_type=log_type_name(record.value("log")),
        hdr_uuid=uuid_be(record.raw("hdr_uuid")),
        hdr_flags=record.value("hdr_flags"),
        hdr_handle=record.value("hdr_handle"),
        hdr_related_handle=record.value("hdr_related_handle"),
        hdr_timestamp=convert_timestamp(record.value("hdr_timestamp")),
        hdr_length=record.value("hdr_length"),
        hdr_maint_op_class=record.value("hdr_maint_op_class"),
    )
    hdr.text = (
        f"{hdr.timestamp} memdev:{hdr.memdev} host:{hdr.host} serial:0x{hdr.serial:x} "
        f"log type:{hdr.log_type} hdr_uuid:{hdr.hdr_uuid} "
        f"{decode_flags(hdr.hdr_flags, CXL_HDR_FLAGS)}"
        f"hdr_handle:0x{hdr.hdr_handle:x} hdr_related_handle:0x{hdr.hdr_related_handle:x} "
        f"hdr_timestamp:{hdr.hdr_timestamp} hdr_length:{hdr.hdr_length} "
        f"hdr_maint_op_class:{hdr.hdr_maint_op_class} "
    )
    return hdr


def _dump_record_data(data: bytes) -> str:
    parts = [f"\ndata:\n  {0:08x}: "]
    for offset in range(0, CXL_EVENT_RECORD_DATA_LENGTH, 4):
        if offset > 0 and offset % 16 == 0:
            parts.append(f"\n  {offset:08x}: ")
        parts.append(data[offset:offset + 4].hex() + " ")
    return "".join(parts)


def handle_cxl_generic_event(context: RasContext, record: TraceRecord) -> CxlGenericEvent:
    """Decode a cxl_generic_event record.

    Raises FieldError if a field is missing and ValueError if the data is short.
    """
    hdr = parse_common_header(context, record)
    data = _sized_raw(record, "data", CXL_EVENT_RECORD_DATA_LENGTH)
    event = CxlGenericEvent(hdr=hdr, data=data)
    event.text = hdr.text + _dump_record_data(data)
    log.info("%s", event.text)
    return event


def _media_common(record: TraceRecord, out: list) -> dict:
    dpa = record.value("dpa")
    out.append(f"dpa:0x{dpa:x} ")
    return {"dpa": dpa}


def handle_cxl_general_media_event(
    context: RasContext, record: TraceRecord
) -> CxlGeneralMediaEvent:
    """Decode a cxl_general_media record.

    Raises FieldError if a field is missing and ValueError if comp_id is short.
    """
    hdr = parse_common_header(context, record)
    out = [hdr.text]
    dpa = record.value("dpa")
    out.append(f"dpa:0x{dpa:x} ")
    dpa_flags = record.value("dpa_flags")
    out.append(f"dpa_flags:{decode_flags(dpa_flags, CXL_DPA_FLAGS)}")
    descriptor = record.value("descriptor")
    out.append(f"descriptor:{decode_flags(descriptor, CXL_GMER_EVENT_DESC_FLAGS)}")
    mem_type = record.value("type")
    out.append(f"type:{type_name(CXL_GMER_MEM_EVENT_TYPE, mem_type)} ")
    trans_type = record.value("transaction_type")
    out.append(f"transaction_type:{type_name(CXL_GMER_TRANS_TYPE, trans_type)} ")
    hpa = record.value("hpa")
    out.append(f"hpa:0x{hpa:x} ")
    region = _text(record, "region_name")
    out.append(f"region:{region} ")
    region_uuid = uuid_be(record.raw("region_uuid"))
    out.append(f"region_uuid:{region_uuid} ")
    validity = record.value("validity_flags")

    event = CxlGeneralMediaEvent(
        hdr=hdr,
        dpa=dpa,
        dpa_flags=dpa_flags,
        descriptor=descriptor,
        type=mem_type,
        transaction_type=trans_type,
        hpa=hpa,
        region=region,
        region_uuid=region_uuid,
        validity_flags=validity,
    )
    if validity & CXL_GMER_VALID_CHANNEL:
        event.channel = record.value("channel")
        out.append(f"channel:{event.channel} ")
    if validity & CXL_GMER_VALID_RANK:
        event.rank = record.value("rank")
        out.append(f"rank:{event.rank} ")
    if validity & CXL_GMER_VALID_DEVICE:
        event.device = record.value("device")
        out.append(f"device:{event.device:x} ")
    if validity & CXL_GMER_VALID_COMPONENT:
        event.comp_id = _sized_raw(record, "comp_id", CXL_EVENT_GEN_MED_COMP_ID_SIZE)
        out.append("comp_id:" + _hex_bytes(event.comp_id))

    event.text = "".join(out)
    log.info("%s", event.text)
    return event


def handle_cxl_dram_event(context: RasContext, record: TraceRecord) -> CxlDramEvent:
    """Decode a cxl_dram record.

    Raises FieldError if a field is missing and ValueError if cor_mask is short.
    """
    hdr = parse_common_header(context, record)
    out = [hdr.text]
    dpa = record.value("dpa")
    out.append(f"dpa:0x{dpa:x} ")
    hpa = record.value("hpa")
    out.append(f"hpa:0x{hpa:x} ")
    dpa_flags = record.value("dpa_flags")
    out.append(f"dpa_flags:{decode_flags(dpa_flags, CXL_DPA_FLAGS)}")
    descriptor = record.value("descriptor")
    out.append(f"descriptor:{decode_flags(descriptor, CXL_GMER_EVENT_DESC_FLAGS)}")
    mem_type = record.value("type")
    out.append(f"type:{type_name(CXL_GMER_MEM_EVENT_TYPE, mem_type)} ")
    trans_type = record.value("transaction_type")
    out.append(f"transaction_type:{type_name(CXL_GMER_TRANS_TYPE, trans_type)} ")
    out.append(f"hpa:0x{hpa:x} ")
    region = _text(record, "region")
    out.append(f"region:{region} ")
    region_uuid = uuid_be(record.raw("region_uuid"))
    out.append(f"region_uuid:{region_uuid} ")
    validity = record.value("validity_flags")

    event = CxlDramEvent(
        hdr=hdr,
        dpa=dpa,
        dpa_flags=dpa_flags,
        descriptor=descriptor,
        type=mem_type,
        transaction_type=trans_type,
        hpa=hpa,
        region=region,
        region_uuid=region_uuid,
        validity_flags=validity,
    )
    optional = (
        (CXL_DER_VALID_CHANNEL, "channel", "channel"),
        (CXL_DER_VALID_RANK, "rank", "rank"),
        (CXL_DER_VALID_NIBBLE, "nibble_mask", "nibble_mask"),
        (CXL_DER_VALID_BANK_GROUP, "bank_group", "bank_group"),
        (CXL_DER_VALID_BANK, "bank", "bank"),
        (CXL_DER_VALID_ROW, "row", "row"),
        (CXL_DER_VALID_COLUMN, "column", "column"),
    )
    for bit, name, label in optional:
        if validity & bit:
            value = record.value(name)
            setattr(event, name, value)
            out.append(f"{label}:{value} ")
    if validity & CXL_DER_VALID_CORRECTION_MASK:
        event.cor_mask = _sized_raw(record, "cor_mask", CXL_EVENT_DER_CORRECTION_MASK_SIZE)
        out.append("correction_mask:" + _hex_bytes(event.cor_mask))

    event.text = "".join(out)
    log.info("%s", event.text)
    return event


def handle_cxl_memory_module_event(
    context: RasContext, record: TraceRecord
) -> CxlMemoryModuleEvent:
    """Decode a cxl_memory_module record; raise FieldError if a field is missing."""
    hdr = parse_common_header(context, record)
    event = CxlMemoryModuleEvent(
        hdr=hdr,
        event_type=record.value("event_type"),
        health_status=record.value("health_status"),
        media_status=record.value("media_status"),
        add_status=record.value("add_status"),
        life_used=record.value("life_used"),
        device_temp=record.value("device_temp"),
        dirty_shutdown_cnt=record.value("dirty_shutdown_cnt"),
        cor_vol_err_cnt=record.value("cor_vol_err_cnt"),
        cor_per_err_cnt=record.value("cor_per_err_cnt"),
    )
    status = event.add_status
    event.text = (
        f"{hdr.text}"
        f"event_type:{type_name(CXL_DEV_EVT_TYPE, event.event_type)} "
        f"health_status:{decode_flags(event.health_status, CXL_HEALTH_STATUS)}"
        f"media_status:{type_name(CXL_MEDIA_STATUS, event.media_status)} "
        f"as_life_used:{type_name(CXL_TWO_BIT_STATUS, status & 0x3)} "
        f"as_dev_temp:{type_name(CXL_TWO_BIT_STATUS, (status & 0xC) >> 2)} "
        f"as_cor_vol_err_cnt:{type_name(CXL_ONE_BIT_STATUS, (status & 0x10) >> 4)} "
        f"as_cor_per_err_cnt:{type_name(CXL_ONE_BIT_STATUS, (status & 0x20) >> 5)} "
        f"life_used:{event.life_used} device_temp:{event.device_temp} "
        f"dirty_shutdown_cnt:{event.dirty_shutdown_cnt} "
        f"cor_vol_err_cnt:{event.cor_vol_err_cnt} "
        f"cor_per_err_cnt:{event.cor_per_err_cnt} "
    )
    log.info("%s", event.text)
    return event