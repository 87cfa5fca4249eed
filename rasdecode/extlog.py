"""Decoding of extended error log (extlog_mem_event) trace events."""

from __future__ import annotations

import logging
import struct
import uuid
from dataclasses import dataclass, field
from typing import Union

from .events import RasContext, TraceRecord, format_timestamp

log = logging.getLogger(__name__)

_U64 = (1 << 64) - 1

CPER_MEM_VALID_NODE = 0x0008
CPER_MEM_VALID_CARD = 0x0010
CPER_MEM_VALID_MODULE = 0x0020
CPER_MEM_VALID_BANK = 0x0040
CPER_MEM_VALID_DEVICE = 0x0080
CPER_MEM_VALID_ROW = 0x0100
CPER_MEM_VALID_COLUMN = 0x0200
CPER_MEM_VALID_BIT_POSITION = 0x0400
CPER_MEM_VALID_REQUESTOR_ID = 0x0800
CPER_MEM_VALID_RESPONDER_ID = 0x1000
CPER_MEM_VALID_TARGET_ID = 0x2000
CPER_MEM_VALID_RANK_NUMBER = 0x8000
CPER_MEM_VALID_CARD_HANDLE = 0x10000
CPER_MEM_VALID_MODULE_HANDLE = 0x20000

_ERR_TYPES = (
    "unknown",
    "no error",
    "single-bit ECC",
    "multi-bit ECC",
    "single-symbol chipkill ECC",
    "multi-symbol chipkill ECC",
    "master abort",
    "target abort",
    "parity error",
    "watchdog timeout",
    "invalid address",
    "mirror Broken",
    "memory sparing",
    "scrub corrected error",
    "scrub uncorrected error",
    "physical memory map-out event",
)

_SEVERITIES = ("recoverable", "fatal", "corrected", "informational")

# (validation bit, attribute, label, hexadecimal)
_CPER_FIELDS = (
    (CPER_MEM_VALID_NODE, "node", "node", False),
    (CPER_MEM_VALID_CARD, "card", "card", False),
    (CPER_MEM_VALID_MODULE, "module", "module", False),
    (CPER_MEM_VALID_BANK, "bank", "bank", False),
    (CPER_MEM_VALID_DEVICE, "device", "device", False),
    (CPER_MEM_VALID_ROW, "row", "row", False),
    (CPER_MEM_VALID_COLUMN, "column", "column", False),
    (CPER_MEM_VALID_BIT_POSITION, "bit_pos", "bit_pos", False),
    (CPER_MEM_VALID_REQUESTOR_ID, "requestor_id", "req_id", True),
    (CPER_MEM_VALID_RESPONDER_ID, "responder_id", "resp_id", True),
    (CPER_MEM_VALID_TARGET_ID, "target_id", "tgt_id", True),
    (CPER_MEM_VALID_RANK_NUMBER, "rank", "rank", False),
    (CPER_MEM_VALID_CARD_HANDLE, "mem_array_handle", "card_handle", False),
    (CPER_MEM_VALID_MODULE_HANDLE, "mem_dev_handle", "module_handle", False),
)


def _as_bytes(data: Union[bytes, str]) -> bytes:
    return data.encode("latin-1") if isinstance(data, str) else bytes(data)


def _text(raw: Union[bytes, str]) -> str:
    if isinstance(raw, str):
        return raw.split("\0", 1)[0]
    return bytes(raw).split(b"\0", 1)[0].decode("utf-8", errors="replace")


def err_type_name(etype: int) -> str:
    """Describe a memory error type."""
    if 0 <= etype < len(_ERR_TYPES):
        return _ERR_TYPES[etype]
    return "unknown-type"


def err_severity_name(severity: int) -> str:
    """Describe an error severity."""
    if 0 <= severity < len(_SEVERITIES):
        return _SEVERITIES[severity]
    return "unknown-severity"


def err_mask(lsb: int) -> int:
    """Return the 64-bit physical address mask for a lowest valid bit."""
    if lsb == 0xFF:
        return _U64
    return ~((1 << lsb) - 1) & _U64


def uuid_le(raw: Union[bytes, str]) -> str:
    """Format 16 bytes in mixed-endian (GUID) order as a UUID string."""
    data = _as_bytes(raw)
    if len(data) < 16:
        raise ValueError(f"a UUID needs 16 bytes, got {len(data)}")
    return str(uuid.UUID(bytes_le=data[:16]))


@dataclass(frozen=True)
class CperMemErr:
    """The compact CPER memory error section carried by extlog events."""

    validation_bits: int = 0
    node: int = 0
    card: int = 0
    module: int = 0
    bank: int = 0
    device: int = 0
    row: int = 0
    column: int = 0
    bit_pos: int = 0
    requestor_id: int = 0
    responder_id: int = 0
    target_id: int = 0
    rank: int = 0
    mem_array_handle: int = 0
    mem_dev_handle: int = 0

    LAYOUT = struct.Struct("<Q8H3Q3H")

    @classmethod
    def from_bytes(cls, data: Union[bytes, str]) -> "CperMemErr":
        """Unpack the structure; raise ValueError if the data is too short."""
        raw = _as_bytes(data)
        if len(raw) < cls.LAYOUT.size:
            raise ValueError(
                f"CPER memory error data needs {cls.LAYOUT.size} bytes, got {len(raw)}"
            )
        return cls(*cls.LAYOUT.unpack(raw[: cls.LAYOUT.size]))

    def to_bytes(self) -> bytes:
        """Pack the structure to its wire form."""
        return self.LAYOUT.pack(
            self.validation_bits,
            self.node,
            self.card,
            self.module,
            self.bank,
            self.device,
            self.row,
            self.column,
            self.bit_pos,
            self.requestor_id,
            self.responder_id,
            self.target_id,
            self.rank,
            self.mem_array_handle,
            self.mem_dev_handle,
        )

    def describe(self) -> str:
        """List the valid fields in parentheses; empty if none is flagged valid."""
        if not self.validation_bits:
            return ""
        parts = [" ("]
        for bit, attr, label, as_hex in _CPER_FIELDS:
            if self.validation_bits & bit:
                value = getattr(self, attr)
                parts.append(f"{label}: 0x{value:x} " if as_hex else f"{label}: {value} ")
        text = "".join(parts)
        # The trailing separator is replaced by the closing parenthesis.
        return text[:-1] + ")"


@dataclass
class ExtlogEvent:
    """A decoded extlog_mem_event record."""

    timestamp: str
    etype: int
    error_seq: int
    severity: int
    address: int
    pa_mask_lsb: int
    cper_data: bytes
    cper_data_length: int
    fru_text: str
    fru_id: bytes
    text: str = field(default="", repr=False)


def handle_extlog_mem_event(context: RasContext, record: TraceRecord) -> ExtlogEvent:
    """Decode an extlog_mem_event record.

    Raises FieldError if a field is missing and ValueError if the CPER data
    or the FRU id is too short.
    """
    timestamp = format_timestamp(context.event_time(record))
    etype = record.value("etype")
    error_seq = record.value("err_seq")
    severity = record.value("sev")
    address = record.value("pa") & _U64
    pa_mask_lsb = record.value("pa_mask_lsb")
    cper_data = _as_bytes(record.raw("data"))
    fru_text = _text(record.raw("fru_text"))
    fru_id = _as_bytes(record.raw("fru_id"))

    event = ExtlogEvent(
        timestamp=timestamp,
        etype=etype,
        error_seq=error_seq,
        severity=severity,
        address=address,
        pa_mask_lsb=pa_mask_lsb,
        cper_data=cper_data,
        cper_data_length=len(cper_data),
        fru_text=fru_text,
        fru_id=fru_id,
    )
    cper = CperMemErr.from_bytes(cper_data)
    event.text = (
        f"{timestamp} {error_seq} {err_severity_name(severity)} error: "
        f"{err_type_name(etype)} physical addr: 0x{address:x} "
        f"mask: 0x{err_mask(pa_mask_lsb):x}{cper.describe()} {fru_text} {uuid_le(fru_id)}"
    )
    log.info("%s", event.text)
    return event