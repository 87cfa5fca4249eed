"""Decoding of block layer request error trace events."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, Union

from .events import RasContext, TraceRecord, format_timestamp

log = logging.getLogger(__name__)

# Kernel (Linux) errno values, as carried in trace events.
_BLK_ERRORS: Dict[int, str] = {
    -95: "operation not supported error",  # EOPNOTSUPP
    -110: "timeout error",  # ETIMEDOUT
    -28: "critical space allocation error",  # ENOSPC
    -67: "recoverable transport error",  # ENOLINK
    -121: "critical target error",  # EREMOTEIO
    -52: "critical nexus error",  # EBADE
    -61: "critical medium error",  # ENODATA
    -84: "protection error",  # EILSEQ
    -12: "kernel resource error",  # ENOMEM
    -16: "device resource error",  # EBUSY
    -11: "nonblocking retry error",  # EAGAIN
    -78: "dm internal retry error",  # EREMCHG
    -5: "I/O error",  # EIO
}


def _to_int32(value: int) -> int:
    value &= 0xFFFFFFFF
    return value - (1 << 32) if value & 0x80000000 else value


def blk_error_name(err: int) -> str:
    """Describe a (negative) block layer error code."""
    return _BLK_ERRORS.get(_to_int32(err), "unknown block error")


def _major(dev: int) -> int:
    return ((dev >> 8) & 0xFFF) | ((dev >> 32) & ~0xFFF & 0xFFFFFFFF)


def _minor(dev: int) -> int:
    return (dev & 0xFF) | ((dev >> 12) & ~0xFF & 0xFFFFFFFF)


def _text(raw: Union[bytes, str]) -> str:
    if isinstance(raw, str):
        return raw.split("\0", 1)[0]
    return bytes(raw).split(b"\0", 1)[0].decode("utf-8", errors="replace")


@dataclass
class DiskErrorEvent:
    """A decoded block request error."""

    timestamp: str
    dev: str
    sector: int
    nr_sector: int
    error: str
    rwbs: str
    cmd: str

    @property
    def text(self) -> str:
        return f"{self.timestamp} "


def handle_diskerror_event(context: RasContext, record: TraceRecord) -> DiskErrorEvent:
    """Decode a block_rq_error record; raise FieldError if a field is missing."""
    timestamp = format_timestamp(context.event_time(record))
    dev = record.value("dev") & 0xFFFFFFFFFFFFFFFF
    event = DiskErrorEvent(
        timestamp=timestamp,
        dev=f"{_major(dev)}:{_minor(dev)}",
        sector=record.value("sector"),
        nr_sector=record.value("nr_sector") & 0xFFFFFFFF,
        error=blk_error_name(record.value("error")),
        rwbs=_text(record.raw("rwbs")),
        cmd=_text(record.raw("cmd")),
    )
    log.info("%s", event.text)
    return event