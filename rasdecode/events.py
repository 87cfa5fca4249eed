"""Trace records, event kinds and the shared handler context."""

from __future__ import annotations

import os
import time
from dataclasses import dataclass, field
from datetime import datetime
from enum import IntEnum
from typing import Mapping, Optional, Union

FieldValue = Union[int, bytes, str]

EPOCH_TIMESTAMP = "1970-01-01 00:00:00 +0000"
TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S %z"


class EventKind(IntEnum):
    """The kinds of RAS trace events the daemon listens to."""

    MC_EVENT = 0
    MCE_EVENT = 1
    AER_EVENT = 2
    NON_STANDARD_EVENT = 3
    ARM_EVENT = 4
    EXTLOG_EVENT = 5
    DEVLINK_EVENT = 6
    DISKERROR_EVENT = 7
    MF_EVENT = 8
    CXL_POISON_EVENT = 9
    CXL_AER_UE_EVENT = 10
    CXL_AER_CE_EVENT = 11
    CXL_OVERFLOW_EVENT = 12
    CXL_GENERIC_EVENT = 13
    CXL_GENERAL_MEDIA_EVENT = 14
    CXL_DRAM_EVENT = 15
    CXL_MEMORY_MODULE_EVENT = 16


class GhesSeverity(IntEnum):
    """Severity levels of the generic hardware error source."""

    NO = 0
    CORRECTED = 1
    RECOVERABLE = 2
    PANIC = 3


class McErrorType(IntEnum):
    """Memory controller error types reported by EDAC."""

    CORRECTED = 0
    UNCORRECTED = 1
    FATAL = 2
    INFO = 3


class AerErrorType(IntEnum):
    """PCIe AER error types."""

    UNCORRECTED_NON_FATAL = 0
    UNCORRECTED_FATAL = 1
    CORRECTED = 2


class FieldError(LookupError):
    """A trace record lacks a field, or the field has the wrong kind."""

    def __init__(self, name: str, reason: str = "missing field") -> None:
        super().__init__(f"{reason}: {name!r}")
        self.field = name


@dataclass
class TraceRecord:
    """One decoded trace event: its timestamp, CPU and named fields."""

    fields: Mapping[str, FieldValue] = field(default_factory=dict)
    ts: int = 0
    cpu: int = 0

    def value(self, name: str) -> int:
        """Return a numeric field."""
        if name not in self.fields:
            raise FieldError(name)
        val = self.fields[name]
        if not isinstance(val, int):
            raise FieldError(name, "field is not numeric")
        return val

    def raw(self, name: str) -> Union[bytes, str]:
        """Return a raw (string or byte) field."""
        if name not in self.fields:
            raise FieldError(name)
        val = self.fields[name]
        if isinstance(val, int):
            raise FieldError(name, "field is not raw data")
        return val

    def has(self, name: str) -> bool:
        """Tell whether the record carries a field."""
        return name in self.fields


def _clock_ticks() -> int:
    try:
        return os.sysconf("SC_CLK_TCK")
    except (AttributeError, ValueError, OSError):
        return 100


@dataclass
class RasContext:
    """State shared by every event handler."""

    use_uptime: bool = False
    uptime_diff: int = 0
    user_hz: int = field(default_factory=_clock_ticks)

    def event_time(self, record: TraceRecord, now: Optional[float] = None) -> int:
        """Return the wall-clock second at which the record happened."""
        if self.use_uptime:
            return record.ts // self.user_hz + self.uptime_diff
        return int(time.time() if now is None else now)


def format_timestamp(when: float) -> str:
    """Format seconds since the epoch as local time, with UTC offset."""
    try:
        return datetime.fromtimestamp(when).astimezone().strftime(TIMESTAMP_FORMAT)
    except (OverflowError, OSError, ValueError):
        return EPOCH_TIMESTAMP