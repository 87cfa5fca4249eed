"""Machine check exception records: CPU detection, field extraction and reports."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from enum import IntEnum
from typing import Optional

from .events import TraceRecord

log = logging.getLogger(__name__)

MCE_EXTENDED_BANK = 128

MCI_THRESHOLD_OVER = 1 << 48

MCI_STATUS_VAL = 1 << 63
MCI_STATUS_OVER = 1 << 62
MCI_STATUS_UC = 1 << 61
MCI_STATUS_EN = 1 << 60
MCI_STATUS_MISCV = 1 << 59
MCI_STATUS_ADDRV = 1 << 58
MCI_STATUS_PCC = 1 << 57
MCI_STATUS_S = 1 << 56
MCI_STATUS_AR = 1 << 55

# AMD-specific bits
MCI_STATUS_TCC = 1 << 55
MCI_STATUS_SYNDV = 1 << 53
MCI_STATUS_DEFERRED = 1 << 44
MCI_STATUS_POISON = 1 << 43

MCG_STATUS_RIPV = 1 << 0
MCG_STATUS_EIPV = 1 << 1
MCG_STATUS_MCIP = 1 << 2
MCG_STATUS_LMCE = 1 << 3

_U64 = (1 << 64) - 1
_U32 = (1 << 32) - 1
_U8 = 0xFF


class CpuType(IntEnum):
    """CPU families the MCE decoder tells apart."""

    GENERIC = 0
    P6OLD = 1
    CORE2 = 2
    K8 = 3
    P4 = 4
    NEHALEM = 5
    DUNNINGTON = 6
    TULSA = 7
    INTEL = 8
    XEON75XX = 9
    SANDY_BRIDGE = 10
    SANDY_BRIDGE_EP = 11
    IVY_BRIDGE = 12
    IVY_BRIDGE_EPEX = 13
    HASWELL = 14
    HASWELL_EPEX = 15
    BROADWELL = 16
    BROADWELL_DE = 17
    BROADWELL_EPEX = 18
    KNIGHTS_LANDING = 19
    KNIGHTS_MILL = 20
    SKYLAKE_XEON = 21
    AMD_SMCA = 22
    DHYANA = 23
    ICELAKE_XEON = 24
    ICELAKE_DE = 25
    TREMONT_D = 26
    SAPPHIRERAPIDS = 27
    EMERALDRAPIDS = 28


_CPUTYPE_NAMES = {
    CpuType.GENERIC: "generic CPU",
    CpuType.P6OLD: "Intel PPro/P2/P3/old Xeon",
    CpuType.CORE2: "Intel Core",
    CpuType.K8: "AMD K8 and derivates",
    CpuType.P4: "Intel P4",
    CpuType.NEHALEM: 'Intel Xeon 5500 series / Core i3/5/7 ("Nehalem/Westmere")',
    CpuType.DUNNINGTON: "Intel Xeon 7400 series",
    CpuType.TULSA: "Intel Xeon 7100 series",
    CpuType.INTEL: "Intel generic architectural MCA",
    CpuType.XEON75XX: "Intel Xeon 7500 series",
    CpuType.SANDY_BRIDGE: "Sandy Bridge",
    CpuType.SANDY_BRIDGE_EP: "Sandy Bridge EP",
    CpuType.IVY_BRIDGE: "Ivy Bridge",
    CpuType.IVY_BRIDGE_EPEX: "Ivy Bridge EP/EX",
    CpuType.HASWELL: "Haswell",
    CpuType.HASWELL_EPEX: "Intel Xeon v3 (Haswell) EP/EX",
    CpuType.BROADWELL: "Broadwell",
    CpuType.BROADWELL_DE: "Broadwell DE",
    CpuType.BROADWELL_EPEX: "Broadwell EP/EX",
    CpuType.KNIGHTS_LANDING: "Knights Landing",
    CpuType.KNIGHTS_MILL: "Knights Mill",
    CpuType.SKYLAKE_XEON: "Skylake server",
    CpuType.AMD_SMCA: "AMD Scalable MCA",
    CpuType.DHYANA: "Hygon Family 18h Moksha",
    CpuType.ICELAKE_XEON: "Icelake server",
    CpuType.ICELAKE_DE: "Icelake server D Family",
    CpuType.TREMONT_D: "Tremont microserver",
    CpuType.SAPPHIRERAPIDS: "Sapphirerapids server",
    CpuType.EMERALDRAPIDS: "Emeraldrapids server",
}

# Family 6 Intel models, in the order the checks are made.
_INTEL_FAMILY6_MODELS = (
    ((0xF, 0x17), CpuType.CORE2),
    ((0x1D,), CpuType.DUNNINGTON),
    ((0x1A, 0x2C, 0x1E, 0x25), CpuType.NEHALEM),
    ((0x2E, 0x2F), CpuType.XEON75XX),
    ((0x2A,), CpuType.SANDY_BRIDGE),
    ((0x2D,), CpuType.SANDY_BRIDGE_EP),
    ((0x3A,), CpuType.IVY_BRIDGE),
    ((0x3E,), CpuType.IVY_BRIDGE_EPEX),
    ((0x3C, 0x45, 0x46), CpuType.HASWELL),
    ((0x3F,), CpuType.HASWELL_EPEX),
    ((0x56,), CpuType.BROADWELL_DE),
    ((0x4F,), CpuType.BROADWELL_EPEX),
    ((0x3D,), CpuType.BROADWELL),
    ((0x57,), CpuType.KNIGHTS_LANDING),
    ((0x85,), CpuType.KNIGHTS_MILL),
    ((0x55,), CpuType.SKYLAKE_XEON),
    ((0x6A,), CpuType.ICELAKE_XEON),
    ((0x6C,), CpuType.ICELAKE_DE),
    ((0x86,), CpuType.TREMONT_D),
    ((0x8F,), CpuType.SAPPHIRERAPIDS),
    ((0xCF,), CpuType.EMERALDRAPIDS),
)


def cputype_name(cputype: int) -> str:
    """Describe a CPU type; raise ValueError for an unknown one."""
    return _CPUTYPE_NAMES[CpuType(cputype)]


@dataclass
class MceCpuInfo:
    """What /proc/cpuinfo tells about the processor."""

    vendor: str = ""
    family: int = 0
    model: int = 0
    mhz: float = 0.0
    processor_flags: str = ""
    cputype: CpuType = CpuType.GENERIC
    mc_error_support: bool = False


def select_intel_cputype(info: MceCpuInfo) -> CpuType:
    """Pick the Intel CPU type from family and model; may set mc_error_support."""
    family, model = info.family, info.model
    if family == 15:
        return CpuType.TULSA if model == 6 else CpuType.P4
    if family == 6:
        if model >= 0x1A and model != 28:
            info.mc_error_support = True
        if model < 0xF:
            return CpuType.P6OLD
        for models, cputype in _INTEL_FAMILY6_MODELS:
            if model in models:
                return cputype
        if model > 0x1A:
            log.info("Family 6 Model %x CPU: only decoding architectural errors", model)
            return CpuType.INTEL
    if family > 6:
        log.info("Family %u Model %x CPU: only decoding architectural errors", family, model)
        return CpuType.INTEL
    log.info("Unknown Intel CPU type Family %x Model %x", family, model)
    return CpuType.P6OLD if family == 6 else CpuType.GENERIC


_VENDOR_RE = re.compile(r"vendor_id\s*:\s*([^\n]{1,63})")
_FAMILY_RE = re.compile(r"cpu\s*family\s*:\s*([+-]?\d+)")
_MODEL_RE = re.compile(r"model\s*:\s*([+-]?\d+)")
_MHZ_RE = re.compile(r"cpu\s*MHz\s*:\s*([+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?)")

_SEEN_VENDOR = 1
_SEEN_FAMILY = 2
_SEEN_MODEL = 4
_SEEN_MHZ = 8
_SEEN_FLAGS = 16
_SEEN_ALL = 0x1F


def parse_cpuinfo(text: str) -> MceCpuInfo:
    """Detect the CPU from /proc/cpuinfo text.

    Raises LookupError when no x86 CPU is described, and ValueError when
    the text is incomplete or the CPU cannot be handled.
    """
    info = MceCpuInfo()
    seen = 0
    for line in text.splitlines(keepends=True):
        if seen == _SEEN_ALL:
            break
        if match := _VENDOR_RE.match(line):
            info.vendor = match.group(1)
            seen |= _SEEN_VENDOR
        elif match := _FAMILY_RE.match(line):
            info.family = int(match.group(1))
            seen |= _SEEN_FAMILY
        elif match := _MODEL_RE.match(line):
            info.model = int(match.group(1))
            seen |= _SEEN_MODEL
        elif match := _MHZ_RE.match(line):
            info.mhz = float(match.group(1))
            seen |= _SEEN_MHZ
        elif line.startswith("flags") and len(line) > 6 and line[6].isspace():
            info.processor_flags = line
            seen |= _SEEN_FLAGS

    if not seen:
        log.info("Can't find a x86 CPU at /proc/cpuinfo. Disabling MCE handler.")
        raise LookupError("no x86 CPU found in cpuinfo")

    if seen != _SEEN_ALL:
        missing = "".join(
            label
            for bit, label in (
                (_SEEN_VENDOR, " [vendor_id]"),
                (_SEEN_FAMILY, " [cpu family]"),
                (_SEEN_MODEL, " [model]"),
                (_SEEN_MHZ, " [cpu MHz]"),
                (_SEEN_FLAGS, " [flags]"),
            )
            if not seen & bit
        )
        log.info("Can't parse /proc/cpuinfo: missing%s", missing)
        raise ValueError(f"cpuinfo is missing{missing}")

    if info.vendor == "AuthenticAMD":
        if info.family == 15:
            info.cputype = CpuType.K8
        if "smca" in info.processor_flags:
            info.cputype = CpuType.AMD_SMCA
        elif info.family > 25:
            log.info("Can't parse MCE for this AMD CPU yet %d", info.family)
            raise ValueError(f"unsupported AMD CPU family {info.family}")
    elif info.vendor == "HygonGenuine":
        if info.family == 24:
            info.cputype = CpuType.DHYANA
    elif info.vendor == "GenuineIntel":
        info.cputype = select_intel_cputype(info)
    else:
        raise ValueError(f"unsupported CPU vendor {info.vendor!r}")
    return info


def append_message(current: str, text: str) -> str:
    """Append text to a message, separated by a space if it is not empty."""
    return f"{current} {text}" if current else text


@dataclass
class MceEvent:
    """One machine check record: raw registers and decoded messages."""

    mcgcap: int = 0
    mcgstatus: int = 0
    status: int = 0
    addr: int = 0
    misc: int = 0
    ip: int = 0
    tsc: int = 0
    walltime: int = 0
    cpu: int = 0
    cpuid: int = 0
    apicid: int = 0
    socketid: int = 0
    cs: int = 0
    bank: int = 0
    cpuvendor: int = 0
    synd: int = 0
    ipid: int = 0
    ppin: int = 0
    microcode: int = 0
    vdata_len: int = 0
    vdata: Optional[bytes] = None

    frutext: str = ""
    timestamp: str = ""
    bank_name: str = ""
    error_msg: str = ""
    mcgstatus_msg: str = ""
    mcistatus_msg: str = ""
    mcastatus_msg: str = ""
    user_action: str = ""
    mc_location: str = ""


_REQUIRED_FIELDS = (
    ("mcgcap", _U64),
    ("mcgstatus", _U64),
    ("status", _U64),
    ("addr", _U64),
    ("misc", _U64),
    ("ip", _U64),
    ("tsc", _U64),
    ("walltime", _U64),
    ("cpu", _U32),
    ("cpuid", _U32),
    ("apicid", _U32),
    ("socketid", _U32),
    ("cs", _U8),
    ("bank", _U8),
    ("cpuvendor", _U8),
    ("synd", _U64),
    ("ipid", _U64),
)


def parse_mce_record(record: TraceRecord) -> MceEvent:
    """Extract the raw registers of an mce_record; raise FieldError if one is missing."""
    event = MceEvent()
    for name, mask in _REQUIRED_FIELDS:
        setattr(event, name, record.value(name) & mask)
    if record.has("ppin"):
        event.ppin = record.value("ppin") & _U64
    if record.has("microcode"):
        event.microcode = record.value("microcode") & _U32
    if record.has("v_data"):
        raw = record.raw("v_data")
        event.vdata = raw.encode("latin-1") if isinstance(raw, str) else bytes(raw)
        event.vdata_len = len(event.vdata)
    return event


def format_mce_event(event: MceEvent, cputype: int, timestamp: Optional[str] = None) -> str:
    """Render the one-line report of a machine check.

    When the event has no error message, the MCA status message stands in.
    """
    ts = event.timestamp if timestamp is None else timestamp
    error_msg = event.error_msg or event.mcastatus_msg
    out = [f"{ts} "]
    out.append(event.bank_name if event.bank_name else f"bank={event.bank:x}")
    out.append(f", status= {event.status:x}")
    if error_msg:
        out.append(f", {error_msg}")
    if event.mcistatus_msg:
        out.append(f", mci={event.mcistatus_msg}")
    if event.mcastatus_msg:
        out.append(f", mca={event.mcastatus_msg}")
    if event.user_action:
        out.append(f" {event.user_action}")
    if event.mc_location:
        out.append(f", {event.mc_location}")
    out.append(f", cpu_type= {cputype_name(cputype)}")
    out.append(f", cpu= {event.cpu}")
    out.append(f", socketid= {event.socketid}")
    if event.ip:
        inexact = "" if event.mcgstatus & MCG_STATUS_EIPV else " (INEXACT)"
        out.append(f", ip= {event.ip:x}{inexact}")
    if event.cs:
        out.append(f", cs= {event.cs:x}")
    if event.status & MCI_STATUS_MISCV:
        out.append(f", misc= {event.misc:x}")
    if event.status & MCI_STATUS_ADDRV:
        out.append(f", addr= {event.addr:x}")
    if event.status & MCI_STATUS_SYNDV:
        out.append(f", synd= {event.synd:x}")
    if event.ipid:
        out.append(f", ipid= {event.ipid:x}")
    if event.mcgstatus_msg:
        out.append(f", {event.mcgstatus_msg}")
    else:
        out.append(f", mcgstatus= {event.mcgstatus:x}")
    if event.mcgcap:
        out.append(f", mcgcap= {event.mcgcap:x}")
    out.append(f", apicid= {event.apicid:x}")
    if event.ppin:
        out.append(f", ppin= {event.ppin:x}")
    if event.microcode:
        out.append(f", microcode= {event.microcode:x}")
    if event.vdata_len and event.frutext:
        out.append(f", FRU Text= {event.frutext}")
    return "".join(out)


def format_mce_offline(event: MceEvent, timestamp: Optional[str] = None) -> str:
    """Render the report of a machine check decoded from given registers."""
    ts = event.timestamp if timestamp is None else timestamp
    out = [f"{ts},"]
    out.append(f" {event.bank_name}," if event.bank_name else f" bank={event.bank:x},")
    if event.mcastatus_msg:
        out.append(f" mca: {event.mcastatus_msg},")
    if event.mcistatus_msg:
        out.append(f" mci: {event.mcistatus_msg},")
    if event.mc_location:
        out.append(f" Locn: {event.mc_location},")
    if event.error_msg:
        out.append(f" Error Msg: {event.error_msg}\n")
    return "".join(out)