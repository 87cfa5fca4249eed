"""Decoding of devlink health reports and network transmit timeouts."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Union

from .events import RasContext, TraceRecord, format_timestamp

log = logging.getLogger(__name__)


def _text(raw: Union[bytes, str]) -> str:
    if isinstance(raw, str):
        return raw.split("\0", 1)[0]
    return bytes(raw).split(b"\0", 1)[0].decode("utf-8", errors="replace")


def _int32(value: int) -> int:
    value &= 0xFFFFFFFF
    return value - (1 << 32) if value & 0x80000000 else value


@dataclass
class DevlinkEvent:
    """A decoded devlink health report."""

    timestamp: str
    bus_name: str
    dev_name: str
    driver_name: str
    reporter_name: str
    msg: str

    @property
    def text(self) -> str:
        return f"{self.timestamp} "


def handle_net_xmit_timeout(context: RasContext, record: TraceRecord) -> DevlinkEvent:
    """Decode a net_dev_xmit_timeout record; raise FieldError if a field is missing."""
    timestamp = format_timestamp(context.event_time(record))
    dev_name = _text(record.raw("name"))
    driver_name = _text(record.raw("driver"))
    queue = _int32(record.value("queue_index"))
    event = DevlinkEvent(
        timestamp=timestamp,
        bus_name="",
        dev_name=dev_name,
        driver_name=driver_name,
        reporter_name="",
        msg=f"TX timeout on queue: {queue}\n",
    )
    log.info("%s", event.text)
    return event


def handle_devlink_event(context: RasContext, record: TraceRecord) -> DevlinkEvent:
    """Decode a devlink_health_report record; raise FieldError if a field is missing."""
    timestamp = format_timestamp(context.event_time(record))
    event = DevlinkEvent(
        timestamp=timestamp,
        bus_name=_text(record.raw("bus_name")),
        dev_name=_text(record.raw("dev_name")),
        driver_name=_text(record.raw("driver_name")),
        reporter_name=_text(record.raw("reporter_name")),
        msg=_text(record.raw("msg")),
    )
    log.info("%s", event.text)
    return event