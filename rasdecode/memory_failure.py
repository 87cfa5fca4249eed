"""Decoding of kernel memory_failure_event trace events."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from .events import RasContext, TraceRecord, format_timestamp

log = logging.getLogger(__name__)

_PAGE_TYPES = (
    "reserved kernel page",
    "high-order kernel page",
    "kernel slab page",
    "different compound page after locking",
    "huge page",
    "free huge page",
    "unmapping failed page",
    "dirty swapcache page",
    "clean swapcache page",
    "dirty mlocked LRU page",
    "clean mlocked LRU page",
    "dirty unevictable LRU page",
    "clean unevictable LRU page",
    "dirty LRU page",
    "clean LRU page",
    "already truncated LRU page",
    "free buddy page",
    "dax page",
    "unsplit thp",
    "unknown page",
)

_ACTION_RESULTS = ("Ignored", "Failed", "Delayed", "Recovered")


def page_type_name(page_type: int) -> str:
    """Describe a memory failure page type."""
    if 0 <= page_type < len(_PAGE_TYPES):
        return _PAGE_TYPES[page_type]
    return "unknown page"


def action_result_name(result: int) -> str:
    """Describe the outcome of memory failure handling."""
    if 0 <= result < len(_ACTION_RESULTS):
        return _ACTION_RESULTS[result]
    return "unknown"


@dataclass
class MemoryFailureEvent:
    """A decoded memory failure event."""

    timestamp: str
    pfn: str
    page_type: str
    action_result: str

    @property
    def text(self) -> str:
        return (
            f"{self.timestamp} pfn={self.pfn} page_type={self.page_type} "
            f"action_result={self.action_result} "
        )


def handle_memory_failure_event(context: RasContext, record: TraceRecord) -> MemoryFailureEvent:
    """Decode a memory_failure_event record; raise FieldError if a field is missing."""
    timestamp = format_timestamp(context.event_time(record))
    event = MemoryFailureEvent(
        timestamp=timestamp,
        pfn=f"0x{record.value('pfn'):x}",
        page_type=page_type_name(record.value("type")),
        action_result=action_result_name(record.value("result")),
    )
    log.info("%s", event.text)
    return event