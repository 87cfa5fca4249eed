# rasdecode

Decoders for the Reliability, Availability and Serviceability (RAS) events
that the Linux kernel publishes through its tracing interface. Give a handler
the fields of one trace record and it returns a dataclass describing the
event, with the human-readable line an operator would read in a log in its
`text` member. Each handler also logs that line at INFO level through the
standard `logging` module.

## Modules

- `rasdecode.events` – shared pieces: `TraceRecord` (the named fields of one
  trace record, read with `value`, `raw` and `has`), `RasContext` (clock
  settings, with `event_time`), `EventKind`, `GhesSeverity`, `McErrorType`,
  `AerErrorType`, `FieldError` and `format_timestamp`.
- `rasdecode.mc` – memory-controller (EDAC) events: `handle_mc_event`, which
  returns an `McEvent` or, when a field is missing, logs the error and returns
  `None`; and `trigger_environment`, which builds the environment variables
  (`PATH`, `TIMESTAMP`, `COUNT`, `TYPE`, ...) for an external trigger.
- `rasdecode.mce` – x86 machine-check records: `parse_cpuinfo`,
  `select_intel_cputype`, `cputype_name`, `CpuType`, `MceCpuInfo`,
  `parse_mce_record`, `MceEvent`, `append_message`, `format_mce_event` and
  `format_mce_offline`.
- `rasdecode.cxl` – CXL poison, AER uncorrectable/correctable and overflow
  events, plus the helpers `convert_timestamp`, `uuid_be`, `decode_flags`,
  `type_name` and `log_type_name`.
- `rasdecode.cxl_records` – CXL event records with the common header
  (`parse_common_header`): generic, general-media, DRAM and memory-module
  events.
- `rasdecode.extlog` – extended error-log memory events
  (`handle_extlog_mem_event`), the `CperMemErr` section and the helpers
  `err_type_name`, `err_severity_name`, `err_mask` and `uuid_le`.
- `rasdecode.diskerror` – block-layer request errors
  (`handle_diskerror_event`, `blk_error_name`).
- `rasdecode.devlink` – devlink health reports and network transmit
  timeouts (`handle_devlink_event`, `handle_net_xmit_timeout`).
- `rasdecode.memory_failure` – memory-failure events
  (`handle_memory_failure_event`, `page_type_name`, `action_result_name`).

## Example

```python
from rasdecode.events import RasContext, TraceRecord
from rasdecode.memory_failure import handle_memory_failure_event

record = TraceRecord(ts=0, fields={"pfn": 0x1234, "type": 4, "result": 3})
event = handle_memory_failure_event(RasContext(), record)
print(event.text)
print(event.page_type, event.action_result)  # huge page Recovered
```

Apart from `handle_mc_event`, a handler given a record with a missing field
raises `FieldError`, naming the field that could not be read. Raw fields
that are too short for their fixed layout raise `ValueError`.

## What it does not do

rasdecode only decodes records that are handed to it. It does not open the
kernel tracing files, enable events or listen for them; it has no command to
run as a daemon; it does not store events in a database or report them
elsewhere; it does not start trigger programs (it only builds their
environment); and it does not decode ARM processor error records or take
faulty CPUs offline.

## Running the tests

```
pip install -e ".[test]"
pytest
```