"""
Wire encoders for SIEM events. Pure functions: event in, string out.

  CEF     CEF:0|Vendor|Product|Version|SignatureID|Name|Severity|ext
  LEEF    LEEF:2.0|Vendor|Product|Version|EventID|attr<TAB>attr...
  syslog  RFC 5424, facility local0
  HEC     Splunk HTTP Event Collector envelope
  JSON    the event as-is
"""
from __future__ import annotations
import json
import os
import socket
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

from auditguard.siem.models import (
    CEF_SEVERITY,
    SYSLOG_FACILITY_LOCAL0,
    SYSLOG_SEVERITY,
    SIEMConfig,
    SIEMEvent,
)


def escape_cef_header(value: str) -> str:
    return value.replace("\\", "\\\\").replace("|", "\\|")


def escape_cef_extension(value: str) -> str:
    return (
        value.replace("\\", "\\\\")
        .replace("=", "\\=")
        .replace("\n", "\\n")
        .replace("\r", "\\r")
    )


def escape_leef_value(value: str) -> str:
    return value.replace("\t", " ").replace("\n", " ").replace("\r", " ")


def format_cef(event: SIEMEvent, cfg: SIEMConfig) -> str:
    header = "|".join(
        [
            "CEF:0",
            escape_cef_header(cfg.vendor),
            escape_cef_header(cfg.product),
            escape_cef_header(cfg.product_version),
            escape_cef_header(event.event_type),
            escape_cef_header(event.event_name),
            str(CEF_SEVERITY.get(event.severity, 5)),
        ]
    )
    ext = [
        f"msg={escape_cef_extension(event.message)}",
        f"src={escape_cef_extension(event.source)}",
        f"rt={int(event.epoch_seconds() * 1000)}",
    ]
    for key, value in (event.details or {}).items():
        ext.append(f"{key}={escape_cef_extension(str(value))}")
    return f"{header} {' '.join(ext)}"


def format_leef(event: SIEMEvent, cfg: SIEMConfig) -> str:
    header = "|".join(["LEEF:2.0", cfg.vendor, cfg.product, cfg.product_version, event.event_type])
    attrs = [
        f"cat={escape_leef_value(event.event_name)}",
        f"sev={SYSLOG_SEVERITY.get(event.severity, 4)}",
        f"msg={escape_leef_value(event.message)}",
        f"src={escape_leef_value(event.source)}",
        f"devTime={event.timestamp}",
    ]
    for key, value in (event.details or {}).items():
        attrs.append(f"{key}={escape_leef_value(str(value))}")
    return f"{header}|" + "\t".join(attrs)


def syslog_priority(severity: str) -> int:
    return SYSLOG_FACILITY_LOCAL0 * 8 + SYSLOG_SEVERITY.get(severity, 4)


def format_syslog(event: SIEMEvent, cfg: SIEMConfig, hostname: Optional[str] = None,
                  pid: Optional[int] = None) -> str:
    ts = datetime.fromtimestamp(event.epoch_seconds(), tz=timezone.utc).isoformat(timespec="milliseconds")
    host = hostname or socket.gethostname() or "-"
    proc = pid if pid is not None else os.getpid()
    msg_id = event.event_type or "-"
    return f"<{syslog_priority(event.severity)}>1 {ts} {host} {cfg.app_name} {proc} {msg_id} - {event.message}"


def splunk_hec_payload(event: SIEMEvent, cfg: SIEMConfig, hostname: Optional[str] = None) -> Dict[str, Any]:
    return {
        "time": event.epoch_seconds(),
        "host": hostname or socket.gethostname(),
        "source": event.source,
        "sourcetype": f"{cfg.app_name}:security",
        "event": {
            "event_type": event.event_type,
            "event_name": event.event_name,
            "severity": event.severity,
            "message": event.message,
            **(event.details or {}),
        },
    }


def format_splunk_hec(event: SIEMEvent, cfg: SIEMConfig) -> str:
    return json.dumps(splunk_hec_payload(event, cfg), ensure_ascii=False, default=str)


def format_json(event: SIEMEvent, cfg: SIEMConfig) -> str:
    return json.dumps(event.to_dict(), ensure_ascii=False, default=str)


ENCODERS: Dict[str, Callable[[SIEMEvent, SIEMConfig], str]] = {
    "cef": format_cef,
    "leef": format_leef,
    "syslog": format_syslog,
    "splunk_hec": format_splunk_hec,
    "json": format_json,
}


def encode(event: SIEMEvent, cfg: SIEMConfig) -> str:
    return ENCODERS.get(cfg.format, format_json)(event, cfg)
