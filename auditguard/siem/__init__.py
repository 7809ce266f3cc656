from .models import SIEMEvent, SIEMConfig, FlushResult, CEF_SEVERITY, SYSLOG_SEVERITY, SIEM_FORMATS
from .formats import encode, format_cef, format_leef, format_syslog, format_splunk_hec, format_json
from .transports import HttpTransport, UdpTransport, build_transport
from .failure_store import FailureStore
from .exporter import SIEMExporter

__all__ = [
    "SIEMEvent",
    "SIEMConfig",
    "FlushResult",
    "CEF_SEVERITY",
    "SYSLOG_SEVERITY",
    "SIEM_FORMATS",
    "encode",
    "format_cef",
    "format_leef",
    "format_syslog",
    "format_splunk_hec",
    "format_json",
    "HttpTransport",
    "UdpTransport",
    "build_transport",
    "FailureStore",
    "SIEMExporter",
]
