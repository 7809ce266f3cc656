from __future__ import annotations
from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from typing import Any, Dict, List, NamedTuple, Optional

# Fixed lookup tables; each wire format has its own scale.
SEVERITY_LEVELS: Dict[str, int] = {"info": 0, "warning": 1, "error": 2, "critical": 3}
CEF_SEVERITY: Dict[str, int] = {"info": 3, "warning": 5, "error": 7, "critical": 10}
SYSLOG_SEVERITY: Dict[str, int] = {"info": 6, "warning": 4, "error": 3, "critical": 2}
SYSLOG_FACILITY_LOCAL0 = 16

SIEM_FORMATS: List[str] = ["json", "cef", "leef", "syslog", "splunk_hec"]


@dataclass
class SIEMEvent:
    event_type: str
    event_name: str
    severity: str
    source: str
    message: str
    details: Dict[str, Any] = field(default_factory=dict)
    timestamp: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SIEMEvent":
        return cls(
            timestamp=data["timestamp"],
            event_type=data["event_type"],
            event_name=data["event_name"],
            severity=data["severity"],
            source=data["source"],
            message=data["message"],
            details=data.get("details") or {},
        )

    def epoch_seconds(self) -> float:
        ts = datetime.fromisoformat(self.timestamp.replace("Z", "+00:00"))
        if ts.tzinfo is None:
            ts = ts.replace(tzinfo=timezone.utc)
        return ts.timestamp()


@dataclass
class SIEMConfig:
    enabled: bool = False
    format: str = "cef"
    endpoint: Optional[str] = None
    syslog_host: Optional[str] = None
    syslog_port: int = 514
    api_key: Optional[str] = None
    min_severity: str = "warning"
    event_types: List[str] = field(default_factory=list)
    batch_size: int = 100
    flush_interval_ms: int = 5000
    retry_attempts: int = 3
    retry_backoff_ms: int = 1000
    queue_max_size: int = 10000
    timeout_sec: float = 10.0
    vendor: str = "AuditGuard"
    product: str = "Security Pipeline"
    product_version: str = "0.1.0"
    app_name: str = "auditguard"


class FlushResult(NamedTuple):
    sent: int
    failed: int

    def to_dict(self) -> Dict[str, int]:
        return {"sent": self.sent, "failed": self.failed}
