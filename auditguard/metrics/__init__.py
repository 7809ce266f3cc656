"""
Re-export layer so callers can write `from auditguard.metrics import ...`;
the series themselves live in auditguard.metrics.registry.
"""
from .registry import (
    METRICS_REGISTRY,
    LEDGER_APPENDS,
    LEDGER_WRITE_FAILURES,
    BREACH_DETECTIONS,
    ALERTS_EMITTED,
    ALERTS_SUPPRESSED,
    SIEM_EXPORTED,
    SIEM_FAILED,
    SIEM_EVICTED,
    SIEM_QUEUE_DEPTH,
    get_metrics,
)

__all__ = [
    "METRICS_REGISTRY",
    "LEDGER_APPENDS",
    "LEDGER_WRITE_FAILURES",
    "BREACH_DETECTIONS",
    "ALERTS_EMITTED",
    "ALERTS_SUPPRESSED",
    "SIEM_EXPORTED",
    "SIEM_FAILED",
    "SIEM_EVICTED",
    "SIEM_QUEUE_DEPTH",
    "get_metrics",
]
