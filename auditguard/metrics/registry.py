from __future__ import annotations
from prometheus_client import CollectorRegistry, Counter, Gauge

# Dedicated registry so /metrics only exports pipeline series.
METRICS_REGISTRY = CollectorRegistry()

LEDGER_APPENDS = Counter(
    "ledger_appends_total",
    "Events written to the integrity ledger",
    ["category"],
    registry=METRICS_REGISTRY,
)
LEDGER_WRITE_FAILURES = Counter(
    "ledger_write_failures_total",
    "Ledger appends rejected or failed before the chain head advanced",
    registry=METRICS_REGISTRY,
)
BREACH_DETECTIONS = Counter(
    "breach_detections_total",
    "Breach rules tripped",
    ["rule", "severity"],
    registry=METRICS_REGISTRY,
)
ALERTS_EMITTED = Counter(
    "alerts_emitted_total",
    "Alerts confirmed by a sink",
    ["sink"],
    registry=METRICS_REGISTRY,
)
ALERTS_SUPPRESSED = Counter(
    "alerts_suppressed_total",
    "Alerts dropped by the admission filters",
    ["reason"],
    registry=METRICS_REGISTRY,
)
SIEM_EXPORTED = Counter(
    "siem_events_exported_total",
    "SIEM events accepted by the endpoint",
    ["format"],
    registry=METRICS_REGISTRY,
)
SIEM_FAILED = Counter(
    "siem_events_failed_total",
    "SIEM events that exhausted their retries",
    ["format"],
    registry=METRICS_REGISTRY,
)
SIEM_EVICTED = Counter(
    "siem_events_evicted_total",
    "Queued SIEM events evicted by queue overflow",
    registry=METRICS_REGISTRY,
)
SIEM_QUEUE_DEPTH = Gauge(
    "siem_queue_depth",
    "Events waiting in the SIEM export queue",
    registry=METRICS_REGISTRY,
)

LEDGER_WRITE_FAILURES.inc(0)
SIEM_EVICTED.inc(0)
SIEM_QUEUE_DEPTH.set(0)


def get_metrics() -> dict[str, object]:
    return {
        "registry": METRICS_REGISTRY,
        "ledger_appends": LEDGER_APPENDS,
        "ledger_write_failures": LEDGER_WRITE_FAILURES,
        "detections": BREACH_DETECTIONS,
        "alerts_emitted": ALERTS_EMITTED,
        "alerts_suppressed": ALERTS_SUPPRESSED,
        "siem_exported": SIEM_EXPORTED,
        "siem_failed": SIEM_FAILED,
        "siem_evicted": SIEM_EVICTED,
        "siem_queue_depth": SIEM_QUEUE_DEPTH,
    }
