from .base import Alert, AlertConfig, AlertSink, AlertManager, SEVERITY_LEVELS
from .sinks import ConsoleSink, FileSink, WebhookSink
from .payloads import build_webhook_payload, detect_style

__all__ = [
    "Alert",
    "AlertConfig",
    "AlertSink",
    "AlertManager",
    "SEVERITY_LEVELS",
    "ConsoleSink",
    "FileSink",
    "WebhookSink",
    "build_webhook_payload",
    "detect_style",
]
