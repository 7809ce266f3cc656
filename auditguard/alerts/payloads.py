"""
Webhook payload shapes for the common chat services.

Service detection is a hostname heuristic (slack.com, office.com,
microsoft.com). Proxies or custom domains in front of those services will
get the generic envelope unless the style is forced via
ALERT_WEBHOOK_STYLE.
"""
from __future__ import annotations
from datetime import datetime
from typing import Any, Dict
from urllib.parse import urlparse

from auditguard.alerts.base import Alert

SEVERITY_COLORS: Dict[str, str] = {
    "critical": "#FF0000",
    "error": "#FF6600",
    "warning": "#FFCC00",
    "info": "#0066FF",
}

SEVERITY_ICONS: Dict[str, str] = {
    "critical": "\U0001F6A8",
    "error": "❌",
    "warning": "⚠️",
    "info": "ℹ️",
}


def detect_style(url: str) -> str:
    host = (urlparse(url).hostname or "").lower()
    if "slack.com" in host:
        return "slack"
    if "office.com" in host or "microsoft.com" in host:
        return "teams"
    return "generic"


def slack_payload(alert: Alert) -> Dict[str, Any]:
    details = alert.details or {}
    return {
        "text": f"{SEVERITY_ICONS.get(alert.severity, '')} *{alert.title}*",
        "attachments": [
            {
                "color": SEVERITY_COLORS.get(alert.severity, "#808080"),
                "text": alert.message,
                "fields": [{"title": k, "value": str(v), "short": True} for k, v in details.items()],
                "footer": f"Source: {alert.source}",
                "ts": int(datetime.fromisoformat(alert.timestamp).timestamp()),
            }
        ],
    }


def teams_payload(alert: Alert) -> Dict[str, Any]:
    details = alert.details or {}
    return {
        "@type": "MessageCard",
        "@context": "http://schema.org/extensions",
        "themeColor": SEVERITY_COLORS.get(alert.severity, "#808080").lstrip("#"),
        "summary": alert.title,
        "sections": [
            {
                "activityTitle": f"{SEVERITY_ICONS.get(alert.severity, '')} {alert.title}",
                "activitySubtitle": alert.source,
                "facts": [{"name": k, "value": str(v)} for k, v in details.items()],
                "text": alert.message,
            }
        ],
    }


def generic_payload(alert: Alert) -> Dict[str, Any]:
    return {
        "alert_id": alert.id,
        "severity": alert.severity,
        "title": alert.title,
        "message": alert.message,
        "source": alert.source,
        "timestamp": alert.timestamp,
        "details": alert.details,
    }


def build_webhook_payload(alert: Alert, url: str, style: str = "auto") -> Dict[str, Any]:
    if style == "auto":
        style = detect_style(url)
    if style == "slack":
        return slack_payload(alert)
    if style == "teams":
        return teams_payload(alert)
    return generic_payload(alert)
