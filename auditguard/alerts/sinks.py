import asyncio
import json
import logging
import os
from typing import Dict, Optional

import httpx

from auditguard.alerts.base import Alert
from auditguard.alerts.payloads import SEVERITY_ICONS, build_webhook_payload

logger = logging.getLogger(__name__)


class ConsoleSink:
    name = "console"

    async def send(self, alert: Alert) -> bool:
        print(f"[ALERT] {SEVERITY_ICONS.get(alert.severity, '')} [{alert.severity.upper()}] {alert.title}")
        print(f"   {alert.message}")
        if alert.details:
            print(f"   Details: {json.dumps(alert.details, ensure_ascii=False, default=str)}")
        return True


class FileSink:
    """
    Appends one line per alert: JSON (default) or a single text line.
    Writing is offloaded to a thread so the event loop never blocks on disk.
    """
    name = "file"

    def __init__(self, path: str, fmt: str = "json"):
        self.path = path
        self.fmt = fmt
        os.makedirs(os.path.dirname(os.path.abspath(self.path)), exist_ok=True)

    def _line(self, alert: Alert) -> str:
        if self.fmt == "json":
            return json.dumps(alert.to_dict(), ensure_ascii=False, default=str)
        return f"{alert.timestamp} [{alert.severity.upper()}] {alert.title}: {alert.message}"

    def _write(self, line: str) -> None:
        with open(self.path, "a", encoding="utf-8") as f:
            f.write(line + "\n")

    async def send(self, alert: Alert) -> bool:
        try:
            await asyncio.to_thread(self._write, self._line(alert))
        except OSError as e:
            logger.warning("alert file %s not writable: %s", self.path, e)
            return False
        return True


class WebhookSink:
    """
    JSON POST to a webhook. Anything other than a 2xx answer, a timeout or a
    transport error counts as a failed channel.
    """
    name = "webhook"

    def __init__(
        self,
        url: str,
        headers: Optional[Dict[str, str]] = None,
        timeout_sec: float = 10.0,
        style: str = "auto",
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.url = url
        self.headers = {"Content-Type": "application/json", **(headers or {})}
        self.timeout = timeout_sec
        self.style = style
        self._transport = transport

    async def send(self, alert: Alert) -> bool:
        body = build_webhook_payload(alert, self.url, self.style)
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                resp = await client.post(self.url, headers=self.headers, json=body)
        except httpx.HTTPError as e:
            logger.warning("webhook delivery to %s failed: %s", self.url, e)
            return False
        if not resp.is_success:
            logger.warning("webhook %s answered %s", self.url, resp.status_code)
            return False
        return True
