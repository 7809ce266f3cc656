from __future__ import annotations
import asyncio
import logging
import socket
from typing import Optional, Protocol

import httpx

from auditguard.siem.models import SIEMConfig

logger = logging.getLogger(__name__)


class Transport(Protocol):
    async def send(self, payload: str) -> bool: ...


class HttpTransport:
    """HTTPS POST. 2xx is success; timeouts and transport errors are failures, never retried here."""

    def __init__(
        self,
        endpoint: Optional[str],
        *,
        api_key: Optional[str] = None,
        auth_scheme: str = "Bearer",
        content_type: str = "application/json",
        timeout_sec: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.endpoint = endpoint
        self.headers = {"Content-Type": content_type}
        if api_key:
            self.headers["Authorization"] = f"{auth_scheme} {api_key}"
        self.timeout = timeout_sec
        self._transport = transport

    async def send(self, payload: str) -> bool:
        if not self.endpoint:
            logger.debug("no SIEM endpoint configured")
            return False
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                resp = await client.post(self.endpoint, content=payload.encode("utf-8"), headers=self.headers)
        except httpx.HTTPError as e:
            logger.warning("SIEM POST to %s failed: %s", self.endpoint, e)
            return False
        if not resp.is_success:
            logger.warning("SIEM endpoint %s answered %s", self.endpoint, resp.status_code)
            return False
        return True


class UdpTransport:
    """Single syslog datagram per event."""

    def __init__(self, host: Optional[str], port: int = 514, timeout_sec: float = 5.0):
        self.host = host
        self.port = port
        self.timeout = timeout_sec

    def _send_blocking(self, data: bytes) -> None:
        with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as sock:
            sock.settimeout(self.timeout)
            sock.sendto(data, (self.host, self.port))

    async def send(self, payload: str) -> bool:
        if not self.host:
            logger.debug("no syslog host configured")
            return False
        try:
            await asyncio.wait_for(
                asyncio.to_thread(self._send_blocking, payload.encode("utf-8")),
                timeout=self.timeout,
            )
        except (OSError, asyncio.TimeoutError) as e:
            logger.warning("syslog datagram to %s:%s failed: %s", self.host, self.port, e)
            return False
        return True


def build_transport(cfg: SIEMConfig, http_transport: Optional[httpx.AsyncBaseTransport] = None) -> Transport:
    if cfg.format == "syslog":
        return UdpTransport(cfg.syslog_host, cfg.syslog_port, timeout_sec=min(cfg.timeout_sec, 5.0))
    return HttpTransport(
        cfg.endpoint,
        api_key=cfg.api_key,
        auth_scheme="Splunk" if cfg.format == "splunk_hec" else "Bearer",
        content_type="application/json" if cfg.format in ("json", "splunk_hec") else "text/plain",
        timeout_sec=cfg.timeout_sec,
        transport=http_transport,
    )
