from __future__ import annotations
from dataclasses import dataclass, field, asdict, replace
from collections import deque
from datetime import datetime, timezone
from typing import Any, Callable, Deque, Dict, List, Optional, Protocol, Set
import asyncio
import logging
import threading
import time
import uuid

from auditguard.metrics import ALERTS_EMITTED, ALERTS_SUPPRESSED

logger = logging.getLogger(__name__)

SEVERITY_LEVELS: Dict[str, int] = {
    "info": 0,
    "warning": 1,
    "error": 2,
    "critical": 3,
}

RATE_LIMIT_KEY = "rate_limit_warning"
HOUR_SECONDS = 3600.0


@dataclass
class Alert:
    id: str
    timestamp: str
    severity: str
    title: str
    message: str
    source: str
    details: Optional[Dict[str, Any]] = None
    sent_to: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class AlertConfig:
    enabled: bool = True
    min_severity: str = "warning"
    cooldown_seconds: int = 300
    max_alerts_per_hour: int = 60
    keep_recent: int = 200


class AlertSink(Protocol):
    name: str

    async def send(self, alert: Alert) -> bool: ...


class AlertManager:
    """
    Admission pipeline, each stage short-circuits to None:
      enabled -> minimum severity -> cooldown on severity:title:source
      -> rolling 60 minute cap
    Admission is one atomic check-and-record; delivery fans out to all sinks
    concurrently and `sent_to` only lists sinks that confirmed.
    """

    def __init__(
        self,
        config: AlertConfig | None = None,
        sinks: List[AlertSink] | None = None,
        clock: Callable[[], float] = time.time,
    ):
        self.config = config or AlertConfig()
        self.sinks: List[AlertSink] = list(sinks or [])
        self._clock = clock
        self._lock = threading.Lock()
        self._last: Dict[str, float] = {}
        self._hourly: Deque[float] = deque()
        self._recent: Deque[Dict[str, Any]] = deque(maxlen=max(1, int(self.config.keep_recent)))
        self._pending: Set[asyncio.Task] = set()

    def register(self, sink: AlertSink) -> None:
        self.sinks.append(sink)

    @staticmethod
    def dedup_key(severity: str, title: str, source: str) -> str:
        return f"{severity}:{title}:{source}"

    def _prune_hourly(self, now: float) -> None:
        cutoff = now - HOUR_SECONDS
        while self._hourly and self._hourly[0] <= cutoff:
            self._hourly.popleft()

    def _suppress(self, reason: str, title: str) -> None:
        ALERTS_SUPPRESSED.labels(reason=reason).inc()
        logger.debug("alert %r suppressed (%s)", title, reason)

    def admit(
        self,
        severity: str,
        title: str,
        message: str,
        source: str,
        details: Optional[Dict[str, Any]] = None,
    ) -> Optional[Alert]:
        if not self.config.enabled:
            self._suppress("disabled", title)
            return None
        level = SEVERITY_LEVELS.get(severity)
        if level is None:
            logger.warning("unknown alert severity %r", severity)
            self._suppress("severity", title)
            return None
        if level < SEVERITY_LEVELS.get(self.config.min_severity, 0):
            self._suppress("severity", title)
            return None

        key = self.dedup_key(severity, title, source)
        with self._lock:
            now = self._clock()
            last = self._last.get(key)
            if last is not None and (now - last) < self.config.cooldown_seconds:
                self._suppress("cooldown", title)
                return None

            self._prune_hourly(now)
            if len(self._hourly) >= self.config.max_alerts_per_hour:
                notice = self._last.get(RATE_LIMIT_KEY)
                if notice is None or (now - notice) >= HOUR_SECONDS:
                    logger.warning(
                        "hourly alert limit (%d) exceeded, suppressing alerts",
                        self.config.max_alerts_per_hour,
                    )
                    self._last[RATE_LIMIT_KEY] = now
                self._suppress("rate_limit", title)
                return None

            self._last[key] = now
            self._hourly.append(now)

        return Alert(
            id=str(uuid.uuid4()),
            timestamp=datetime.fromtimestamp(now, tz=timezone.utc).isoformat(),
            severity=severity,
            title=title,
            message=message,
            source=source,
            details=details,
        )

    async def _send_one(self, sink: AlertSink, alert: Alert) -> bool:
        try:
            ok = bool(await sink.send(alert))
        except Exception as e:
            logger.warning("alert sink %s failed: %s", getattr(sink, "name", sink), e)
            return False
        if ok:
            ALERTS_EMITTED.labels(sink=sink.name).inc()
        return ok

    async def deliver(self, alert: Alert) -> Alert:
        results = await asyncio.gather(*(self._send_one(s, alert) for s in self.sinks), return_exceptions=True)
        alert.sent_to = [s.name for s, ok in zip(self.sinks, results) if ok is True]
        self._recent.append(alert.to_dict())
        return alert

    async def send_alert(
        self,
        severity: str,
        title: str,
        message: str,
        source: str,
        details: Optional[Dict[str, Any]] = None,
    ) -> Optional[Alert]:
        alert = self.admit(severity, title, message, source, details)
        if alert is None:
            return None
        return await self.deliver(alert)

    def dispatch_nowait(
        self,
        severity: str,
        title: str,
        message: str,
        source: str,
        details: Optional[Dict[str, Any]] = None,
    ) -> Optional[Alert]:
        """Admit now, deliver in the background. Must be called from a running loop."""
        alert = self.admit(severity, title, message, source, details)
        if alert is None:
            return None
        task = asyncio.get_running_loop().create_task(self.deliver(alert))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return alert

    async def drain(self) -> None:
        """Wait for background deliveries started by dispatch_nowait()."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    async def critical(self, title: str, message: str, source: str, details=None) -> Optional[Alert]:
        return await self.send_alert("critical", title, message, source, details)

    async def error(self, title: str, message: str, source: str, details=None) -> Optional[Alert]:
        return await self.send_alert("error", title, message, source, details)

    async def warning(self, title: str, message: str, source: str, details=None) -> Optional[Alert]:
        return await self.send_alert("warning", title, message, source, details)

    async def info(self, title: str, message: str, source: str, details=None) -> Optional[Alert]:
        return await self.send_alert("info", title, message, source, details)

    def recent(self, limit: int | None = None) -> List[Dict[str, Any]]:
        if not limit or limit <= 0:
            return list(self._recent)
        return list(self._recent)[-int(limit):]

    def get_stats(self) -> Dict[str, Any]:
        with self._lock:
            self._prune_hourly(self._clock())
            this_hour = len(self._hourly)
        return {
            "enabled": self.config.enabled,
            "min_severity": self.config.min_severity,
            "cooldown_seconds": self.config.cooldown_seconds,
            "max_alerts_per_hour": self.config.max_alerts_per_hour,
            "alerts_this_hour": this_hour,
            "channels": [s.name for s in self.sinks],
        }

    def update_config(self, **changes: Any) -> None:
        self.config = replace(self.config, **changes)
