from __future__ import annotations
import asyncio
import logging
from collections import deque
from typing import Any, Awaitable, Callable, Deque, Dict, Optional, Set

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from auditguard.core.errors import DeliveryError
from auditguard.metrics import SIEM_EVICTED, SIEM_EXPORTED, SIEM_FAILED, SIEM_QUEUE_DEPTH
from auditguard.siem.failure_store import FailureStore
from auditguard.siem.formats import encode
from auditguard.siem.models import SEVERITY_LEVELS, FlushResult, SIEMConfig, SIEMEvent
from auditguard.siem.transports import Transport, build_transport

logger = logging.getLogger(__name__)

FLUSH_JOB_ID = "siem-flush"


class SIEMExporter:
    """
    Bounded in-memory queue drained in batches to one SIEM endpoint.

    Admission: enabled -> minimum severity -> event-type allowlist.
    At capacity the oldest queued event is evicted. A full batch is flushed
    in the background so callers never wait on the endpoint. Only one flush
    runs at a time; a flush requested while another is in progress returns
    (0, 0).
    Events that exhaust their retries go to the failure store and are picked
    up again by retry_failed().
    """

    def __init__(
        self,
        config: SIEMConfig | None = None,
        transport: Transport | None = None,
        failure_store: FailureStore | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.config = config or SIEMConfig()
        self.transport = transport or build_transport(self.config)
        self.failure_store = failure_store
        self._sleep = sleep
        self._queue: Deque[SIEMEvent] = deque()
        self._flushing = False
        self._retrying = False
        self._pending: Set[asyncio.Task] = set()
        self._scheduler: Optional[AsyncIOScheduler] = None
        self.evicted = 0
        self.exported = 0
        self.failed = 0

    @property
    def batch_size(self) -> int:
        return max(1, int(self.config.batch_size))

    @property
    def queue_size(self) -> int:
        return len(self._queue)

    def _admits(self, event: SIEMEvent) -> bool:
        if not self.config.enabled:
            return False
        level = SEVERITY_LEVELS.get(event.severity)
        if level is None or level < SEVERITY_LEVELS.get(self.config.min_severity, 0):
            return False
        if self.config.event_types and event.event_type not in self.config.event_types:
            return False
        return True

    async def queue_event(self, event: SIEMEvent) -> bool:
        if not self._admits(event):
            return False
        cap = max(1, int(self.config.queue_max_size))
        while len(self._queue) >= cap:
            dropped = self._queue.popleft()
            self.evicted += 1
            SIEM_EVICTED.inc()
            logger.warning("SIEM queue full (%d), evicted %s", cap, dropped.event_type)
        self._queue.append(event)
        SIEM_QUEUE_DEPTH.set(len(self._queue))
        if len(self._queue) >= self.batch_size:
            self._flush_soon()
        return True

    def _flush_soon(self) -> None:
        if self._pending:
            return
        task = asyncio.get_running_loop().create_task(self._flush_backlog())
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _flush_backlog(self) -> None:
        while len(self._queue) >= self.batch_size and not self._flushing:
            await self.flush()

    async def drain(self) -> None:
        """Wait for batch flushes started by queue_event()."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    async def _attempt(self, payload: str) -> None:
        if not await self.transport.send(payload):
            raise DeliveryError(f"{self.config.format} payload rejected")

    async def export_event(self, event: SIEMEvent) -> bool:
        """Encode and send one event, retrying with linear backoff."""
        payload = encode(event, self.config)
        attempts = max(1, int(self.config.retry_attempts))
        for attempt in range(1, attempts + 1):
            try:
                await self._attempt(payload)
            except DeliveryError as e:
                logger.debug("SIEM export attempt %d/%d failed: %s", attempt, attempts, e)
                if attempt < attempts:
                    await self._sleep(self.config.retry_backoff_ms * attempt / 1000.0)
                continue
            SIEM_EXPORTED.labels(format=self.config.format).inc()
            return True
        SIEM_FAILED.labels(format=self.config.format).inc()
        return False

    async def flush(self) -> FlushResult:
        if self._flushing or not self._queue:
            return FlushResult(0, 0)
        self._flushing = True
        try:
            batch = []
            while self._queue and len(batch) < self.batch_size:
                batch.append(self._queue.popleft())
            SIEM_QUEUE_DEPTH.set(len(self._queue))

            sent = failed = 0
            for event in batch:
                if await self.export_event(event):
                    sent += 1
                    continue
                failed += 1
                if self.failure_store is not None:
                    self.failure_store.append(event)
            self.exported += sent
            self.failed += failed
            if failed:
                logger.warning("SIEM flush: %d sent, %d failed", sent, failed)
            return FlushResult(sent, failed)
        finally:
            self._flushing = False

    async def retry_failed(self) -> FlushResult:
        """
        Re-export everything in the failure store. Each day file is rewritten
        with only the events that still fail; emptied files are removed.
        """
        if self.failure_store is None or self._retrying:
            return FlushResult(0, 0)
        self._retrying = True
        sent = failed = 0
        try:
            for path in self.failure_store.files():
                try:
                    entries = await asyncio.to_thread(self.failure_store.read, path)
                except OSError as e:
                    logger.warning("could not read %s: %s", path.name, e)
                    continue
                keep = []
                for event, raw in entries:
                    if event is None:
                        keep.append(raw)
                        continue
                    if await self.export_event(event):
                        sent += 1
                    else:
                        failed += 1
                        keep.append(raw)
                try:
                    await asyncio.to_thread(self.failure_store.rewrite, path, keep, len(entries))
                except OSError as e:
                    logger.error("could not rewrite %s: %s", path.name, e)
        finally:
            self._retrying = False
        if sent or failed:
            logger.info("SIEM retry: %d recovered, %d still failing", sent, failed)
        return FlushResult(sent, failed)

    # ---- timer ----------------------------------------------------------------

    def start(self) -> None:
        """Start the periodic flush. Needs a running event loop."""
        if self._scheduler is not None or not self.config.enabled:
            return
        self._scheduler = AsyncIOScheduler()
        self._scheduler.add_job(
            self.flush,
            IntervalTrigger(seconds=max(0.1, self.config.flush_interval_ms / 1000.0)),
            id=FLUSH_JOB_ID,
            max_instances=1,
            coalesce=True,
        )
        self._scheduler.start()

    async def stop(self) -> FlushResult:
        if self._scheduler is not None:
            self._scheduler.shutdown(wait=False)
            self._scheduler = None
        await self.drain()
        return await self.flush()

    def get_stats(self) -> Dict[str, Any]:
        return {
            "enabled": self.config.enabled,
            "format": self.config.format,
            "queue_size": len(self._queue),
            "evicted": self.evicted,
            "exported": self.exported,
            "failed": self.failed,
            "endpoint_configured": bool(self.config.endpoint),
            "syslog_configured": bool(self.config.syslog_host),
            "failed_pending": self.failure_store.pending_count() if self.failure_store else 0,
        }
