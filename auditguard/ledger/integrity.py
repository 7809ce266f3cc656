from __future__ import annotations
import asyncio
import json
import logging
import threading
import uuid
from collections import Counter as _Counter
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from auditguard.core.errors import LedgerIntegrityError, LedgerWriteError
from auditguard.ledger.chain import GENESIS_HASH, compute_hash, hash_record, normalize_details, canonical_json
from auditguard.ledger.models import (
    EVENT_CATEGORIES,
    Actor,
    EventFilters,
    IntegrityReport,
    LedgerEvent,
    Resource,
)
from auditguard.ledger.store import SegmentStore
from auditguard.metrics import LEDGER_APPENDS, LEDGER_WRITE_FAILURES

logger = logging.getLogger(__name__)

SEAL_EVENT_TYPE = "segment_sealed"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class IntegrityLedger:
    """
    Append-only, hash-chained event ledger.

    One writer at a time: hash computation, the segment write and the chain
    head update happen under a single lock, so concurrent appends are
    strictly ordered. The head only moves after the record is fsync'ed.
    """

    def __init__(
        self,
        directory: str,
        *,
        enabled: bool = True,
        period: str = "month",
        retention_years: int = 7,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.enabled = enabled
        self.retention_years = retention_years
        self.store = SegmentStore(directory, period)
        self._clock = clock
        self._lock = threading.RLock()
        self._head_hash = GENESIS_HASH
        self._head_path: Optional[Path] = None
        self._head_sealed = False
        self._head_corrupt = False
        if self.enabled:
            self.store.ensure_dir()
            self._load_head()

    # ---- chain head ---------------------------------------------------------

    def _load_head(self) -> None:
        last = self.store.last_record()
        if last is None:
            return
        path, record = last
        self._head_path = path
        if not record.get("hash"):
            self._head_corrupt = True
            logger.error("ledger head in %s is unreadable; appends disabled until verified", path.name)
            return
        self._head_hash = record["hash"]
        self._head_sealed = record.get("event_type") == SEAL_EVENT_TYPE

    @property
    def last_hash(self) -> str:
        return self._head_hash

    def _target_segment(self, now: datetime) -> Path:
        period = self.store.period_key(now)
        latest = self.store.latest_segment(period)
        if latest is None:
            return self.store.segment_path(period, 1)
        path, seq = latest
        if self._head_sealed and self._head_path == path:
            return self.store.segment_path(period, seq + 1)
        return path

    # ---- write path ---------------------------------------------------------

    def _build_event(
        self,
        category: str,
        event_type: str,
        actor: Actor | Dict[str, Any] | None,
        outcome: str,
        resource: Resource | Dict[str, Any] | None,
        details: Dict[str, Any] | None,
        failure_reason: Optional[str],
        retention_days: Optional[int],
        now: datetime,
    ) -> LedgerEvent:
        if isinstance(resource, dict):
            resource = Resource(type=str(resource.get("type", "unknown")), id=resource.get("id"))
        try:
            details = normalize_details(details)
        except (TypeError, ValueError) as e:
            raise LedgerWriteError(f"details are not JSON serialisable: {e}") from e
        event = LedgerEvent(
            id=str(uuid.uuid4()),
            timestamp=now.isoformat(timespec="microseconds"),
            category=category,
            event_type=event_type,
            actor=Actor.coerce(actor),
            outcome=outcome,
            previous_hash=self._head_hash,
            resource=resource,
            details=details,
            failure_reason=failure_reason,
            retention_days=retention_days or self.retention_years * 365,
        )
        event.hash = compute_hash(event.to_dict(include_hash=False), event.previous_hash)
        return event

    def append_sync(
        self,
        category: str,
        event_type: str,
        actor: Actor | Dict[str, Any] | None,
        outcome: str,
        *,
        resource: Resource | Dict[str, Any] | None = None,
        details: Dict[str, Any] | None = None,
        failure_reason: Optional[str] = None,
        retention_days: Optional[int] = None,
    ) -> LedgerEvent:
        """Blocking append. Raises LedgerWriteError; the chain head is untouched on failure."""
        if category not in EVENT_CATEGORIES:
            logger.warning("ledger event with non-standard category %r", category)
        with self._lock:
            if self._head_corrupt:
                raise LedgerWriteError("ledger head is corrupt; run verify_integrity()")
            now = self._clock()
            try:
                path = self._target_segment(now)
                partial = self.store.has_partial_tail(path)
            except OSError as e:
                raise LedgerWriteError(f"ledger storage unreadable: {e}") from e
            if partial:
                self._head_corrupt = True
                raise LedgerWriteError(f"{path.name} ends with a partial record; refusing to append")
            event = self._build_event(
                category, event_type, actor, outcome, resource, details,
                failure_reason, retention_days, now,
            )
            self.store.append_line(path, canonical_json(event.to_dict()))
            self._head_hash = event.hash
            self._head_path = path
            self._head_sealed = event_type == SEAL_EVENT_TYPE
        LEDGER_APPENDS.labels(category=category).inc()
        return event

    async def append(
        self,
        category: str,
        event_type: str,
        actor: Actor | Dict[str, Any] | None,
        outcome: str = "success",
        *,
        resource: Resource | Dict[str, Any] | None = None,
        details: Dict[str, Any] | None = None,
        failure_reason: Optional[str] = None,
        retention_days: Optional[int] = None,
    ) -> Optional[LedgerEvent]:
        """Append an event. Returns None when disabled or when the write failed."""
        if not self.enabled:
            return None
        try:
            return await asyncio.to_thread(
                self.append_sync,
                category,
                event_type,
                actor,
                outcome,
                resource=resource,
                details=details,
                failure_reason=failure_reason,
                retention_days=retention_days,
            )
        except LedgerWriteError as e:
            LEDGER_WRITE_FAILURES.inc()
            logger.error("ledger append %s/%s failed: %s", category, event_type, e)
            return None

    async def seal_segment(self, reason: str, actor: Actor | Dict[str, Any] | None = None) -> Optional[LedgerEvent]:
        """
        Close the current segment and continue the chain in a fresh one.
        Used in place of any rewrite of history (erasure, retention).
        """
        return await self.append(
            "retention",
            SEAL_EVENT_TYPE,
            actor or {"type": "system"},
            "success",
            details={"reason": reason},
        )

    # ---- convenience writers ------------------------------------------------

    async def log_security_incident(self, incident_type: str, severity: str,
                                    details: Dict[str, Any]) -> Optional[LedgerEvent]:
        return await self.append(
            "security_incident", incident_type, {"type": "system"}, "success",
            details={**details, "severity": severity},
        )

    async def log_breach(self, breach_type: str, severity: str, notification_sent: bool,
                         details: Dict[str, Any]) -> Optional[LedgerEvent]:
        return await self.append(
            "breach", breach_type, {"type": "system"}, "success",
            details={**details, "severity": severity, "notification_sent": notification_sent},
        )

    async def log_access_control(self, action: str, actor: Actor | Dict[str, Any] | None, success: bool,
                                 details: Dict[str, Any] | None = None) -> Optional[LedgerEvent]:
        return await self.append(
            "access_control", action, actor, "success" if success else "failure", details=details,
        )

    async def log_policy_change(self, setting: str, old_value: Any, new_value: Any,
                                changed_by: str = "system") -> Optional[LedgerEvent]:
        return await self.append(
            "policy_change", "configuration_changed", {"type": changed_by}, "success",
            resource={"type": "configuration", "id": setting},
            details={"old_value": old_value, "new_value": new_value},
        )

    async def log_data_access(self, action: str, actor: Actor | Dict[str, Any] | None, data_type: str,
                              success: bool, details: Dict[str, Any] | None = None) -> Optional[LedgerEvent]:
        return await self.append(
            "data_access", f"data_{action}", actor, "success" if success else "failure",
            resource={"type": data_type}, details=details,
        )

    async def log_consent(self, action: str, actor: Actor | Dict[str, Any] | None, purposes: List[str],
                          success: bool, details: Dict[str, Any] | None = None) -> Optional[LedgerEvent]:
        return await self.append(
            "consent", f"consent_{action}", actor, "success" if success else "failure",
            details={**(details or {}), "purposes": list(purposes)},
        )

    async def log_data_export(self, actor: Actor | Dict[str, Any] | None, data_types: List[str], success: bool,
                              details: Dict[str, Any] | None = None) -> Optional[LedgerEvent]:
        return await self.append(
            "data_export", "data_portability_export", actor, "success" if success else "failure",
            details={**(details or {}), "data_types": list(data_types)},
        )

    async def log_data_deletion(self, actor: Actor | Dict[str, Any] | None, data_type: str, item_count: int,
                                success: bool, details: Dict[str, Any] | None = None) -> Optional[LedgerEvent]:
        return await self.append(
            "data_deletion", "erasure_completed", actor, "success" if success else "failure",
            resource={"type": data_type}, details={**(details or {}), "items_deleted": item_count},
        )

    async def log_retention(self, action: str, data_type: str, item_count: int,
                            details: Dict[str, Any] | None = None) -> Optional[LedgerEvent]:
        return await self.append(
            "retention", f"retention_{action}", {"type": "system"}, "success",
            resource={"type": data_type}, details={**(details or {}), "items_affected": item_count},
        )

    # ---- read path ----------------------------------------------------------

    def verify_integrity(self) -> IntegrityReport:
        """
        Recompute every hash, oldest segment first, and stop at the first
        record that does not verify. Nothing is repaired.
        """
        segments = self.store.list_segments()
        report = IntegrityReport(valid=True, total_events=0, valid_events=0, segments=len(segments))
        if not self.enabled:
            return report

        expected_prev = GENESIS_HASH
        index = 0
        with self._lock:
            for path in segments:
                try:
                    lines = list(self.store.iter_lines(path))
                except (OSError, UnicodeDecodeError) as e:
                    logger.error("integrity check could not read %s: %s", path.name, e)
                    return self._fail(report, index, None, "io_error", path)
                for line in lines:
                    report.total_events += 1
                    try:
                        record = json.loads(line)
                        event_id = record.get("id")
                    except (ValueError, AttributeError):
                        return self._fail(report, index, None, "corrupt_record", path)
                    if not isinstance(record, dict):
                        return self._fail(report, index, None, "corrupt_record", path)
                    if record.get("previous_hash") != expected_prev:
                        return self._fail(report, index, event_id, "chain_break", path)
                    if hash_record(record) != record.get("hash"):
                        return self._fail(report, index, event_id, "hash_mismatch", path)
                    report.valid_events += 1
                    report.last_valid_event_id = event_id
                    expected_prev = record["hash"]
                    index += 1
        return report

    @staticmethod
    def _fail(report: IntegrityReport, index: int, event_id: Optional[str], reason: str,
              path: Path) -> IntegrityReport:
        report.valid = False
        report.first_invalid_index = index
        report.first_invalid_event_id = event_id
        report.reason = reason
        report.segment = path.name
        logger.error("ledger integrity failure at index %d (%s) in %s", index, reason, path.name)
        return report

    def ensure_integrity(self) -> IntegrityReport:
        report = self.verify_integrity()
        if not report.valid:
            raise LedgerIntegrityError(
                f"ledger chain broken at index {report.first_invalid_index}: {report.reason}",
                index=report.first_invalid_index,
                event_id=report.first_invalid_event_id,
                reason=report.reason,
            )
        return report

    def _iter_records_newest_first(self):
        for path in reversed(self.store.list_segments()):
            try:
                lines = list(self.store.iter_lines(path))
            except (OSError, UnicodeDecodeError) as e:
                logger.warning("skipping unreadable ledger segment %s: %s", path.name, e)
                continue
            for line in reversed(lines):
                try:
                    record = json.loads(line)
                except ValueError:
                    logger.warning("skipping corrupt record in %s", path.name)
                    continue
                if isinstance(record, dict):
                    yield record

    def query(self, filters: EventFilters | None = None, limit: int = 100) -> List[LedgerEvent]:
        """Newest first."""
        if not self.enabled:
            return []
        if limit <= 0:
            return []
        filters = filters or EventFilters()
        out: List[LedgerEvent] = []
        for record in self._iter_records_newest_first():
            if not filters.matches(record):
                continue
            try:
                out.append(LedgerEvent.from_dict(record))
            except (KeyError, TypeError):
                logger.warning("skipping malformed ledger record %s", record.get("id"))
                continue
            if len(out) >= limit:
                break
        return out

    def get_stats(self) -> Dict[str, Any]:
        by_category: Dict[str, int] = {c: 0 for c in EVENT_CATEGORIES}
        counts: _Counter = _Counter()
        total = 0
        if self.enabled:
            for record in self._iter_records_newest_first():
                total += 1
                counts[record.get("category")] += 1
        for cat, n in counts.items():
            if cat in by_category:
                by_category[cat] = n
        return {
            "enabled": self.enabled,
            "directory": str(self.store.directory),
            "segment_count": len(self.store.list_segments()),
            "total_events": total,
            "events_by_category": by_category,
            "last_hash": self._head_hash,
            "retention_years": self.retention_years,
        }
