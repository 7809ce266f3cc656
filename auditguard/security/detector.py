from __future__ import annotations
import asyncio
import logging
import time
import uuid
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Deque, Dict, List, Optional, Set, Tuple

from pydantic import ValidationError

from auditguard.alerts import AlertManager
from auditguard.core.errors import LedgerWriteError, RuleConfigError
from auditguard.ledger import IntegrityLedger
from auditguard.metrics import BREACH_DETECTIONS
from auditguard.security.rule_store import RuleStore
from auditguard.security.rules import (
    DEFAULT_RULE_IDS,
    DEFAULT_RULES,
    SEVERITY_TO_ALERT,
    BreachRule,
    CompiledPattern,
)
from auditguard.siem import SIEMEvent, SIEMExporter

logger = logging.getLogger(__name__)

DETECTOR_SOURCE = "breach-detector"
HISTORY_SIZE = 1000


def _iso(ts: float) -> str:
    return datetime.fromtimestamp(ts, tz=timezone.utc).isoformat()


class EventTracker:
    """Sliding window of matching events for one rule."""

    def __init__(self, rule_id: str):
        self.rule_id = rule_id
        self.events: Deque[Tuple[float, Optional[Dict[str, Any]]]] = deque()

    def record(self, now: float, details: Optional[Dict[str, Any]], rule: BreachRule):
        """Add, prune, check. Returns the tripping window (and empties the tracker) or None."""
        self.events.append((now, details))
        cutoff = now - rule.window_seconds
        while self.events and self.events[0][0] < cutoff:
            self.events.popleft()
        if len(self.events) >= rule.threshold:
            window = list(self.events)
            self.events.clear()
            return window
        return None


@dataclass(frozen=True)
class Detection:
    id: str
    detected_at: str
    rule: BreachRule
    event_count: int
    window_start: str
    window_end: str
    actions_taken: Tuple[str, ...] = ()
    incident_id: Optional[str] = None
    blocked: bool = False
    alert_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "detected_at": self.detected_at,
            "rule": self.rule.model_dump(),
            "event_count": self.event_count,
            "window_start": self.window_start,
            "window_end": self.window_end,
            "actions_taken": list(self.actions_taken),
            "incident_id": self.incident_id,
            "blocked": self.blocked,
            "alert_id": self.alert_id,
        }


@dataclass
class _ActionState:
    detection_id: str
    rule: BreachRule
    event_count: int
    window_start: str
    window_end: str
    details: Dict[str, Any]
    taken: List[str] = field(default_factory=list)
    incident_id: Optional[str] = None
    blocked: bool = False
    alert_id: Optional[str] = None


class BreachDetector:
    """
    Threshold rule engine.

    Every matching rule's tracker is fed synchronously (no await between
    append, prune, threshold check and reset), so concurrent callers can't
    double-trip a rule. Actions run afterwards in the rule's declared order;
    a failing action is logged and left out of `actions_taken`.
    """

    def __init__(
        self,
        ledger: IntegrityLedger,
        alerts: AlertManager,
        siem: SIEMExporter | None = None,
        *,
        rules_file: str | None = None,
        enabled: bool = True,
        allow_overrides: bool = False,
        clock: Callable[[], float] = time.time,
    ):
        self.ledger = ledger
        self.alerts = alerts
        self.siem = siem
        self.enabled = enabled
        self.allow_overrides = allow_overrides
        self.store = RuleStore(rules_file) if rules_file else None
        self._clock = clock
        self._rules: Dict[str, BreachRule] = {}
        self._patterns: Dict[str, CompiledPattern] = {}
        self._custom_ids: Set[str] = set()
        self._trackers: Dict[str, EventTracker] = {}
        self._blocked: Set[str] = set()
        self._history: Deque[Detection] = deque(maxlen=HISTORY_SIZE)
        self._total = 0
        self._by_severity: Dict[str, int] = {"low": 0, "medium": 0, "high": 0, "critical": 0}
        self._by_rule: Dict[str, int] = {}
        self._load_rules()

    # ---- rules ----------------------------------------------------------------

    def _install(self, rule: BreachRule) -> None:
        self._rules[rule.id] = rule
        self._patterns[rule.id] = CompiledPattern.compile(rule.event_pattern)

    def _load_rules(self) -> None:
        for rule in DEFAULT_RULES:
            self._install(rule)
        if self.store is None:
            return
        for rule in self.store.load():
            if rule.id in DEFAULT_RULE_IDS and not self.allow_overrides:
                logger.warning("custom rule %s shadows a built-in rule, ignored", rule.id)
                continue
            self._install(rule)
            self._custom_ids.add(rule.id)

    async def _save(self) -> None:
        if self.store is None:
            return
        custom = [self._rules[rid] for rid in self._rules if rid in self._custom_ids]
        await asyncio.to_thread(self.store.save, custom)

    def get_rules(self) -> List[BreachRule]:
        return list(self._rules.values())

    def get_rule(self, rule_id: str) -> Optional[BreachRule]:
        return self._rules.get(rule_id)

    def is_custom(self, rule_id: str) -> bool:
        return rule_id in self._custom_ids

    async def add_rule(self, data: Dict[str, Any] | BreachRule) -> BreachRule:
        if isinstance(data, BreachRule):
            data = data.model_dump()
        data = dict(data)
        if not data.get("id"):
            data["id"] = f"rule_{uuid.uuid4().hex[:8]}"
        rule_id = data["id"]
        if rule_id in DEFAULT_RULE_IDS and not self.allow_overrides:
            raise RuleConfigError(f"{rule_id} is a built-in rule id")
        if rule_id in self._custom_ids:
            raise RuleConfigError(f"rule {rule_id} already exists")
        try:
            rule = BreachRule.model_validate(data)
        except ValidationError as e:
            raise RuleConfigError(str(e)) from e
        self._install(rule)
        self._custom_ids.add(rule.id)
        self._trackers.pop(rule.id, None)
        await self._save()
        logger.info("breach rule %s added", rule.id)
        return rule

    async def update_rule(self, rule_id: str, changes: Dict[str, Any]) -> Optional[BreachRule]:
        """Custom rules only. None when the rule doesn't exist."""
        current = self._rules.get(rule_id)
        if current is None:
            return None
        if rule_id not in self._custom_ids:
            raise RuleConfigError(f"{rule_id} is a built-in rule and cannot be modified")
        try:
            rule = BreachRule.model_validate({**current.model_dump(), **changes, "id": rule_id})
        except ValidationError as e:
            raise RuleConfigError(str(e)) from e
        self._install(rule)
        await self._save()
        return rule

    async def remove_rule(self, rule_id: str) -> bool:
        if rule_id in DEFAULT_RULE_IDS or rule_id not in self._custom_ids:
            return False
        self._custom_ids.discard(rule_id)
        self._rules.pop(rule_id, None)
        self._patterns.pop(rule_id, None)
        self._trackers.pop(rule_id, None)
        await self._save()
        logger.info("breach rule %s removed", rule_id)
        return True

    # ---- blocking -------------------------------------------------------------

    def is_blocked(self, pattern: str) -> bool:
        return pattern in self._blocked

    def unblock(self, pattern: str) -> bool:
        if pattern not in self._blocked:
            return False
        self._blocked.discard(pattern)
        return True

    def get_blocked_patterns(self) -> List[str]:
        return sorted(self._blocked)

    # ---- detection ------------------------------------------------------------

    def _evaluate(self, pattern: str, details: Optional[Dict[str, Any]]):
        now = self._clock()
        tripped = []
        for rule_id, rule in list(self._rules.items()):
            if not self._patterns[rule_id].matches(pattern):
                continue
            tracker = self._trackers.setdefault(rule_id, EventTracker(rule_id))
            window = tracker.record(now, details, rule)
            if window is not None:
                tripped.append((rule, window, now))
        return tripped

    async def check_event_all(self, pattern: str, details: Optional[Dict[str, Any]] = None) -> List[Detection]:
        if not self.enabled:
            return []
        tripped = self._evaluate(pattern, details)
        out = []
        for rule, window, now in tripped:
            out.append(await self._handle_breach(rule, window, now, details or {}))
        return out

    async def check_event(self, pattern: str, details: Optional[Dict[str, Any]] = None) -> Optional[Detection]:
        """First detection tripped by this event, in rule order."""
        detections = await self.check_event_all(pattern, details)
        return detections[0] if detections else None

    async def _handle_breach(self, rule: BreachRule, window, now: float, details: Dict[str, Any]) -> Detection:
        state = _ActionState(
            detection_id=str(uuid.uuid4()),
            rule=rule,
            event_count=len(window),
            window_start=_iso(window[0][0]),
            window_end=_iso(window[-1][0]),
            details=details,
        )
        logger.warning("breach rule %s tripped (%d events)", rule.id, state.event_count)

        for action in rule.actions:
            handler = getattr(self, f"_action_{action}")
            try:
                await handler(state)
            except Exception as e:
                logger.warning("breach action %s for %s failed: %s", action, rule.id, e)
                continue
            state.taken.append(action)

        detection = Detection(
            id=state.detection_id,
            detected_at=_iso(now),
            rule=rule,
            event_count=state.event_count,
            window_start=state.window_start,
            window_end=state.window_end,
            actions_taken=tuple(state.taken),
            incident_id=state.incident_id,
            blocked=state.blocked,
            alert_id=state.alert_id,
        )
        self._record(detection)
        await self._export(detection, details)
        return detection

    def _record(self, detection: Detection) -> None:
        rule = detection.rule
        self._history.append(detection)
        self._total += 1
        self._by_severity[rule.severity] = self._by_severity.get(rule.severity, 0) + 1
        self._by_rule[rule.id] = self._by_rule.get(rule.id, 0) + 1
        BREACH_DETECTIONS.labels(rule=rule.id, severity=rule.severity).inc()

    async def _export(self, detection: Detection, details: Dict[str, Any]) -> None:
        if self.siem is None:
            return
        rule = detection.rule
        event = SIEMEvent(
            event_type="breach_detected",
            event_name=rule.name,
            severity=SEVERITY_TO_ALERT.get(rule.severity, "warning"),
            source=DETECTOR_SOURCE,
            message=rule.description or rule.name,
            details={
                **details,
                "detection_id": detection.id,
                "rule_id": rule.id,
                "event_count": detection.event_count,
                "actions": ",".join(detection.actions_taken),
                **({"incident_id": detection.incident_id} if detection.incident_id else {}),
            },
        )
        await self.siem.queue_event(event)

    # ---- actions --------------------------------------------------------------

    async def _action_log(self, s: _ActionState) -> None:
        entry = await self.ledger.log_breach(
            s.rule.name,
            s.rule.severity,
            s.rule.notification_required,
            {**s.details, "detection_id": s.detection_id, "rule_id": s.rule.id, "event_count": s.event_count},
        )
        if entry is None:
            raise LedgerWriteError("breach event not recorded")

    async def _action_alert(self, s: _ActionState) -> None:
        alert = self.alerts.dispatch_nowait(
            SEVERITY_TO_ALERT.get(s.rule.severity, "warning"),
            f"Breach Detected: {s.rule.name}",
            s.rule.description,
            DETECTOR_SOURCE,
            {
                **s.details,
                "detection_id": s.detection_id,
                "event_count": s.event_count,
                "window": f"{s.window_start} to {s.window_end}",
            },
        )
        if alert is not None:
            s.alert_id = alert.id

    async def _action_block(self, s: _ActionState) -> None:
        self._blocked.add(s.rule.event_pattern)
        s.blocked = True

    async def _action_notify_admin(self, s: _ActionState) -> None:
        self.alerts.dispatch_nowait(
            "warning",
            f"[Admin] {s.rule.name}",
            f"{s.rule.description}\n\nEvent count: {s.event_count}",
            DETECTOR_SOURCE,
            s.details or None,
        )

    async def _action_create_incident(self, s: _ActionState) -> None:
        incident_id = f"incident_{s.detection_id[:8]}"
        entry = await self.ledger.log_security_incident(
            "breach_incident_created",
            s.rule.severity,
            {**s.details, "incident_id": incident_id, "detection_id": s.detection_id, "rule_name": s.rule.name},
        )
        if entry is None:
            raise LedgerWriteError("incident event not recorded")
        s.incident_id = incident_id

    # ---- reporting ------------------------------------------------------------

    def get_recent_detections(self, limit: int = 100) -> List[Detection]:
        items = list(self._history)
        return items[-limit:] if limit > 0 else items

    def get_stats(self) -> Dict[str, Any]:
        return {
            "enabled": self.enabled,
            "rules_count": len(self._rules),
            "blocked_patterns": len(self._blocked),
            "detections_count": self._total,
            "by_severity": dict(self._by_severity),
            "by_rule": dict(self._by_rule),
        }
