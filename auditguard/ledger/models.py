from __future__ import annotations
from dataclasses import dataclass, field, asdict
from typing import Any, Dict, List, Literal, Optional

EventCategory = Literal[
    "consent",
    "data_access",
    "data_export",
    "data_deletion",
    "data_processing",
    "security_incident",
    "policy_change",
    "access_control",
    "retention",
    "breach",
]
EVENT_CATEGORIES: tuple = EventCategory.__args__  # type: ignore[attr-defined]

Outcome = Literal["success", "failure", "pending"]
OUTCOMES: tuple = Outcome.__args__  # type: ignore[attr-defined]

ActorType = Literal["user", "system", "admin"]


def mask_ip(ip: Optional[str]) -> Optional[str]:
    """Zero the last IPv4 octet / IPv6 group."""
    if not ip:
        return None
    if "." in ip:
        parts = ip.split(".")
        if len(parts) == 4:
            parts[3] = "0"
            return ".".join(parts)
    if ":" in ip:
        parts = ip.split(":")
        parts[-1] = "0"
        return ":".join(parts)
    return ip


@dataclass
class Actor:
    type: str = "system"
    id: Optional[str] = None
    ip: Optional[str] = None  # always stored masked

    @classmethod
    def coerce(cls, value: "Actor | Dict[str, Any] | None") -> "Actor":
        if value is None:
            return cls()
        if isinstance(value, Actor):
            return cls(type=value.type or "system", id=value.id, ip=mask_ip(value.ip))
        return cls(
            type=value.get("type") or "system",
            id=value.get("id"),
            ip=mask_ip(value.get("ip")),
        )


@dataclass
class Resource:
    type: str
    id: Optional[str] = None


def _drop_none(d: Dict[str, Any]) -> Dict[str, Any]:
    return {k: v for k, v in d.items() if v is not None}


@dataclass
class LedgerEvent:
    id: str
    timestamp: str
    category: str
    event_type: str
    actor: Actor
    outcome: str
    previous_hash: str
    hash: str = ""
    resource: Optional[Resource] = None
    details: Dict[str, Any] = field(default_factory=dict)
    failure_reason: Optional[str] = None
    retention_days: Optional[int] = None

    def to_dict(self, *, include_hash: bool = True) -> Dict[str, Any]:
        """Storage form: absent optionals are omitted so the hash input is stable."""
        out: Dict[str, Any] = {
            "id": self.id,
            "timestamp": self.timestamp,
            "category": self.category,
            "event_type": self.event_type,
            "actor": _drop_none(asdict(self.actor)),
            "outcome": self.outcome,
            "details": self.details,
            "previous_hash": self.previous_hash,
        }
        if self.resource is not None:
            out["resource"] = _drop_none(asdict(self.resource))
        if self.failure_reason is not None:
            out["failure_reason"] = self.failure_reason
        if self.retention_days is not None:
            out["retention_days"] = self.retention_days
        if include_hash:
            out["hash"] = self.hash
        return out

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "LedgerEvent":
        actor = data.get("actor") or {}
        resource = data.get("resource")
        return cls(
            id=data["id"],
            timestamp=data["timestamp"],
            category=data["category"],
            event_type=data["event_type"],
            actor=Actor(type=actor.get("type", "system"), id=actor.get("id"), ip=actor.get("ip")),
            outcome=data["outcome"],
            previous_hash=data["previous_hash"],
            hash=data.get("hash", ""),
            resource=Resource(type=resource["type"], id=resource.get("id")) if resource else None,
            details=data.get("details") or {},
            failure_reason=data.get("failure_reason"),
            retention_days=data.get("retention_days"),
        )


@dataclass
class IntegrityReport:
    valid: bool
    total_events: int
    valid_events: int
    segments: int
    first_invalid_index: Optional[int] = None
    first_invalid_event_id: Optional[str] = None
    last_valid_event_id: Optional[str] = None
    reason: Optional[str] = None  # chain_break | hash_mismatch | corrupt_record | io_error
    segment: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class EventFilters:
    category: Optional[str] = None
    event_type: Optional[str] = None
    outcome: Optional[str] = None
    actor_id: Optional[str] = None
    since: Optional[str] = None  # ISO-8601, inclusive
    until: Optional[str] = None  # ISO-8601, inclusive

    def matches(self, event: Dict[str, Any]) -> bool:
        if self.category and event.get("category") != self.category:
            return False
        if self.event_type and event.get("event_type") != self.event_type:
            return False
        if self.outcome and event.get("outcome") != self.outcome:
            return False
        if self.actor_id and (event.get("actor") or {}).get("id") != self.actor_id:
            return False
        ts = event.get("timestamp", "")
        # timestamps are fixed-width UTC ISO strings, so string order is time order
        if self.since and ts < self.since:
            return False
        if self.until and ts > self.until:
            return False
        return True


__all__: List[str] = [
    "EventCategory",
    "EVENT_CATEGORIES",
    "Outcome",
    "OUTCOMES",
    "ActorType",
    "Actor",
    "Resource",
    "LedgerEvent",
    "IntegrityReport",
    "EventFilters",
    "mask_ip",
]
