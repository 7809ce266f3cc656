from __future__ import annotations
import re
from dataclasses import dataclass
from typing import Dict, List, Literal, Optional, Pattern

from pydantic import BaseModel, ConfigDict, Field

RuleSeverity = Literal["low", "medium", "high", "critical"]
BreachAction = Literal["log", "alert", "block", "notify_admin", "create_incident"]

# Rule severity -> alert/SIEM severity.
SEVERITY_TO_ALERT: Dict[str, str] = {
    "low": "info",
    "medium": "warning",
    "high": "error",
    "critical": "critical",
}


class BreachRule(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore")

    id: str = Field(min_length=1)
    name: str = Field(min_length=1)
    description: str = ""
    severity: RuleSeverity
    event_pattern: str = Field(min_length=1)
    threshold: int = Field(1, ge=1)
    window_seconds: float = Field(1, gt=0)
    actions: List[BreachAction] = Field(default_factory=list)
    notification_required: bool = False
    notification_deadline_hours: Optional[int] = None


@dataclass(frozen=True)
class CompiledPattern:
    """Exact-string match, plus an unanchored regex search when the pattern compiles."""
    literal: str
    regex: Optional[Pattern[str]] = None

    @classmethod
    def compile(cls, pattern: str) -> "CompiledPattern":
        try:
            return cls(pattern, re.compile(pattern))
        except re.error:
            return cls(pattern, None)

    def matches(self, event: str) -> bool:
        if event == self.literal:
            return True
        return self.regex is not None and self.regex.search(event) is not None


DEFAULT_RULES: List[BreachRule] = [
    BreachRule(
        id="rule_brute_force",
        name="Brute Force Attack",
        description="Multiple failed authentication attempts in short time window",
        severity="high",
        event_pattern="auth_failed",
        threshold=10,
        window_seconds=300,
        actions=["log", "block", "alert", "create_incident"],
        notification_required=True,
        notification_deadline_hours=72,
    ),
    BreachRule(
        id="rule_secrets_leaked",
        name="Secrets Leaked in Output",
        description="Detected credentials or secrets in tool output",
        severity="critical",
        event_pattern="secrets_detected",
        threshold=1,
        window_seconds=1,
        actions=["log", "alert", "create_incident"],
        notification_required=True,
        notification_deadline_hours=24,
    ),
    BreachRule(
        id="rule_cert_violation",
        name="Certificate Pinning Violation",
        description="TLS certificate does not match pinned certificates",
        severity="critical",
        event_pattern="cert_pinning_violation",
        threshold=1,
        window_seconds=1,
        actions=["log", "block", "alert", "create_incident"],
        notification_required=True,
        notification_deadline_hours=24,
    ),
    BreachRule(
        id="rule_prompt_injection",
        name="Prompt Injection Attempt",
        description="Detected prompt injection patterns in response",
        severity="high",
        event_pattern="prompt_injection",
        actions=["log", "alert"],
    ),
    BreachRule(
        id="rule_unusual_access",
        name="Unusual Access Pattern",
        description="Access patterns outside normal behavior",
        severity="medium",
        event_pattern="unusual_access",
        threshold=5,
        window_seconds=3600,
        actions=["log", "alert"],
    ),
    BreachRule(
        id="rule_mass_export",
        name="Mass Data Export",
        description="Large data export request",
        severity="medium",
        event_pattern="data_export",
        threshold=3,
        window_seconds=3600,
        actions=["log", "notify_admin"],
    ),
    BreachRule(
        id="rule_encryption_failure",
        name="Encryption Failure",
        description="Encryption or decryption operation failed",
        severity="high",
        event_pattern="encryption_error",
        threshold=3,
        window_seconds=300,
        actions=["log", "alert"],
    ),
    BreachRule(
        id="rule_auth_lockout",
        name="Authentication Lockout",
        description="Account locked due to failed attempts",
        severity="medium",
        event_pattern="auth_lockout",
        actions=["log", "alert"],
    ),
]

DEFAULT_RULE_IDS = frozenset(r.id for r in DEFAULT_RULES)
