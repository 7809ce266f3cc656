from .rules import BreachRule, CompiledPattern, DEFAULT_RULES, DEFAULT_RULE_IDS, SEVERITY_TO_ALERT
from .rule_store import RuleStore
from .detector import BreachDetector, Detection, EventTracker

__all__ = [
    "BreachRule",
    "CompiledPattern",
    "DEFAULT_RULES",
    "DEFAULT_RULE_IDS",
    "SEVERITY_TO_ALERT",
    "RuleStore",
    "BreachDetector",
    "Detection",
    "EventTracker",
]
