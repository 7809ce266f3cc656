from __future__ import annotations
import json
import logging
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable, List

from pydantic import ValidationError

from auditguard.security.rules import BreachRule

logger = logging.getLogger(__name__)

RULES_FILE_VERSION = "1.0.0"


class RuleStore:
    """Custom rules live in one JSON document: {version, last_updated, rules: [...]}."""

    def __init__(self, path: str):
        self.path = Path(path)

    def load(self) -> List[BreachRule]:
        if not self.path.exists():
            return []
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            logger.warning("breach rules file %s unreadable, using built-in rules only: %s", self.path, e)
            return []
        raw_rules = data.get("rules") if isinstance(data, dict) else None
        if not isinstance(raw_rules, list):
            return []
        rules: List[BreachRule] = []
        for raw in raw_rules:
            try:
                rules.append(BreachRule.model_validate(raw))
            except ValidationError as e:
                rid = raw.get("id") if isinstance(raw, dict) else None
                logger.warning("skipping invalid breach rule %r: %s", rid, e.errors()[0].get("msg"))
        return rules

    def save(self, rules: Iterable[BreachRule]) -> None:
        doc = {
            "version": RULES_FILE_VERSION,
            "last_updated": datetime.now(timezone.utc).isoformat(),
            "rules": [r.model_dump() for r in rules],
        }
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        tmp.write_text(json.dumps(doc, indent=2, ensure_ascii=False), encoding="utf-8")
        os.replace(tmp, self.path)
