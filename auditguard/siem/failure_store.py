from __future__ import annotations
import json
import logging
import os
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, List, Optional, Tuple

from auditguard.siem.models import SIEMEvent

logger = logging.getLogger(__name__)


class FailureStore:
    """
    Disk-backed holding area for events that exhausted their retries:
    one `failed-YYYY-MM-DD.jsonl` file per day.
    """

    def __init__(self, directory: str, clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc)):
        self.directory = Path(directory)
        self._clock = clock
        self._lock = threading.Lock()

    def _today_path(self) -> Path:
        return self.directory / f"failed-{self._clock().strftime('%Y-%m-%d')}.jsonl"

    def append(self, event: SIEMEvent) -> bool:
        line = json.dumps(event.to_dict(), ensure_ascii=False, default=str)
        with self._lock:
            try:
                self.directory.mkdir(parents=True, exist_ok=True)
                with self._today_path().open("a", encoding="utf-8") as f:
                    f.write(line + "\n")
            except OSError as e:
                logger.error("could not persist failed SIEM event %s: %s", event.event_type, e)
                return False
        return True

    def files(self) -> List[Path]:
        if not self.directory.exists():
            return []
        return sorted(p for p in self.directory.glob("failed-*.jsonl") if p.is_file())

    def read(self, path: Path) -> List[Tuple[Optional[SIEMEvent], str]]:
        """(event, raw line) pairs; event is None for lines that don't parse."""
        with self._lock:
            raw_lines = [l for l in path.read_text(encoding="utf-8").splitlines() if l.strip()]
        out: List[Tuple[Optional[SIEMEvent], str]] = []
        for raw in raw_lines:
            try:
                out.append((SIEMEvent.from_dict(json.loads(raw)), raw))
            except (ValueError, KeyError, TypeError):
                logger.warning("malformed line in %s kept as-is", path.name)
                out.append((None, raw))
        return out

    def rewrite(self, path: Path, keep: List[str], read_count: int) -> None:
        """
        Replace `path` with `keep`, preserving any lines appended after the
        first `read_count` were read. Deletes the file when nothing remains.
        """
        with self._lock:
            current = []
            if path.exists():
                current = [l for l in path.read_text(encoding="utf-8").splitlines() if l.strip()]
            remaining = keep + current[read_count:]
            if not remaining:
                path.unlink(missing_ok=True)
                return
            tmp = path.with_suffix(".jsonl.tmp")
            tmp.write_text("\n".join(remaining) + "\n", encoding="utf-8")
            os.replace(tmp, path)

    def pending_count(self) -> int:
        total = 0
        for p in self.files():
            try:
                total += sum(1 for l in p.read_text(encoding="utf-8").splitlines() if l.strip())
            except OSError:
                continue
        return total
