from __future__ import annotations
import json
import logging
import os
import re
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Tuple

from auditguard.core.errors import LedgerWriteError

logger = logging.getLogger(__name__)

_SEGMENT_RE = re.compile(r"^events-(?P<period>\d{4}-\d{2}(?:-\d{2})?)-(?P<seq>\d{3})\.jsonl$")


class SegmentStore:
    """
    Newline-delimited JSON segments, one file per period and seal counter:
      events-2026-10-001.jsonl  (monthly)
      events-2026-10-19-001.jsonl  (daily)
    File name order is chain order.
    """

    def __init__(self, directory: str, period: str = "month"):
        self.directory = Path(directory)
        self.period = period

    def ensure_dir(self) -> None:
        self.directory.mkdir(parents=True, exist_ok=True)

    def period_key(self, now: datetime) -> str:
        return now.strftime("%Y-%m-%d" if self.period == "day" else "%Y-%m")

    def segment_path(self, period: str, seq: int) -> Path:
        return self.directory / f"events-{period}-{seq:03d}.jsonl"

    def list_segments(self) -> List[Path]:
        """Oldest first."""
        if not self.directory.exists():
            return []
        return sorted(p for p in self.directory.iterdir() if _SEGMENT_RE.match(p.name))

    def latest_segment(self, period: str) -> Optional[Tuple[Path, int]]:
        found: Optional[Tuple[Path, int]] = None
        for p in self.list_segments():
            m = _SEGMENT_RE.match(p.name)
            if m and m.group("period") == period:
                seq = int(m.group("seq"))
                if found is None or seq > found[1]:
                    found = (p, seq)
        return found

    @staticmethod
    def parse_seq(path: Path) -> int:
        m = _SEGMENT_RE.match(path.name)
        return int(m.group("seq")) if m else 0

    def has_partial_tail(self, path: Path) -> bool:
        """True when the last record was cut short (file does not end in a newline)."""
        try:
            size = path.stat().st_size
        except FileNotFoundError:
            return False
        if size == 0:
            return False
        with path.open("rb") as f:
            f.seek(-1, os.SEEK_END)
            return f.read(1) != b"\n"

    def append_line(self, path: Path, line: str) -> None:
        data = (line + "\n").encode("utf-8")
        try:
            self.ensure_dir()
            with path.open("ab") as f:
                f.write(data)
                f.flush()
                os.fsync(f.fileno())
        except OSError as e:
            raise LedgerWriteError(f"write to {path.name} failed: {e}") from e

    def iter_lines(self, path: Path) -> Iterator[str]:
        with path.open("r", encoding="utf-8") as f:
            for raw in f:
                line = raw.rstrip("\n")
                if line.strip():
                    yield line

    def last_record(self) -> Optional[Tuple[Path, Dict[str, Any]]]:
        """Last parseable record of the newest non-empty segment."""
        for path in reversed(self.list_segments()):
            last: Optional[str] = None
            try:
                for line in self.iter_lines(path):
                    last = line
            except OSError as e:
                logger.error("cannot read ledger segment %s: %s", path.name, e)
                continue
            if last is None:
                continue
            try:
                return path, json.loads(last)
            except ValueError:
                logger.error("ledger segment %s ends with a corrupt record", path.name)
                return path, {}
        return None
